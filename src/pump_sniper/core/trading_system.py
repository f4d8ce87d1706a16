import asyncio
from datetime import datetime
from time import time
from typing import Optional, Set
import aiohttp
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Processed
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from pump_sniper.data.event_decoder import CreationEventDecoder
from pump_sniper.data.stream_feed import StreamFeed
from pump_sniper.db.service import DatabaseService
from pump_sniper.execution.bonding_curve import CurveClient
from pump_sniper.execution.jito_client import JitoBundleClient
from pump_sniper.execution.trade_executor import TradeExecutor, TradingContext
from pump_sniper.utils.chain_tracker import ChainTracker
from pump_sniper.utils.config import Config
from pump_sniper.utils.confirmation import SHUTDOWN_CONFIRMATION_TIMEOUT
from pump_sniper.utils.logger import TradingLogger
from .position_manager import PositionManager
from .trade_stats import TradeStatsRecorder
from .types import CachedValue, Position, PositionState, TransactionRecord
from .valuation_tracker import ValuationTracker

TRADES_CSV_PATH = "data/trades/trades.csv"
SUMMARY_PATH = "data/logs/bot_summary.json"

# States in which a shutdown has nothing left to sell
NO_SHUTDOWN_SELL_STATES = (PositionState.SELLING, PositionState.SOLD, PositionState.FAILED)


class TradingSystem:
    def __init__(self, config: Config, logger: TradingLogger):
        self.config = config
        self.trading_logger = logger
        self.logger = logger.logger
        self.is_running = False
        self.run_id = datetime.now().strftime('%Y%m%d_%H%M%S')

        conn = config.connection
        self.wallet = Keypair.from_base58_string(conn.wallet_private_key)
        self.tip_account = Pubkey.from_string(conn.jito_tip_account)
        self.client = AsyncClient(conn.rpc_url, commitment=Processed)
        self.session: Optional[aiohttp.ClientSession] = None

        self.position_manager = PositionManager(self.logger)
        self.curve_client = CurveClient(self.client, self.logger)
        self.decoder = CreationEventDecoder(self.logger)
        self.data_feed = StreamFeed(conn.ws_url, conn.pump_program_id, self.logger, conn.stream_mode)

        self.db_service = DatabaseService(conn.db_url, self.run_id) if conn.db_url else None

        # Built in start() once the HTTP session exists
        self.chain_tracker: Optional[ChainTracker] = None
        self.bundle_client: Optional[JitoBundleClient] = None
        self.stats_recorder: Optional[TradeStatsRecorder] = None
        self.executor: Optional[TradeExecutor] = None

        self.tracker: Optional[ValuationTracker] = None
        self._event_tasks: Set[asyncio.Task] = set()
        self._feed_task: Optional[asyncio.Task] = None
        self._stopping = False

        self.logger.info(
            f"Trading System Initializing: wallet={self.wallet.pubkey()}, run_id={self.run_id}, "
            f"stream_mode={conn.stream_mode}, database={'on' if self.db_service else 'off'}"
        )
        self.logger.info(f"Settings: {config.as_dict()}")

    def _build_components(self):
        trading = self.config.trading
        self.session = aiohttp.ClientSession()
        self.chain_tracker = ChainTracker(self.client, self.session, self.logger)
        self.bundle_client = JitoBundleClient(
            self.session, self.config.connection.jito_block_engine_url, self.logger
        )
        self.stats_recorder = TradeStatsRecorder(
            csv_path=TRADES_CSV_PATH,
            logger=self.logger,
            buy_amount_sol=trading.buy_amount_sol,
            summary_path=SUMMARY_PATH,
            db_service=self.db_service,
            sol_price_provider=self.chain_tracker.get_sol_price
        )
        context = TradingContext(
            wallet=self.wallet,
            client=self.client,
            bundle_submitter=self.bundle_client,
            blockhash_provider=self.chain_tracker,
            stats_recorder=self.stats_recorder,
            position_manager=self.position_manager,
            tip_account=self.tip_account,
            buy_amount_lamports=trading.buy_amount_lamports,
            slippage_bps=trading.slippage_bps,
            tip_lamports=trading.jito_fixed_tip_lamports,
            compute_units=trading.default_compute_units,
            priority_fee_micro_lamports=trading.priority_fee_micro_lamports,
            tracking=self.config.tracking
        )
        self.executor = TradeExecutor(context, self.curve_client, self.logger)

    async def start(self):
        """Start background services and the stream; returns once the stream is running"""
        try:
            self.is_running = True
            self.logger.critical("Trading System Starting")

            self._build_components()
            await self.chain_tracker.start()

            self.data_feed.add_callback(self.on_transaction)
            self._feed_task = asyncio.create_task(self.data_feed.start())
        except Exception as e:
            self.logger.critical(f"Failed to start trading system: {str(e)}")
            self.is_running = False
            raise

    async def on_transaction(self, record: TransactionRecord):
        """Stream callback. Admission runs in its own task so the stream keeps reading."""
        if not self.is_running or self.position_manager.is_shutting_down:
            return
        event = self.decoder.decode(record)
        if event is None:
            return
        self.logger.info(f"Creation event: {event.symbol} ({event.mint}) in {event.signature}")
        task = asyncio.create_task(self.position_manager.handle_event(event, self._buy_and_track))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def _buy_and_track(self, position: Position) -> bool:
        bought = await self.executor.buy(position)
        if not bought:
            return False
        if self.position_manager.is_shutting_down:
            # stop() may already have passed the forced sell check
            self.logger.warning(f"Bought {position.mint} during shutdown, tracker not started")
            return True

        self.tracker = ValuationTracker(
            position=position,
            manager=self.position_manager,
            curve_client=self.curve_client,
            executor=self.executor,
            exit_params=self.config.exits,
            tracking_params=self.config.tracking,
            wallet=self.wallet.pubkey(),
            logger=self.logger
        )
        self.tracker.start()
        return True

    async def _wait_for_admissions(self):
        """Give an in-flight buy a bounded chance to settle before selling"""
        pending = [task for task in self._event_tasks if not task.done()]
        if not pending:
            return
        self.logger.info(f"Waiting up to {SHUTDOWN_CONFIRMATION_TIMEOUT}s for {len(pending)} pending admission(s)")
        _, still_pending = await asyncio.wait(pending, timeout=SHUTDOWN_CONFIRMATION_TIMEOUT)
        if still_pending:
            self.logger.warning(f"{len(still_pending)} admission(s) still pending at shutdown")

    async def _ensure_cached_curve(self, position: Position):
        """A position bought during shutdown has no curve snapshot yet"""
        if position.cached_curve is not None:
            return
        curve, error = await self.curve_client.fetch_curve_with_retry(Pubkey.from_string(position.bonding_curve))
        if curve is not None:
            position.cached_curve = CachedValue(curve, time())
        else:
            self.logger.error(f"Could not fetch curve for shutdown sell of {position.mint}: {error}")

    async def _shutdown_sell(self):
        position = self.position_manager.active_position
        if position is None:
            self.logger.info("No active position at shutdown")
            return
        if position.state in NO_SHUTDOWN_SELL_STATES:
            self.logger.info(f"Active position {position.mint} is {position.state.value}, no shutdown sell")
            return
        if position.state == PositionState.BUYING:
            self.logger.warning(f"Position {position.mint} is still buying, cannot sell at shutdown")
            return

        self.logger.warning(f"Selling {position.mint} before shutdown")
        position.sell_reason = "Shutdown"
        await self._ensure_cached_curve(position)
        try:
            sold = await self.executor.sell(position, None, is_shutdown=True)
            if not sold:
                self.logger.error(f"Shutdown sell of {position.mint} failed: {position.sell_error}")
        except Exception as e:
            self.logger.error(f"Shutdown sell of {position.mint} raised: {str(e)}")

    def _record_unfinished(self):
        """A position still held after the shutdown sell gets its one stats record here"""
        position = self.position_manager.active_position
        if position is None or self.stats_recorder is None:
            return
        if position.state in (PositionState.SOLD, PositionState.FAILED):
            return
        if position.state == PositionState.SELLING and not position.sell_error:
            position.sell_error = "Sell still in flight at shutdown"
        self.logger.warning(f"Recording {position.mint} as left {position.state.value} at shutdown")
        self.stats_recorder.record(position)

    async def stop(self):
        """Shut down: stop admissions, sell out, then tear down services"""
        if self._stopping:
            return
        self._stopping = True
        self.logger.critical("Initiating trading system shutdown")
        self.position_manager.signal_shutdown()

        if self.tracker is not None:
            await self.tracker.stop()
            if not await self.tracker.wait_for_sell(SHUTDOWN_CONFIRMATION_TIMEOUT):
                self.logger.error("Timed out waiting for an in-flight sell, leaving it to finish")

        if self.executor is not None:
            await self._wait_for_admissions()
            await self._shutdown_sell()
            self._record_unfinished()

        self.logger.info("Shutting down services...")
        self.is_running = False
        await self.data_feed.stop()
        if self._feed_task is not None:
            self._feed_task.cancel()
            await asyncio.gather(self._feed_task, return_exceptions=True)
        for task in list(self._event_tasks):
            task.cancel()
        await asyncio.gather(*self._event_tasks, return_exceptions=True)

        if self.chain_tracker is not None:
            await self.chain_tracker.stop()

        if self.stats_recorder is not None:
            self.stats_recorder.log_stats()
            self.stats_recorder.save_summary()

        await self.close()
        self.logger.info("Trading system stopped successfully")

    async def close(self):
        try:
            if self.session is not None and not self.session.closed:
                await self.session.close()
            await self.client.close()
        except Exception as e:
            self.logger.error(f"Error closing clients: {str(e)}")
        if self.db_service is not None:
            self.db_service.close()

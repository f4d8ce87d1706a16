import asyncio
from logging import Logger
from time import time
from typing import Callable, Optional
from solders.pubkey import Pubkey
from solana.rpc.commitment import Confirmed
from spl.token.instructions import get_associated_token_address
from pump_sniper.execution.bonding_curve import CurveClient
from pump_sniper.execution.pricing import calculate_market_cap
from pump_sniper.utils.config import ExitParameters, TrackingParameters
from pump_sniper.utils.retry import rpc_with_retry
from .exit_evaluator import ExitDecision, apply_decision, evaluate_exit
from .position_manager import PositionManager
from .types import CachedValue, Position, PositionState


class ValuationTracker:
    """Polls curve and balance for the active position and triggers exits.

    One tick runs at a time; the next is scheduled only after the previous
    one finishes. The loop ends on its own once the position is no longer
    the active one or leaves TRACKING, and is re-armed if a sell returns
    the position to TRACKING.
    """

    def __init__(
        self,
        position: Position,
        manager: PositionManager,
        curve_client: CurveClient,
        executor,
        exit_params: ExitParameters,
        tracking_params: TrackingParameters,
        wallet: Pubkey,
        logger: Logger,
        clock: Callable[[], float] = time
    ):
        self.position = position
        self.manager = manager
        self.curve_client = curve_client
        self.executor = executor
        self.exit_params = exit_params
        self.tracking_params = tracking_params
        self.logger = logger
        self.clock = clock

        self.bonding_curve = Pubkey.from_string(position.bonding_curve)
        self.token_account = get_associated_token_address(wallet, Pubkey.from_string(position.mint))

        self._task: Optional[asyncio.Task] = None
        self._sell_task: Optional[asyncio.Task] = None
        self._stopped = False
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self._stopped or self.is_running:
            return
        self.logger.info(f"Tracking {self.position.mint} every {self.tracking_params.mc_check_interval_ms}ms")
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        """Cancel the polling loop. An in-flight sell is left to finish."""
        self._stopped = True
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    def _should_continue(self) -> bool:
        return self.manager.is_active(self.position) and self.position.state == PositionState.TRACKING

    async def _run(self):
        while self._should_continue():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Error during market cap tracking for {self.position.mint}: {str(e)}")

            if not self._should_continue():
                break
            await asyncio.sleep(self.tracking_params.interval_sec)

        self.logger.info(f"Tracking loop for {self.position.mint} ended (state: {self.position.state.value})")

    async def tick(self) -> Optional[ExitDecision]:
        """Refresh snapshots, update market cap and evaluate exits once"""
        if not self._should_continue():
            return None
        self.ticks += 1
        mint = self.position.mint

        curve_result, balance_result = await asyncio.gather(
            rpc_with_retry(
                lambda: self.curve_client.fetch_curve(self.bonding_curve, Confirmed),
                f"fetch curve ({self.bonding_curve})",
                logger=self.logger
            ),
            rpc_with_retry(
                lambda: self.curve_client.fetch_token_balance(self.token_account, Confirmed),
                f"fetch balance ({self.token_account})",
                logger=self.logger
            ),
            return_exceptions=True
        )
        now = self.clock()

        curve = None
        if isinstance(curve_result, BaseException):
            self.logger.warning(f"Curve refresh failed for {mint}, keeping cached value: {str(curve_result)}")
        else:
            curve = curve_result
            self.position.cached_curve = CachedValue(curve, now)

        if isinstance(balance_result, BaseException):
            self.logger.warning(f"Balance refresh failed for {mint}, keeping cached value: {str(balance_result)}")
        elif balance_result.is_known:
            self.position.cached_balance = CachedValue(balance_result, now)
            self.position.tokens_held = balance_result

        # Exits are only evaluated against a market cap from this tick's curve read
        if curve is None:
            return None

        if not curve.has_reserves:
            self.logger.warning(f"Cannot calculate market cap for {mint}: bonding curve reserves are zero")
            return None

        market_cap = calculate_market_cap(
            curve.token_total_supply, curve.virtual_sol_reserves, curve.virtual_token_reserves
        )
        previous = self.position.current_market_cap
        self.position.record_market_cap(market_cap, now)
        self.logger.debug(
            f"Market cap for {mint}: {market_cap:.4f} SOL "
            f"(previous {previous}, max {self.position.max_market_cap})"
        )

        # A shutdown sell may have taken over while the fetches were in flight
        if self.position.state != PositionState.TRACKING:
            return None

        decision = evaluate_exit(self.position, self.exit_params, now)
        if decision is not None:
            self.logger.info(
                f"Sell condition met for {mint}: {decision.description} "
                f"(current {self.position.current_market_cap}, initial {self.position.initial_market_cap}, "
                f"max {self.position.max_market_cap})"
            )
            apply_decision(self.position, decision)
            self._sell_task = asyncio.create_task(self._run_sell(decision))
        return decision

    async def _run_sell(self, decision: ExitDecision):
        sell_pct = None if decision.is_full_exit else decision.sell_pct
        try:
            await self.executor.sell(self.position, sell_pct)
        except Exception as e:
            self.logger.error(f"Sell for {self.position.mint} raised unexpectedly: {str(e)}")
            if self.position.state == PositionState.SELLING:
                self.position.sell_error = str(e)
                self.position.transition_to(PositionState.TRACKING)

        if self._should_continue():
            self.start()

    async def wait_for_sell(self, timeout: Optional[float] = None) -> bool:
        """Wait for a sell launched by the tracker, if any.

        The sell is never cancelled: on timeout it keeps running and this
        returns False.
        """
        if self._sell_task is None or self._sell_task.done():
            return True
        done, _ = await asyncio.wait({self._sell_task}, timeout=timeout)
        return bool(done)

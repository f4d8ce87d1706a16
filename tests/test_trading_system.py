import asyncio

import pandas as pd
import pytest
from solders.keypair import Keypair

from pump_sniper.core.exit_evaluator import ExitDecision, ExitReason
from pump_sniper.core.trade_stats import TradeStatsRecorder
from pump_sniper.core.trading_system import TradingSystem
from pump_sniper.core.types import CachedValue, PositionState, TransactionRecord
from pump_sniper.core.valuation_tracker import ValuationTracker
from pump_sniper.utils.config import Config, ExitParameters, TrackingParameters
from pump_sniper.utils.logger import TradingLogger

from conftest import make_curve, make_event


class RecordingExecutor:
    """Stands in for TradeExecutor; a sell always lands in full"""

    def __init__(self, manager):
        self.manager = manager
        self.sells = []

    async def sell(self, position, sell_pct=None, is_shutdown=False):
        self.sells.append((position.mint, sell_pct, is_shutdown, position.sell_reason))
        position.transition_to(PositionState.SELLING)
        position.transition_to(PositionState.SOLD)
        self.manager.release(position)
        return True


class OneShotCurveClient:
    def __init__(self, curve=None, error=None):
        self.curve = curve
        self.error = error
        self.calls = 0

    async def fetch_curve_with_retry(self, bonding_curve):
        self.calls += 1
        return self.curve, self.error


@pytest.fixture
def system(monkeypatch, fake_client):
    monkeypatch.setenv("TRADING_WALLET_PRIVATE_KEY", str(Keypair()))
    monkeypatch.setenv("RPC_URL", "https://rpc.example")
    monkeypatch.setenv("WS_URL", "wss://ws.example")
    monkeypatch.setenv("JITO_BLOCK_ENGINE_URL", "https://jito.example")
    monkeypatch.setenv("JITO_TIP_ACCOUNT_PUBKEY", "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5")
    monkeypatch.delenv("DB_URL", raising=False)
    monkeypatch.delenv("STREAM_MODE", raising=False)

    config = Config(config_path=None, env_file=None)
    bot = TradingSystem(config, TradingLogger(log_to_file=False, console_output=False))
    bot.client = fake_client
    bot.executor = RecordingExecutor(bot.position_manager)
    return bot


async def admit(bot, end_state):
    async def buy(position):
        if end_state == PositionState.FAILED:
            position.transition_to(PositionState.FAILED)
            return False
        if end_state == PositionState.TRACKING:
            position.transition_to(PositionState.TRACKING)
        return True

    return await bot.position_manager.handle_event(make_event(), buy)


async def test_shutdown_sells_tracked_position_once(system):
    position = await admit(system, PositionState.TRACKING)
    position.cached_curve = None
    system.curve_client = OneShotCurveClient(curve=make_curve())

    await system.stop()
    await system.stop()

    assert system.executor.sells == [(position.mint, None, True, "Shutdown")]
    assert position.cached_curve.value == make_curve()
    assert system.position_manager.active_position is None
    assert system.is_running is False


async def test_shutdown_keeps_existing_curve_cache(system):
    position = await admit(system, PositionState.TRACKING)
    position.cached_curve = CachedValue(make_curve(), 1.0)
    system.curve_client = OneShotCurveClient(curve=make_curve(virtual_sol_reserves=1))

    await system.stop()

    assert system.curve_client.calls == 0
    assert len(system.executor.sells) == 1


async def test_position_still_buying_is_not_sold(system):
    position = await admit(system, PositionState.BUYING)

    await system.stop()

    assert position.state == PositionState.BUYING
    assert system.executor.sells == []


async def test_no_position_no_sell(system):
    await admit(system, PositionState.FAILED)

    await system.stop()

    assert system.executor.sells == []


async def test_events_ignored_once_stopped(system):
    system.is_running = True
    await system.stop()

    record = TransactionRecord(signature="sig", slot=1, block_time=1.0, logs=(), has_meta=True, err=None)
    await system.on_transaction(record)

    assert system._event_tasks == set()


class FailingExecutor:
    """Every sell times out on confirmation and returns the position to tracking"""

    def __init__(self):
        self.sells = 0

    async def sell(self, position, sell_pct=None, is_shutdown=False):
        self.sells += 1
        position.transition_to(PositionState.SELLING)
        position.sell_error = "Sell transaction not confirmed"
        position.transition_to(PositionState.TRACKING)
        return False


class SlowExecutor:
    """A full sell that lands after a delay"""

    def __init__(self, manager, recorder, delay):
        self.manager = manager
        self.recorder = recorder
        self.delay = delay

    async def sell(self, position, sell_pct=None, is_shutdown=False):
        await asyncio.sleep(self.delay)
        position.transition_to(PositionState.SOLD)
        self.recorder.record(position)
        self.manager.release(position)
        return True


@pytest.fixture
def recorder(system, tmp_path):
    stats = TradeStatsRecorder(
        csv_path=str(tmp_path / "trades.csv"),
        logger=system.logger,
        buy_amount_sol=0.01,
        summary_path=str(tmp_path / "bot_summary.json")
    )
    system.stats_recorder = stats
    return stats


async def test_failed_shutdown_sell_is_recorded_once(system, recorder):
    position = await admit(system, PositionState.TRACKING)
    position.cached_curve = CachedValue(make_curve(), 1.0)
    system.executor = FailingExecutor()

    await system.stop()

    rows = pd.read_csv(recorder.csv_path)
    assert system.executor.sells == 1
    assert list(rows["outcome"]) == ["failed_sell"]
    assert rows.loc[0, "sell_error"] == "Sell transaction not confirmed"
    assert recorder.stats.failed_sells == 1
    assert position.stats_recorded


async def test_in_flight_sell_outlives_shutdown_wait(system, recorder, monkeypatch):
    monkeypatch.setattr("pump_sniper.core.trading_system.SHUTDOWN_CONFIRMATION_TIMEOUT", 0.05)
    position = await admit(system, PositionState.TRACKING)
    tracker = ValuationTracker(
        position=position,
        manager=system.position_manager,
        curve_client=OneShotCurveClient(curve=make_curve()),
        executor=SlowExecutor(system.position_manager, recorder, delay=0.3),
        exit_params=ExitParameters(),
        tracking_params=TrackingParameters(),
        wallet=system.wallet.pubkey(),
        logger=system.logger
    )
    position.transition_to(PositionState.SELLING)
    tracker._sell_task = asyncio.create_task(tracker._run_sell(ExitDecision(ExitReason.ENTRY_STOP_LOSS, "Stop loss")))
    system.tracker = tracker

    await system.stop()

    assert position.state == PositionState.SELLING
    assert system.executor.sells == []
    sell_task = tracker._sell_task
    await asyncio.wait({sell_task}, timeout=2)
    assert sell_task.done() and not sell_task.cancelled()
    assert position.state == PositionState.SOLD

    rows = pd.read_csv(recorder.csv_path)
    assert len(rows) == 1
    assert rows.loc[0, "sell_error"] == "Sell still in flight at shutdown"


async def test_pending_buy_at_shutdown_is_recorded(system, recorder):
    position = await admit(system, PositionState.BUYING)

    await system.stop()

    assert position.state == PositionState.BUYING
    assert list(pd.read_csv(recorder.csv_path)["outcome"]) == ["other"]

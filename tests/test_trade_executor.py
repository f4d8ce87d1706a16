import pytest
from solders.pubkey import Pubkey

from conftest import curve_account_data, make_curve, make_position, make_status
from pump_sniper.core.types import CachedValue, PositionState, TokenBalance
from pump_sniper.execution.bonding_curve import CurveClient
from pump_sniper.execution.jito_client import BundleSubmissionError
from pump_sniper.execution.trade_executor import TradeExecutor, TradingContext
from pump_sniper.utils.config import TrackingParameters


@pytest.fixture
def tracking():
    return TrackingParameters()


@pytest.fixture
def executor(wallet, fake_client, bundle_submitter, blockhash_provider, stats_recorder,
             position_manager, tracking, logger, clock):
    context = TradingContext(
        wallet=wallet,
        client=fake_client,
        bundle_submitter=bundle_submitter,
        blockhash_provider=blockhash_provider,
        stats_recorder=stats_recorder,
        position_manager=position_manager,
        tip_account=Pubkey.new_unique(),
        buy_amount_lamports=10_000_000,
        slippage_bps=500,
        tip_lamports=100_000,
        compute_units=400_000,
        tracking=tracking
    )
    return TradeExecutor(context, CurveClient(fake_client, logger), logger, clock=clock)


def holding(clock, amount=1_000_000, state=PositionState.TRACKING, age=0.0):
    position = make_position(state)
    position.tokens_held = TokenBalance.known(amount)
    position.cached_balance = CachedValue(TokenBalance.known(amount), clock() - age)
    position.cached_curve = CachedValue(make_curve(), clock() - age)
    return position


# Buy

async def test_buy_success(executor, fake_client, bundle_submitter, stats_recorder):
    fake_client.account_results = [curve_account_data()]
    fake_client.status_results = [make_status("processed")]
    fake_client.balance_results = [35_000_000_000]
    position = make_position(PositionState.BUYING)

    assert await executor.buy(position) is True

    assert position.state == PositionState.TRACKING
    assert position.buy_tx_signature is not None
    assert position.tokens_held == TokenBalance.known(35_000_000_000)
    assert position.cached_balance.value.amount == 35_000_000_000
    assert len(bundle_submitter.bundles) == 1
    assert stats_recorder.recorded == []

    tx = bundle_submitter.bundles[0][0]
    assert str(tx.signatures[0]) == position.buy_tx_signature


async def test_buy_with_unknown_balance_still_tracks(executor, fake_client, monkeypatch):
    fake_client.account_results = [curve_account_data()]
    fake_client.status_results = [make_status("confirmed")]
    position = make_position(PositionState.BUYING)

    async def exhausted(token_account, commitment):
        return TokenBalance.unknown()

    monkeypatch.setattr(executor.curve_client, "fetch_token_balance_with_retry", exhausted)

    assert await executor.buy(position) is True
    assert position.state == PositionState.TRACKING
    assert not position.tokens_held.is_known
    assert position.cached_balance is None


async def test_buy_aborts_on_curve_error(executor, fake_client, bundle_submitter, stats_recorder):
    fake_client.account_results = [RuntimeError("Internal error")]
    position = make_position(PositionState.BUYING)

    assert await executor.buy(position) is False

    assert position.state == PositionState.FAILED
    assert "Failed to fetch bonding curve" in position.buy_error
    assert fake_client.calls["get_account_info"] == 1
    assert bundle_submitter.bundles == []
    assert stats_recorder.recorded == [position]


async def test_buy_fails_on_zero_reserves(executor, fake_client, stats_recorder):
    fake_client.account_results = [curve_account_data(virtual_sol_reserves=0)]
    position = make_position(PositionState.BUYING)

    assert await executor.buy(position) is False
    assert position.state == PositionState.FAILED
    assert "zero" in position.buy_error


async def test_buy_records_bundle_errors(executor, fake_client, bundle_submitter):
    fake_client.account_results = [curve_account_data()]
    bundle_submitter.error = BundleSubmissionError("bundle rejected", code=-32602)
    position = make_position(PositionState.BUYING)

    assert await executor.buy(position) is False
    assert position.state == PositionState.FAILED
    assert position.buy_error.startswith("Jito bundle error: bundle rejected")


async def test_buy_records_on_chain_failure(executor, fake_client, position_manager):
    fake_client.account_results = [curve_account_data()]
    fake_client.status_results = [make_status("processed", err={"InstructionError": [3, {"Custom": 6002}]})]
    fake_client.transaction_err = {"InstructionError": [3, {"Custom": 6002}]}
    position = make_position(PositionState.BUYING)

    assert await executor.buy(position) is False

    assert position.state == PositionState.FAILED
    assert position.buy_error.startswith("Confirmation timeout ('processed')")
    assert "6002" in position.buy_error
    assert fake_client.calls["get_signature_statuses"] == 1


# Sell

async def test_zero_balance_sells_without_a_transaction(executor, clock, bundle_submitter, stats_recorder):
    position = holding(clock, amount=0)

    assert await executor.sell(position) is True

    assert position.state == PositionState.SOLD
    assert bundle_submitter.bundles == []
    assert stats_recorder.recorded == [position]


async def test_full_sell(executor, clock, fake_client, bundle_submitter, stats_recorder, position_manager):
    position = holding(clock)
    fake_client.status_results = [make_status("processed")]

    assert await executor.sell(position) is True

    assert position.state == PositionState.SOLD
    assert position.sell_tx_signature is not None
    assert position.tokens_held == TokenBalance.known(0)
    assert len(bundle_submitter.bundles) == 1
    assert stats_recorder.recorded == [position]


async def test_partial_sell_returns_to_tracking(executor, clock, fake_client, stats_recorder):
    position = holding(clock, amount=1_000)
    position.transition_to(PositionState.SELLING)
    fake_client.status_results = [make_status("processed")]

    assert await executor.sell(position, sell_pct=40) is True

    assert position.state == PositionState.TRACKING
    assert position.tokens_held == TokenBalance.known(600)
    assert position.cached_balance.value.amount == 600
    assert stats_recorder.partials == [position]
    assert stats_recorder.recorded == []


async def test_partial_amount_of_zero_is_skipped(executor, clock, bundle_submitter):
    position = holding(clock, amount=1)

    assert await executor.sell(position, sell_pct=40) is False
    assert position.state == PositionState.TRACKING
    assert position.sell_error is None
    assert bundle_submitter.bundles == []


async def test_missing_cache_aborts_sell(executor):
    position = make_position(PositionState.TRACKING)

    assert await executor.sell(position) is False
    assert position.state == PositionState.TRACKING
    assert position.sell_error == "Missing cached balance or curve data"


async def test_unknown_balance_aborts_sell(executor, clock):
    position = holding(clock)
    position.cached_balance = CachedValue(TokenBalance.unknown(), clock())

    assert await executor.sell(position) is False
    assert position.state == PositionState.TRACKING


async def test_stale_cache_warns_and_proceeds_by_default(executor, clock, fake_client):
    position = holding(clock, age=5.0)
    fake_client.status_results = [make_status("processed")]

    assert await executor.sell(position) is True
    assert position.state == PositionState.SOLD


async def test_stale_cache_can_abort(executor, clock, tracking, bundle_submitter):
    tracking.abort_on_stale_cache = True
    position = holding(clock, age=5.0)

    assert await executor.sell(position) is False
    assert position.state == PositionState.TRACKING
    assert "stale" in position.sell_error
    assert bundle_submitter.bundles == []


async def test_sell_confirmation_failure_returns_to_tracking(executor, clock, fake_client):
    position = holding(clock)
    fake_client.status_results = [make_status("processed", err="InsufficientFunds")]
    fake_client.transaction_err = "InsufficientFunds"

    assert await executor.sell(position, is_shutdown=True) is False
    assert position.state == PositionState.TRACKING
    assert "InsufficientFunds" in position.sell_error


async def test_cannot_sell_a_finished_position(executor, clock):
    position = holding(clock, state=PositionState.SOLD)

    assert await executor.sell(position) is False
    assert position.state == PositionState.SOLD

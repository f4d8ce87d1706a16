"""
Shared fakes for the RPC client, bundle submitter and blockhash provider.

No test touches the network: every external client is replaced here.
"""

import logging
import struct
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from pump_sniper.core.position_manager import PositionManager
from pump_sniper.core.types import CreationEvent, CurveSnapshot, Position, PositionState
from pump_sniper.utils.config import TrackingParameters


CURVE_ACCOUNT_DISCRIMINATOR = bytes.fromhex("17b7f83760d8ac60")


def curve_account_data(
    virtual_token_reserves: int = 1_073_000_000_000_000,
    virtual_sol_reserves: int = 30_000_000_000,
    real_token_reserves: int = 793_100_000_000_000,
    real_sol_reserves: int = 0,
    token_total_supply: int = 1_000_000_000_000_000,
    complete: bool = False
) -> bytes:
    """Raw bonding curve account bytes as the program stores them"""
    return CURVE_ACCOUNT_DISCRIMINATOR + struct.pack(
        "<QQQQQ?",
        virtual_token_reserves,
        virtual_sol_reserves,
        real_token_reserves,
        real_sol_reserves,
        token_total_supply,
        complete
    )


def make_curve(**overrides) -> CurveSnapshot:
    return CurveSnapshot.from_buffer(curve_account_data(**overrides))


def make_status(confirmation_status: Optional[str] = "processed", err: Any = None):
    return SimpleNamespace(confirmation_status=confirmation_status, err=err)


class FakeAsyncClient:
    """Scripted stand-in for solana.rpc.async_api.AsyncClient.

    Each *_results list is consumed one item per call; an Exception item is
    raised, anything else is returned wrapped the way solana-py wraps it.
    The last item repeats once the list runs out.
    """

    def __init__(self):
        self.account_results: List[Any] = []
        self.balance_results: List[Any] = []
        self.status_results: List[Any] = []
        self.transaction_err: Any = None
        self.blockhash = Hash.new_unique()
        self.calls: Dict[str, int] = {}

    def _count(self, name: str) -> int:
        self.calls[name] = self.calls.get(name, 0) + 1
        return self.calls[name]

    @staticmethod
    def _next(results: List[Any], call_number: int):
        if not results:
            return None
        item = results[min(call_number, len(results)) - 1]
        if isinstance(item, Exception):
            raise item
        return item

    async def get_account_info(self, pubkey, commitment=None):
        data = self._next(self.account_results, self._count("get_account_info"))
        if data is None:
            return SimpleNamespace(value=None)
        return SimpleNamespace(value=SimpleNamespace(data=data))

    async def get_token_account_balance(self, pubkey, commitment=None):
        amount = self._next(self.balance_results, self._count("get_token_account_balance"))
        if amount is None:
            return SimpleNamespace(value=None)
        return SimpleNamespace(value=SimpleNamespace(amount=str(amount)))

    async def get_signature_statuses(self, signatures, search_transaction_history=False):
        status = self._next(self.status_results, self._count("get_signature_statuses"))
        return SimpleNamespace(value=[status])

    async def get_transaction(self, signature, commitment=None, max_supported_transaction_version=None):
        self._count("get_transaction")
        meta = SimpleNamespace(err=self.transaction_err)
        return SimpleNamespace(value=SimpleNamespace(transaction=SimpleNamespace(meta=meta)))

    async def get_latest_blockhash(self, commitment=None):
        self._count("get_latest_blockhash")
        return SimpleNamespace(value=SimpleNamespace(blockhash=self.blockhash))

    async def get_epoch_info(self):
        return SimpleNamespace(value=SimpleNamespace(epoch=1, absolute_slot=100))

    async def close(self):
        pass


class FakeBundleSubmitter:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.bundles: List[list] = []

    async def send_bundle(self, transactions) -> str:
        if self.error is not None:
            raise self.error
        self.bundles.append(list(transactions))
        return f"bundle-{len(self.bundles)}"

    async def get_tip_accounts(self) -> List[str]:
        return []


class FakeBlockhashProvider:
    def __init__(self):
        self.blockhash = Hash.new_unique()

    async def get_latest_blockhash(self) -> Hash:
        return self.blockhash


class FakeStatsRecorder:
    def __init__(self):
        self.recorded: List[Position] = []
        self.partials: List[Position] = []

    def record(self, position: Position):
        self.recorded.append(position)

    def record_partial(self, position: Position):
        self.partials.append(position)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("pump_sniper.tests")


@pytest.fixture
def wallet() -> Keypair:
    return Keypair()


@pytest.fixture
def fake_client() -> FakeAsyncClient:
    return FakeAsyncClient()


@pytest.fixture
def bundle_submitter() -> FakeBundleSubmitter:
    return FakeBundleSubmitter()


@pytest.fixture
def blockhash_provider() -> FakeBlockhashProvider:
    return FakeBlockhashProvider()


@pytest.fixture
def stats_recorder() -> FakeStatsRecorder:
    return FakeStatsRecorder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def position_manager(logger) -> PositionManager:
    return PositionManager(logger)


@pytest.fixture
def tracking_params() -> TrackingParameters:
    return TrackingParameters()


def make_event(mint: Optional[Pubkey] = None, symbol: str = "TEST") -> CreationEvent:
    mint = mint or Pubkey.new_unique()
    return CreationEvent(
        signature="5" * 64,
        block_time=1_700_000_000.0,
        mint=str(mint),
        bonding_curve=str(Pubkey.new_unique()),
        creator=str(Pubkey.new_unique()),
        name="Test Token",
        symbol=symbol,
        uri="https://example.com/meta.json",
        creation_slot=123
    )


def make_position(state: PositionState = PositionState.TRACKING, **overrides) -> Position:
    """A position moved along valid edges to the requested state"""
    position = Position.from_event(make_event())
    path = {
        PositionState.DETECTED: [],
        PositionState.BUYING: [PositionState.BUYING],
        PositionState.TRACKING: [PositionState.BUYING, PositionState.TRACKING],
        PositionState.SELLING: [PositionState.BUYING, PositionState.TRACKING, PositionState.SELLING],
        PositionState.SOLD: [PositionState.BUYING, PositionState.TRACKING, PositionState.SELLING, PositionState.SOLD],
        PositionState.FAILED: [PositionState.BUYING, PositionState.FAILED],
    }[state]
    for step in path:
        position.transition_to(step)
    for name, value in overrides.items():
        setattr(position, name, value)
    return position

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Generic, Optional, Tuple, TypeVar
from construct import Struct, Int64ul, Flag

T = TypeVar("T")

UNKNOWN_BALANCE = "UNKNOWN"


class PositionState(str, Enum):
    DETECTED = "detected"
    BUYING = "buying"
    TRACKING = "tracking"
    SELLING = "selling"
    SOLD = "sold"
    FAILED = "failed"


# selling -> tracking is the recovery path for failed or partial sells
TRANSITIONS: Dict[PositionState, FrozenSet[PositionState]] = {
    PositionState.DETECTED: frozenset({PositionState.BUYING}),
    PositionState.BUYING: frozenset({PositionState.TRACKING, PositionState.FAILED}),
    PositionState.TRACKING: frozenset({PositionState.SELLING}),
    PositionState.SELLING: frozenset({PositionState.SOLD, PositionState.TRACKING, PositionState.FAILED}),
    PositionState.SOLD: frozenset(),
    PositionState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({PositionState.SOLD, PositionState.FAILED})


class InvalidStateTransition(Exception):
    """Raised when a position is moved along an edge the lifecycle does not allow"""
    pass


@dataclass(frozen=True)
class TransactionRecord:
    """A transaction notification normalized from the stream"""
    signature: str
    slot: Optional[int]
    block_time: float
    has_meta: bool
    err: Optional[object]
    logs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CreationEvent:
    """A decoded pump.fun create event"""
    signature: str
    block_time: float
    mint: str
    bonding_curve: str
    creator: str
    name: str
    symbol: str
    uri: str
    creation_slot: Optional[int] = None


@dataclass(frozen=True)
class CurveSnapshot:
    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool

    @property
    def has_reserves(self) -> bool:
        return self.virtual_token_reserves > 0 and self.virtual_sol_reserves > 0

    @classmethod
    def from_buffer(cls, data: bytes) -> "CurveSnapshot":
        # Skip 8-byte account discriminator
        CURVE_STRUCT = Struct(
            "virtual_token_reserves" / Int64ul,
            "virtual_sol_reserves" / Int64ul,
            "real_token_reserves" / Int64ul,
            "real_sol_reserves" / Int64ul,
            "token_total_supply" / Int64ul,
            "complete" / Flag
        )
        parsed = CURVE_STRUCT.parse(data[8:])
        return cls(
            virtual_token_reserves=parsed.virtual_token_reserves,
            virtual_sol_reserves=parsed.virtual_sol_reserves,
            real_token_reserves=parsed.real_token_reserves,
            real_sol_reserves=parsed.real_sol_reserves,
            token_total_supply=parsed.token_total_supply,
            complete=bool(parsed.complete),
        )


@dataclass(frozen=True)
class TokenBalance:
    """Token amount in base units, or explicitly unknown after failed fetches.

    An unknown balance is never treated as zero.
    """
    amount: Optional[int] = None

    @classmethod
    def known(cls, amount: int) -> "TokenBalance":
        if amount < 0:
            raise ValueError(f"Token balance cannot be negative: {amount}")
        return cls(amount=amount)

    @classmethod
    def unknown(cls) -> "TokenBalance":
        return cls(amount=None)

    @property
    def is_known(self) -> bool:
        return self.amount is not None

    def __str__(self) -> str:
        return UNKNOWN_BALANCE if self.amount is None else str(self.amount)


@dataclass(frozen=True)
class CachedValue(Generic[T]):
    value: T
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at


@dataclass
class Position:
    """The single active trade"""
    mint: str
    bonding_curve: str
    creator: str
    token_name: str
    token_symbol: str
    token_uri: str
    detected_at: float
    creation_slot: Optional[int] = None
    state: PositionState = PositionState.DETECTED

    buy_tx_signature: Optional[str] = None
    sell_tx_signature: Optional[str] = None
    buy_sim_error: Optional[str] = None
    buy_error: Optional[str] = None
    sell_error: Optional[str] = None

    tokens_held: Optional[TokenBalance] = None

    initial_market_cap: Optional[float] = None
    current_market_cap: Optional[float] = None
    max_market_cap: Optional[float] = None
    last_market_cap_update: Optional[float] = None
    last_new_max_at: Optional[float] = None

    sold_tp1: bool = False
    sold_tp2: bool = False
    creator_sold: bool = False
    sell_reason: Optional[str] = None
    stats_recorded: bool = False

    cached_curve: Optional[CachedValue[CurveSnapshot]] = field(default=None, repr=False)
    cached_balance: Optional[CachedValue[TokenBalance]] = field(default=None, repr=False)

    @classmethod
    def from_event(cls, event: CreationEvent) -> "Position":
        return cls(
            mint=event.mint,
            bonding_curve=event.bonding_curve,
            creator=event.creator,
            token_name=event.name,
            token_symbol=event.symbol,
            token_uri=event.uri,
            detected_at=event.block_time,
            creation_slot=event.creation_slot,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition_to(self, new_state: PositionState) -> bool:
        return new_state in TRANSITIONS[self.state]

    def transition_to(self, new_state: PositionState) -> None:
        if not self.can_transition_to(new_state):
            raise InvalidStateTransition(
                f"{self.mint}: {self.state.value} -> {new_state.value} is not allowed"
            )
        self.state = new_state

    def record_market_cap(self, market_cap: float, now: float) -> None:
        """Update current/initial/max market cap from a fresh computation"""
        self.current_market_cap = market_cap
        self.last_market_cap_update = now
        if self.initial_market_cap is None:
            self.initial_market_cap = market_cap
            self.max_market_cap = market_cap
            self.last_new_max_at = now
        elif self.max_market_cap is None or market_cap > self.max_market_cap:
            self.max_market_cap = market_cap
            self.last_new_max_at = now


@dataclass
class BotStats:
    total_trades: int = 0
    successful_trades: int = 0
    failed_buys: int = 0
    failed_sells: int = 0
    total_pnl_percent: float = 0.0

    @property
    def average_pnl_percent(self) -> Optional[float]:
        if self.successful_trades == 0:
            return None
        return self.total_pnl_percent / self.successful_trades

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from pump_sniper.utils.config import ExitParameters
from .types import Position, PositionState


class ExitReason(str, Enum):
    CREATOR_SOLD = "creator_sold"
    ENTRY_STOP_LOSS = "entry_stop_loss"
    TRAILING_STOP_LOSS = "trailing_stop_loss"
    STAGNATION = "stagnation"
    TAKE_PROFIT_2 = "take_profit_2"
    TAKE_PROFIT_1 = "take_profit_1"


@dataclass(frozen=True)
class ExitDecision:
    reason: ExitReason
    description: str
    sell_pct: Optional[float] = None     # None sells the whole balance

    @property
    def is_full_exit(self) -> bool:
        return self.sell_pct is None or self.sell_pct >= 100


def evaluate_exit(position: Position, params: ExitParameters, now: float) -> Optional[ExitDecision]:
    """Pick at most one exit for the current tick.

    Rules are checked in priority order and the first match wins. The
    position is not modified; callers apply the decision.
    """
    if position.state != PositionState.TRACKING:
        return None

    current = position.current_market_cap
    initial = position.initial_market_cap
    if current is None or initial is None or position.last_new_max_at is None:
        return None
    max_mc = position.max_market_cap if position.max_market_cap is not None else initial

    # creator_sold is never set: creator-sell detection is not wired up
    if position.creator_sold:
        return ExitDecision(ExitReason.CREATOR_SOLD, "Creator sell detected")

    if current < initial * (1 - params.entry_sl_pct / 100):
        return ExitDecision(
            ExitReason.ENTRY_STOP_LOSS,
            f"Entry SL hit ({params.entry_sl_pct}%): {current:.4f} < {initial:.4f}"
        )

    if current < max_mc * (1 - params.max_mc_sl_pct / 100):
        return ExitDecision(
            ExitReason.TRAILING_STOP_LOSS,
            f"Max MC SL hit ({params.max_mc_sl_pct}%): {current:.4f} vs max {max_mc:.4f}"
        )

    if now - position.last_new_max_at > params.stagnation_timeout_sec:
        return ExitDecision(
            ExitReason.STAGNATION,
            f"Stagnation timeout hit ({params.stagnation_timeout_sec}s without a new max)"
        )

    if not position.sold_tp2 and current >= initial * params.tp2_mc_mult:
        return ExitDecision(ExitReason.TAKE_PROFIT_2, f"TP2 hit (>= {params.tp2_mc_mult}x)")

    if not position.sold_tp1 and current >= initial * params.tp1_mc_mult:
        return ExitDecision(
            ExitReason.TAKE_PROFIT_1,
            f"TP1 hit (>= {params.tp1_mc_mult}x)",
            sell_pct=params.tp1_sell_pct
        )

    return None


def apply_decision(position: Position, decision: ExitDecision) -> None:
    """Record the decision on the position and move it to selling"""
    position.sell_reason = decision.description
    if decision.reason == ExitReason.TAKE_PROFIT_2:
        position.sold_tp2 = True
    elif decision.reason == ExitReason.TAKE_PROFIT_1:
        position.sold_tp1 = True
    position.transition_to(PositionState.SELLING)

from dataclasses import dataclass
from .constants import LAMPORTS_PER_SOL

BPS_DENOMINATOR = 10_000


class ZeroReservesError(ValueError):
    """Raised when a curve with an empty reserve is used for a quote"""
    pass


@dataclass(frozen=True)
class BuyQuote:
    expected_tokens: int
    min_tokens: int
    max_sol_cost: int


@dataclass(frozen=True)
class SellQuote:
    expected_sol: int
    min_sol: int


def _check_inputs(virtual_sol_reserves: int, virtual_token_reserves: int, amount: int, slippage_bps: int):
    if virtual_sol_reserves < 0 or virtual_token_reserves < 0 or amount < 0:
        raise ValueError("Reserves and amounts must be non-negative")
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValueError(f"Slippage must be between 0 and {BPS_DENOMINATOR} bps, got {slippage_bps}")
    if virtual_sol_reserves == 0 or virtual_token_reserves == 0:
        raise ZeroReservesError(
            f"Bonding curve reserves are zero (sol={virtual_sol_reserves}, token={virtual_token_reserves})"
        )


def apply_slippage(amount: int, slippage_bps: int) -> int:
    """Minimum acceptable output for an expected amount"""
    return amount * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def calculate_buy_quote(
    virtual_sol_reserves: int,
    virtual_token_reserves: int,
    sol_amount: int,
    slippage_bps: int
) -> BuyQuote:
    """Calculate tokens out for an exact SOL input.

    Args:
        virtual_sol_reserves: Curve virtual SOL reserves in lamports
        virtual_token_reserves: Curve virtual token reserves in base units
        sol_amount: SOL to spend in lamports
        slippage_bps: Slippage tolerance in basis points (1bp = 0.01%)

    Returns:
        BuyQuote with expected and minimum token amounts. The maximum SOL
        cost is the input itself.
    """
    _check_inputs(virtual_sol_reserves, virtual_token_reserves, sol_amount, slippage_bps)

    # Same operation order as the on-chain program; reordering changes rounding
    expected_tokens = virtual_token_reserves * sol_amount // (virtual_sol_reserves + sol_amount)
    return BuyQuote(
        expected_tokens=expected_tokens,
        min_tokens=apply_slippage(expected_tokens, slippage_bps),
        max_sol_cost=sol_amount,
    )


def calculate_sell_quote(
    virtual_sol_reserves: int,
    virtual_token_reserves: int,
    token_amount: int,
    slippage_bps: int
) -> SellQuote:
    """Calculate SOL out for an exact token input.

    Args:
        virtual_sol_reserves: Curve virtual SOL reserves in lamports
        virtual_token_reserves: Curve virtual token reserves in base units
        token_amount: Tokens to sell in base units
        slippage_bps: Slippage tolerance in basis points

    Returns:
        SellQuote with expected and minimum lamports out
    """
    _check_inputs(virtual_sol_reserves, virtual_token_reserves, token_amount, slippage_bps)

    expected_sol = virtual_sol_reserves * token_amount // (virtual_token_reserves + token_amount)
    return SellQuote(
        expected_sol=expected_sol,
        min_sol=apply_slippage(expected_sol, slippage_bps),
    )


def calculate_market_cap_lamports(token_total_supply: int, virtual_sol_reserves: int, virtual_token_reserves: int) -> int:
    if virtual_sol_reserves <= 0 or virtual_token_reserves <= 0:
        raise ZeroReservesError("Cannot calculate market cap: bonding curve reserves are zero")
    return token_total_supply * virtual_sol_reserves // virtual_token_reserves


def calculate_market_cap(token_total_supply: int, virtual_sol_reserves: int, virtual_token_reserves: int) -> float:
    """Market cap in SOL implied by the virtual reserves"""
    lamports = calculate_market_cap_lamports(token_total_supply, virtual_sol_reserves, virtual_token_reserves)
    return lamports / LAMPORTS_PER_SOL


def partial_amount(balance: int, percentage: float) -> int:
    """Portion of a token balance to sell, clamped to 0-100%"""
    pct = max(0, min(100, int(percentage)))
    return balance * pct // 100

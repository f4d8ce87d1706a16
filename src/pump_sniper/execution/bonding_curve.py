import asyncio
from typing import Optional, Tuple
from logging import Logger
from solders.pubkey import Pubkey
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Processed
from construct import ConstructError
from pump_sniper.core.types import CurveSnapshot, TokenBalance

CURVE_FETCH_ATTEMPTS = 5
CURVE_FETCH_DELAY = 0.3
BALANCE_FETCH_ATTEMPTS = 5
BALANCE_FETCH_DELAY = 0.3

NOT_FOUND_MARKERS = (
    "account does not exist",
    "account not found",
    "could not find account",
)


class AccountNotFoundError(Exception):
    """Raised when an account has not been created (or propagated) yet"""
    pass


def is_not_found_error(error: BaseException) -> bool:
    if isinstance(error, AccountNotFoundError):
        return True
    text = str(error).lower()
    return any(marker in text for marker in NOT_FOUND_MARKERS)


class CurveClient:
    """Reads bonding curve state and token balances over RPC"""

    def __init__(self, client: AsyncClient, logger: Logger):
        self.client = client
        self.logger = logger

    async def fetch_curve(self, bonding_curve: Pubkey, commitment: Commitment = Processed) -> CurveSnapshot:
        """Single read of the bonding curve account.

        Raises:
            AccountNotFoundError: the account has no value or no data yet
        """
        account_info = await self.client.get_account_info(bonding_curve, commitment=commitment)
        if not account_info.value or not account_info.value.data:
            raise AccountNotFoundError(f"Bonding curve account not found: {bonding_curve}")
        try:
            return CurveSnapshot.from_buffer(bytes(account_info.value.data))
        except ConstructError as e:
            raise ValueError(f"Malformed bonding curve data for {bonding_curve}: {str(e)}") from e

    async def fetch_curve_with_retry(
        self,
        bonding_curve: Pubkey,
        commitment: Commitment = Processed,
        attempts: int = CURVE_FETCH_ATTEMPTS,
        delay: float = CURVE_FETCH_DELAY
    ) -> Tuple[Optional[CurveSnapshot], Optional[Exception]]:
        """Fetch a freshly created curve, waiting for it to appear.

        Only "not found" errors are retried since a new curve can lag the
        create event. Anything else aborts immediately.

        Returns:
            (snapshot, None) on success, (None, last_error) on failure
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                curve = await self.fetch_curve(bonding_curve, commitment)
                self.logger.debug(
                    f"Fetched bonding curve {bonding_curve} on attempt {attempt}: "
                    f"virtual_sol={curve.virtual_sol_reserves}, virtual_token={curve.virtual_token_reserves}"
                )
                return curve, None
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if not is_not_found_error(e):
                    self.logger.error(f"Non-recoverable error fetching bonding curve {bonding_curve}: {str(e)}")
                    return None, e
                if attempt < attempts:
                    self.logger.warning(
                        f"Bonding curve {bonding_curve} not found (attempt {attempt}/{attempts}), "
                        f"retrying in {int(delay * 1000)}ms"
                    )
                    await asyncio.sleep(delay)

        self.logger.error(f"Bonding curve {bonding_curve} not found after {attempts} attempts")
        return None, last_error

    async def fetch_token_balance(self, token_account: Pubkey, commitment: Commitment = Processed) -> TokenBalance:
        """Single balance read; a response without an amount is unknown, not zero"""
        response = await self.client.get_token_account_balance(token_account, commitment=commitment)
        value = getattr(response, "value", None)
        amount = getattr(value, "amount", None) if value is not None else None
        if amount is None:
            return TokenBalance.unknown()
        return TokenBalance.known(int(amount))

    async def fetch_token_balance_with_retry(
        self,
        token_account: Pubkey,
        commitment: Commitment = Processed,
        attempts: int = BALANCE_FETCH_ATTEMPTS,
        delay: float = BALANCE_FETCH_DELAY
    ) -> TokenBalance:
        """Fetch a token balance, returning TokenBalance.unknown() when every attempt fails"""
        for attempt in range(1, attempts + 1):
            try:
                balance = await self.fetch_token_balance(token_account, commitment)
                if balance.is_known:
                    return balance
                self.logger.warning(
                    f"No balance amount for {token_account} (attempt {attempt}/{attempts})"
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.warning(
                    f"Failed to fetch balance for {token_account} (attempt {attempt}/{attempts}): {str(e)}"
                )
            if attempt < attempts:
                await asyncio.sleep(delay)

        self.logger.error(f"Failed to fetch token balance for {token_account} after {attempts} attempts")
        return TokenBalance.unknown()

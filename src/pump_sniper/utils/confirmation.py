import asyncio
from logging import Logger
from typing import Any, Optional
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Processed
from solders.signature import Signature

DEFAULT_CONFIRMATION_TIMEOUT = 90.0
SHUTDOWN_CONFIRMATION_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 0.25

# Ordered commitment levels; reaching a higher level satisfies a lower one
COMMITMENT_LEVELS = {
    "processed": 0,
    "confirmed": 1,
    "finalized": 2,
}


def commitment_level(value: Any) -> Optional[int]:
    """Rank of a commitment or confirmation status, accepting strings and solders enums"""
    if value is None:
        return None
    name = str(value).rsplit(".", 1)[-1].lower()
    return COMMITMENT_LEVELS.get(name)


class ConfirmationPoller:
    """Polls signature statuses until a commitment level is reached"""

    def __init__(self, client: AsyncClient, logger: Logger):
        self.client = client
        self.logger = logger

    async def wait(
        self,
        signature: str,
        commitment: Commitment = Processed,
        timeout_sec: float = DEFAULT_CONFIRMATION_TIMEOUT,
        is_shutdown: bool = False,
        poll_interval: float = DEFAULT_POLL_INTERVAL
    ) -> bool:
        """Wait for a transaction to reach the requested commitment.

        Returns True once the status reaches or passes the target level,
        False immediately on an on-chain error, and False on timeout.
        During shutdown the timeout is capped so exit is not held up.
        """
        if is_shutdown:
            timeout_sec = min(timeout_sec, SHUTDOWN_CONFIRMATION_TIMEOUT)

        target = commitment_level(commitment)
        if target is None:
            raise ValueError(f"Unknown commitment level: {commitment}")

        sig = Signature.from_string(signature)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_sec
        attempt = 0

        while loop.time() < deadline:
            attempt += 1
            try:
                response = await self.client.get_signature_statuses(
                    [sig], search_transaction_history=False
                )
                status = response.value[0] if response.value else None

                if status is not None:
                    if status.err is not None:
                        self.logger.error(f"Transaction {signature} failed on-chain: {status.err}")
                        return False

                    level = commitment_level(status.confirmation_status)
                    if level is not None and level >= target:
                        self.logger.info(
                            f"Transaction {signature} reached {commitment} after {attempt} polls"
                        )
                        return True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.warning(f"Error polling status for {signature}: {str(e)}")

            await asyncio.sleep(poll_interval)

        self.logger.warning(f"Timed out after {timeout_sec}s waiting for {signature} to reach {commitment}")
        return False

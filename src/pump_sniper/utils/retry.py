import asyncio
from logging import Logger
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 0.25


class RetryExhaustedError(Exception):
    """Raised when every attempt of a retried call has failed"""

    def __init__(self, description: str, attempts: int, last_error: Optional[BaseException]):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")


async def rpc_with_retry(
    call: Callable[[], Awaitable[T]],
    description: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    delay: float = DEFAULT_RETRY_DELAY,
    logger: Optional[Logger] = None
) -> T:
    """Run an async RPC call, retrying with a fixed delay.

    Args:
        call: Zero-argument coroutine factory, invoked once per attempt
        description: Label used in logs and in the raised error
        max_retries: Total number of attempts
        delay: Seconds to wait between attempts

    Raises:
        RetryExhaustedError: chained from the last error once all attempts fail
    """
    last_error: Optional[BaseException] = None
    for attempt in range(1, max_retries + 1):
        try:
            return await call()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            if logger:
                logger.debug(f"{description} attempt {attempt}/{max_retries} failed: {str(e)}")
            if attempt < max_retries:
                await asyncio.sleep(delay)

    raise RetryExhaustedError(description, max_retries, last_error) from last_error

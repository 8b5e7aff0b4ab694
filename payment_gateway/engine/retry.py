"""
Exponential backoff retry for storage operations during reconciliation.

Transient storage failures (SQLite "database is locked", dropped
connections, pool timeouts) are retried with exponential backoff up to a
configurable limit. Anything else propagates immediately.
"""

import asyncio
import logging
from typing import Any, Callable

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from payment_gateway.errors import TransientStorageError

logger = logging.getLogger("payment_gateway.retry")

MAX_RETRIES = 3
BASE_DELAY = 0.2
MAX_DELAY = 5.0


def is_transient(exc: BaseException) -> bool:
    """Whether a SQLAlchemy error is worth retrying."""
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


async def with_retry(
    func: Callable[..., Any],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function with exponential backoff on transient storage errors.

    Args:
        func: Async callable to execute.
        max_retries: Maximum number of retry attempts after the first call.
        base_delay: Initial sleep in seconds, doubled per attempt.

    Returns:
        The result of the function call.

    Raises:
        TransientStorageError: Retries exhausted.
    """
    delay = base_delay

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except TransientStorageError as e:
            if attempt >= max_retries:
                logger.error("Exhausted %d retries for storage operation: %s", max_retries, e)
                raise

            sleep_for = min(delay, MAX_DELAY)
            logger.warning(
                "Transient storage error on attempt %d/%d: %s; sleeping %.2fs",
                attempt + 1,
                max_retries + 1,
                e,
                sleep_for,
            )
            await asyncio.sleep(sleep_for)
            delay = min(delay * 2, MAX_DELAY)

    raise TransientStorageError("Unknown error after retries")

"""
Retry helper for the workflow transactions.

Only connectivity failures are retried. Every write inside the retried
callables is a conditional update, so running one twice cannot apply a
change twice.
"""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from core.config import settings
from core.exceptions import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

def is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated

async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    attempts: int = None,
    base_delay: float = None,
) -> T:
    """Run ``operation`` and retry it with exponential backoff on transient errors"""
    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    base_delay = settings.DB_RETRY_BASE_DELAY if base_delay is None else base_delay

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except DBAPIError as e:
            if not is_transient(e):
                raise
            if attempt == attempts:
                logger.error(f"Database unavailable after {attempts} attempts: {e}")
                raise TransientError("Database temporarily unavailable, please retry") from e
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(f"Transient database error (attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {e}")
            await asyncio.sleep(delay)

"""Database utility functions."""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Error fragments worth another attempt: lock contention and dropped connections
TRANSIENT_DB_ERRORS = (
    "database is locked",
    "connection refused",
    "connection reset",
    "connection closed",
    "server closed",
    "timeout",
    "too many clients",
)


async def retry_on_lock(
    coro_func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.1,
) -> T:
    """Retry a database call on lock contention or dropped connections.

    Token health updates from a large fan-out land in bursts, so SQLite
    writers can briefly see "database is locked" and PostgreSQL can run out
    of connections. Delay doubles with each attempt.

    Args:
        coro_func: Callable returning the coroutine to run (e.g. ``session.commit``)
        max_retries: Maximum number of attempts
        base_delay: Delay in seconds before the second attempt

    Raises:
        OperationalError/InterfaceError: If the error is not transient or all attempts fail
    """
    for attempt in range(max_retries):
        try:
            return await coro_func()
        except (OperationalError, InterfaceError) as e:
            error_str = str(e).lower()
            if attempt == max_retries - 1 or not any(msg in error_str for msg in TRANSIENT_DB_ERRORS):
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(f"Database busy, retrying in {delay}s (attempt {attempt + 1}/{max_retries})")
            await asyncio.sleep(delay)
    raise RuntimeError("retry_on_lock needs max_retries >= 1")

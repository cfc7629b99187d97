"""
Transaction runner with deadlines and bounded retries.

Every service operation runs its storage work through `run_transaction`, so a
unit of work either commits wholly or is rolled back, and transient storage
failures (dropped connections, lock/serialization conflicts, deadline expiry)
are retried with exponential backoff before surfacing as `Transient`.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logger import get_logger
from app.database.connection import is_postgres
from app.exceptions.errors import ApplicationException, Transient

logger = get_logger("transactions")

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03", "57014"}


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient(exc: BaseException, retry_on_conflict: bool = False) -> bool:
    """Whether a failed attempt may succeed if the whole transaction is replayed."""
    if isinstance(exc, asyncio.TimeoutError):
        return True
    if isinstance(exc, IntegrityError):
        # A concurrent writer won a unique index race; replaying re-reads its row
        return retry_on_conflict
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        return exc.connection_invalidated or _sqlstate(exc) in RETRYABLE_SQLSTATES
    return False


async def run_transaction(
    db: AsyncSession,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    write: bool = True,
    isolation_level: Optional[str] = None,
    retry_on_conflict: bool = False,
    operation: str = "storage operation",
) -> T:
    """
    Run `work(db)` in its own transaction and commit it. `write` selects the
    deadline. Business errors propagate on the first attempt.
    """
    attempts = max(1, settings.RETRY_ATTEMPTS)
    timeout = settings.STORAGE_WRITE_TIMEOUT_SECONDS if write else settings.STORAGE_READ_TIMEOUT_SECONDS
    delay = settings.RETRY_BASE_DELAY_MS / 1000.0

    for attempt in range(1, attempts + 1):
        if db.in_transaction():
            await db.commit()
        try:
            if isolation_level and is_postgres(db):
                await db.connection(execution_options={"isolation_level": isolation_level})
            result = await asyncio.wait_for(work(db), timeout)
            await asyncio.wait_for(db.commit(), timeout)
            # Detach results so a later rollback on this session cannot expire them
            db.expunge_all()
            return result
        except ApplicationException:
            await db.rollback()
            raise
        except Exception as exc:
            await db.rollback()
            if not is_transient(exc, retry_on_conflict):
                raise
            if attempt == attempts:
                logger.error(f"{operation} failed after {attempts} attempts: {exc!r}")
                raise Transient() from exc
            logger.warning(f"{operation} attempt {attempt}/{attempts} failed ({exc!r}); retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
            delay *= 2

    raise Transient()

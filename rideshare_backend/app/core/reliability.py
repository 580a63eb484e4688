"""
Reliability Utilities.

Retries transactions that lost a concurrency conflict in the database.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from rideshare_backend.app.core.exceptions import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_retryable_conflict(exc: SQLAlchemyError) -> bool:
    """
    True when the error means "another transaction won, try again".

    PostgreSQL reports this through SQLSTATE; SQLite reports a busy
    database as an OperationalError once its busy timeout runs out.
    """
    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True

    message = str(orig).lower()
    return "database is locked" in message or "database is busy" in message


async def retry_on_conflict(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    backoff_seconds: float = 0.05,
) -> T:
    """
    Run func, retrying when the database reports a transaction conflict.

    func must open its own transaction on every call. Anything that is not
    a SQLAlchemy error (lobby errors included) propagates untouched. Other
    storage failures, or conflicts that outlast max_retries, become
    StorageError.
    """
    attempt = 0
    while True:
        try:
            return await func()
        except SQLAlchemyError as exc:
            if is_retryable_conflict(exc) and attempt < max_retries:
                attempt += 1
                logger.warning(
                    "Transaction conflict, retrying",
                    extra={"attempt": attempt, "max_retries": max_retries},
                )
                await asyncio.sleep(backoff_seconds * attempt)
                continue

            logger.exception("Ride store operation failed", extra={"attempts": attempt + 1})
            raise StorageError() from exc

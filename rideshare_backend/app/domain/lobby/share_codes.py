"""
Share code issuer.

Share codes are short public tokens that let a user open a ride directly
(e.g. a code read out loud or pasted in a chat) without browsing the
active lobby list.
"""

import logging
import secrets
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare_backend.app.core.exceptions import StorageError
from rideshare_backend.app.models.ride import Ride

logger = logging.getLogger(__name__)

# No 0/O or 1/I
SHARE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
SHARE_CODE_LENGTH = 6


def generate_share_code() -> str:
    """Draw a random share code."""
    return "".join(secrets.choice(SHARE_CODE_ALPHABET) for _ in range(SHARE_CODE_LENGTH))


def normalize_share_code(code: str) -> str:
    """Canonical form used for storage and lookup (lookups are case-insensitive)."""
    return code.strip().upper()


class ShareCodeIssuer:
    """
    Inserts a new ride under a share code nobody else holds.

    Uniqueness comes from the unique constraint on rides.share_code: each
    attempt inserts inside a savepoint, and a constraint violation rolls
    back just that savepoint before a fresh code is drawn.
    """

    def __init__(self, max_attempts: int = 10, generator: Callable[[], str] = generate_share_code):
        self.max_attempts = max_attempts
        self.generator = generator

    async def insert_ride(self, db: AsyncSession, build_ride: Callable[[str], Ride]) -> Ride:
        """
        Build and flush a ride with a unique share code.

        Args:
            db: Session with an open transaction
            build_ride: Returns a new, unsaved Ride for the given share code

        Returns:
            The flushed ride

        Raises:
            StorageError: If every attempt collided
        """
        for attempt in range(1, self.max_attempts + 1):
            ride = build_ride(self.generator())
            try:
                async with db.begin_nested():
                    db.add(ride)
                    await db.flush()
            except IntegrityError:
                logger.info(
                    "Share code collision, regenerating",
                    extra={"share_code": ride.share_code, "attempt": attempt},
                )
                continue
            return ride

        logger.error("Share code space exhausted", extra={"attempts": self.max_attempts})
        raise StorageError("Could not allocate a share code for this ride")

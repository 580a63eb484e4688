"""
Lobby Engine (Domain Logic).

State machine for rideshare lobbies:

    waiting -> accepted -> in_transit -> completed
       \\          \\            \\
        +----------+------------+--> cancelled

completed and cancelled are terminal. Every operation runs in its own
transaction that locks the ride row first, re-reads status and membership
under the lock, checks guards, then mutates. Guard violations raise
LobbyError subclasses; storage failures raise StorageError.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideshare_backend.app.core.config import settings
from rideshare_backend.app.core.reliability import retry_on_conflict
from rideshare_backend.app.models.ride import Ride
from rideshare_backend.app.models.ride_member import RideMember
from rideshare_backend.app.models.ride_enums import RideStatus, OPEN_STATUSES, TERMINAL_STATUSES
from rideshare_backend.app.domain.lobby.types import Identity, Place, RideSnapshot
from rideshare_backend.app.domain.lobby.share_codes import ShareCodeIssuer, normalize_share_code
from rideshare_backend.app.domain.lobby import membership
from rideshare_backend.app.domain.lobby.errors import (
    LobbyError, NotFound, InvalidConfiguration, InvalidTransition,
    RoleConflict, NotAuthorizedForTransition,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_PASSENGERS = 1
MAX_PASSENGERS = 4
MAX_NOTE_LENGTH = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LobbyEngine:
    """
    Rideshare lobby coordination.

    Holds no ride state of its own; all of it lives in the ride store, so
    any number of engine instances (across processes) can serve the same
    rides concurrently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        share_codes: Optional[ShareCodeIssuer] = None,
        max_retries: int = None,
        retry_backoff_seconds: float = None,
    ):
        self.session_factory = session_factory
        self.share_codes = share_codes or ShareCodeIssuer(settings.share_code_max_attempts)
        self.max_retries = settings.transaction_max_retries if max_retries is None else max_retries
        self.retry_backoff_seconds = (
            settings.transaction_retry_backoff_seconds
            if retry_backoff_seconds is None else retry_backoff_seconds
        )

    # ===================== Transactions =====================

    async def _run(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run work in a fresh transaction, retrying on database conflicts."""
        async def attempt() -> T:
            async with self.session_factory() as db:
                async with db.begin():
                    return await work(db)

        try:
            return await retry_on_conflict(
                attempt,
                max_retries=self.max_retries,
                backoff_seconds=self.retry_backoff_seconds,
            )
        except LobbyError as exc:
            logger.info(
                "Lobby operation rejected",
                extra={"operation": operation, "error_code": exc.error_code, **exc.details},
            )
            raise

    async def _snapshot(self, db: AsyncSession, ride: Ride) -> RideSnapshot:
        members = await membership.load_members(db, [ride.id])
        return RideSnapshot(ride=ride, members=members[ride.id])

    async def _snapshots(self, db: AsyncSession, rides: List[Ride]) -> List[RideSnapshot]:
        members = await membership.load_members(db, [ride.id for ride in rides])
        return [RideSnapshot(ride=ride, members=members[ride.id]) for ride in rides]

    def _log_transition(self, ride: Ride, actor_id: str, event: str) -> None:
        logger.info(
            event,
            extra={"ride_id": ride.id, "actor_id": actor_id, "status": ride.status.value},
        )

    # ===================== Creation =====================

    async def create_ride(
        self,
        creator: Identity,
        origin: Place,
        destination: Place,
        max_passengers: int,
        note: Optional[str] = None,
    ) -> RideSnapshot:
        """
        Open a new lobby with the creator as its only member.

        Raises:
            InvalidConfiguration: max_passengers outside [1, 4], blank place
                names, coordinates out of range, or note too long
        """
        if not MIN_PASSENGERS <= max_passengers <= MAX_PASSENGERS:
            raise InvalidConfiguration(
                f"max_passengers must be between {MIN_PASSENGERS} and {MAX_PASSENGERS}",
                details={"max_passengers": max_passengers}
            )
        for label, place in (("origin", origin), ("destination", destination)):
            if not place.name or not place.name.strip():
                raise InvalidConfiguration(f"{label} name is required")
            if not -90 <= place.latitude <= 90 or not -180 <= place.longitude <= 180:
                raise InvalidConfiguration(
                    f"{label} coordinates are out of range",
                    details={"latitude": place.latitude, "longitude": place.longitude}
                )

        if note is not None and not note.strip():
            note = None
        if note and len(note) > MAX_NOTE_LENGTH:
            raise InvalidConfiguration(f"note must be at most {MAX_NOTE_LENGTH} characters")

        async def work(db: AsyncSession) -> RideSnapshot:
            now = utcnow()

            def build_ride(share_code: str) -> Ride:
                return Ride(
                    creator_id=creator.user_id,
                    creator_name=creator.display_name,
                    origin_name=origin.name.strip(),
                    origin_lat=origin.latitude,
                    origin_lng=origin.longitude,
                    destination_name=destination.name.strip(),
                    destination_lat=destination.latitude,
                    destination_lng=destination.longitude,
                    max_passengers=max_passengers,
                    status=RideStatus.WAITING,
                    note=note,
                    share_code=share_code,
                    created_at=now,
                    updated_at=now,
                )

            ride = await self.share_codes.insert_ride(db, build_ride)
            creator_seat = RideMember(
                ride_id=ride.id,
                user_id=creator.user_id,
                user_name=creator.display_name,
                joined_at=now,
            )
            db.add(creator_seat)
            await db.flush()

            self._log_transition(ride, creator.user_id, "Ride created")
            return RideSnapshot(ride=ride, members=[creator_seat])

        return await self._run("create", work)

    # ===================== Reads =====================

    async def get_ride(self, ride_id: str) -> RideSnapshot:
        """
        Raises:
            NotFound: If the ride does not exist
        """
        async def work(db: AsyncSession) -> RideSnapshot:
            ride = await db.get(Ride, ride_id)
            if not ride:
                raise NotFound(f"Ride {ride_id} not found", details={"ride_id": ride_id})
            return await self._snapshot(db, ride)

        return await self._run("get", work)

    async def get_ride_by_share_code(self, code: str) -> RideSnapshot:
        """
        Look a ride up by share code, ignoring case and surrounding spaces.

        Raises:
            NotFound: If no ride holds the code
        """
        share_code = normalize_share_code(code)

        async def work(db: AsyncSession) -> RideSnapshot:
            result = await db.execute(select(Ride).where(Ride.share_code == share_code))
            ride = result.scalar_one_or_none()
            if not ride:
                raise NotFound(
                    f"No ride found for share code {share_code}",
                    details={"share_code": share_code}
                )
            return await self._snapshot(db, ride)

        return await self._run("lookup_by_share_code", work)

    async def list_active_rides(self) -> List[RideSnapshot]:
        """Rides still open for passengers (waiting, accepted), newest first."""
        async def work(db: AsyncSession) -> List[RideSnapshot]:
            result = await db.execute(
                select(Ride)
                .where(Ride.status.in_(OPEN_STATUSES))
                .order_by(Ride.created_at.desc())
            )
            return await self._snapshots(db, list(result.scalars().all()))

        return await self._run("list_active", work)

    async def list_rides_for_user(self, user_id: str) -> List[RideSnapshot]:
        """Rides the user created, drives, or rides in; any status, newest first."""
        async def work(db: AsyncSession) -> List[RideSnapshot]:
            member_of = select(RideMember.ride_id).where(RideMember.user_id == user_id)
            result = await db.execute(
                select(Ride)
                .where(or_(
                    Ride.creator_id == user_id,
                    Ride.driver_id == user_id,
                    Ride.id.in_(member_of),
                ))
                .order_by(Ride.created_at.desc())
            )
            return await self._snapshots(db, list(result.scalars().all()))

        return await self._run("list_for_user", work)

    # ===================== Membership =====================

    async def join_ride(self, ride_id: str, user: Identity) -> RideSnapshot:
        """
        Raises:
            NotFound, LobbyClosed, RoleConflict, AlreadyMember, LobbyFull
        """
        async def work(db: AsyncSession) -> RideSnapshot:
            ride = await membership.lock_ride(db, ride_id)
            now = utcnow()
            await membership.add_member(db, ride, user, now)
            ride.updated_at = now

            self._log_transition(ride, user.user_id, "Passenger joined")
            return await self._snapshot(db, ride)

        return await self._run("join", work)

    async def leave_ride(self, ride_id: str, user: Identity) -> None:
        """
        Raises:
            NotFound, LobbyClosed, CreatorCannotLeave, NotAMember
        """
        async def work(db: AsyncSession) -> None:
            ride = await membership.lock_ride(db, ride_id)
            await membership.remove_member(db, ride, user.user_id)
            ride.updated_at = utcnow()

            self._log_transition(ride, user.user_id, "Passenger left")

        await self._run("leave", work)

    # ===================== Transitions =====================

    async def accept_transport(self, ride_id: str, user: Identity) -> RideSnapshot:
        """
        Become the ride's driver: waiting -> accepted.

        A passenger who takes the driver role gives up their seat in the
        same transaction.

        Raises:
            NotFound, InvalidTransition, RoleConflict
        """
        async def work(db: AsyncSession) -> RideSnapshot:
            ride = await membership.lock_ride(db, ride_id)
            # Past the lobby stage the status is the reason, not the roles
            if ride.status not in OPEN_STATUSES:
                raise InvalidTransition(
                    f"Cannot accept transport while ride is {ride.status.value}",
                    details={"ride_id": ride.id, "status": ride.status.value}
                )

            if ride.creator_id == user.user_id:
                raise RoleConflict(
                    "The ride creator cannot also be the driver",
                    details={"ride_id": ride.id}
                )
            if ride.driver_id is not None:
                raise RoleConflict(
                    "This ride already has a driver",
                    details={"ride_id": ride.id}
                )
            self._ensure_status(ride, RideStatus.WAITING, "accept transport")

            seat = await membership.find_member(db, ride.id, user.user_id)
            if seat:
                await db.delete(seat)

            ride.driver_id = user.user_id
            ride.driver_name = user.display_name
            ride.status = RideStatus.ACCEPTED
            ride.updated_at = utcnow()
            await db.flush()

            self._log_transition(ride, user.user_id, "Transport accepted")
            return await self._snapshot(db, ride)

        return await self._run("accept_transport", work)

    async def start_transport(self, ride_id: str, user: Identity) -> RideSnapshot:
        """
        Driver starts the ride: accepted -> in_transit. Membership is frozen from here.

        Raises:
            NotFound, InvalidTransition, NotAuthorizedForTransition
        """
        async def work(db: AsyncSession) -> RideSnapshot:
            ride = await membership.lock_ride(db, ride_id)
            self._ensure_status(ride, RideStatus.ACCEPTED, "start transport")
            if ride.driver_id != user.user_id:
                raise NotAuthorizedForTransition(
                    "Only the driver can start the ride",
                    details={"ride_id": ride.id}
                )

            ride.status = RideStatus.IN_TRANSIT
            ride.updated_at = utcnow()
            await db.flush()

            self._log_transition(ride, user.user_id, "Transport started")
            return await self._snapshot(db, ride)

        return await self._run("start_transport", work)

    async def complete_ride(self, ride_id: str, user: Identity) -> RideSnapshot:
        """
        in_transit -> completed, by the driver or the creator.

        Raises:
            NotFound, InvalidTransition, NotAuthorizedForTransition
        """
        async def work(db: AsyncSession) -> RideSnapshot:
            ride = await membership.lock_ride(db, ride_id)
            self._ensure_status(ride, RideStatus.IN_TRANSIT, "complete")
            if user.user_id not in (ride.driver_id, ride.creator_id):
                raise NotAuthorizedForTransition(
                    "Only the driver or the ride creator can complete the ride",
                    details={"ride_id": ride.id}
                )

            ride.status = RideStatus.COMPLETED
            ride.updated_at = utcnow()
            await db.flush()

            self._log_transition(ride, user.user_id, "Ride completed")
            return await self._snapshot(db, ride)

        return await self._run("complete", work)

    async def cancel_ride(self, ride_id: str, user: Identity) -> RideSnapshot:
        """
        Any non-terminal status -> cancelled, by the creator or the driver.

        Membership rows are kept; the creator stays a member until the
        ride is purged by housekeeping.

        Raises:
            NotFound, InvalidTransition, NotAuthorizedForTransition
        """
        async def work(db: AsyncSession) -> RideSnapshot:
            ride = await membership.lock_ride(db, ride_id)
            self._ensure_not_terminal(ride)
            if user.user_id not in (ride.creator_id, ride.driver_id):
                raise NotAuthorizedForTransition(
                    "Only the ride creator or the driver can cancel the ride",
                    details={"ride_id": ride.id}
                )

            ride.status = RideStatus.CANCELLED
            ride.updated_at = utcnow()
            await db.flush()

            self._log_transition(ride, user.user_id, "Ride cancelled")
            return await self._snapshot(db, ride)

        return await self._run("cancel", work)

    # ===================== Guards =====================

    @staticmethod
    def _ensure_not_terminal(ride: Ride) -> None:
        if ride.status in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Ride is already {ride.status.value}",
                details={"ride_id": ride.id, "status": ride.status.value}
            )

    @staticmethod
    def _ensure_status(ride: Ride, required: RideStatus, action: str) -> None:
        if ride.status != required:
            raise InvalidTransition(
                f"Cannot {action} while ride is {ride.status.value}",
                details={"ride_id": ride.id, "status": ride.status.value, "required": required.value}
            )

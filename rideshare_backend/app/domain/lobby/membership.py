"""
Membership manager for ride lobbies.

All functions here expect to run inside the transaction that locked the
ride via lock_ride(). The passenger count is always read from
ride_members under that lock, never cached, so a capacity check and the
insert it guards cannot be split by a concurrent join.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from rideshare_backend.app.models.ride import Ride
from rideshare_backend.app.models.ride_member import RideMember
from rideshare_backend.app.models.ride_enums import OPEN_STATUSES
from rideshare_backend.app.domain.lobby.types import Identity
from rideshare_backend.app.domain.lobby.errors import (
    NotFound, LobbyClosed, LobbyFull, AlreadyMember, NotAMember,
    CreatorCannotLeave, RoleConflict,
)


async def lock_ride(db: AsyncSession, ride_id: str) -> Ride:
    """
    Load a ride and hold its row lock until the transaction ends.

    Concurrent writers to the same ride queue up here. SQLite has no row
    locks; there the BEGIN IMMEDIATE issued by the engine setup already
    holds the database write lock.

    Raises:
        NotFound: If the ride does not exist
    """
    result = await db.execute(
        select(Ride).where(Ride.id == ride_id).with_for_update()
    )
    ride = result.scalar_one_or_none()
    if not ride:
        raise NotFound(f"Ride {ride_id} not found", details={"ride_id": ride_id})
    return ride


async def count_members(db: AsyncSession, ride_id: str) -> int:
    result = await db.execute(
        select(func.count(RideMember.id)).where(RideMember.ride_id == ride_id)
    )
    return result.scalar()


async def find_member(db: AsyncSession, ride_id: str, user_id: str) -> Optional[RideMember]:
    result = await db.execute(
        select(RideMember).where(
            RideMember.ride_id == ride_id,
            RideMember.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def load_members(db: AsyncSession, ride_ids: Sequence[str]) -> Dict[str, List[RideMember]]:
    """Members of each ride, in join order."""
    members: Dict[str, List[RideMember]] = {ride_id: [] for ride_id in ride_ids}
    if not ride_ids:
        return members

    result = await db.execute(
        select(RideMember)
        .where(RideMember.ride_id.in_(ride_ids))
        .order_by(RideMember.joined_at, RideMember.id)
    )
    for member in result.scalars().all():
        members[member.ride_id].append(member)
    return members


def ensure_lobby_open(ride: Ride) -> None:
    """Join/leave are only allowed while waiting or accepted."""
    if ride.status not in OPEN_STATUSES:
        raise LobbyClosed(
            f"Ride lobby is closed (status: {ride.status.value})",
            details={"ride_id": ride.id, "status": ride.status.value}
        )


async def add_member(db: AsyncSession, ride: Ride, identity: Identity, now: datetime) -> RideMember:
    """
    Seat a user in a locked ride.

    Raises:
        LobbyClosed: Ride is in transit or terminal
        RoleConflict: Caller is the ride's driver
        AlreadyMember: Caller already holds a seat
        LobbyFull: Every seat is taken
    """
    ensure_lobby_open(ride)

    if ride.driver_id == identity.user_id:
        raise RoleConflict(
            "The driver cannot join as a passenger",
            details={"ride_id": ride.id}
        )

    if await find_member(db, ride.id, identity.user_id):
        raise AlreadyMember(
            "You are already in this ride",
            details={"ride_id": ride.id}
        )

    current = await count_members(db, ride.id)
    if current >= ride.max_passengers:
        raise LobbyFull(
            "This ride is full",
            details={"ride_id": ride.id, "max_passengers": ride.max_passengers}
        )

    member = RideMember(
        ride_id=ride.id,
        user_id=identity.user_id,
        user_name=identity.display_name,
        joined_at=now,
    )
    db.add(member)
    await db.flush()
    return member


async def remove_member(db: AsyncSession, ride: Ride, user_id: str) -> None:
    """
    Release a user's seat in a locked ride.

    Raises:
        LobbyClosed: Ride is in transit or terminal
        CreatorCannotLeave: Caller created the ride (they must cancel instead)
        NotAMember: Caller holds no seat
    """
    ensure_lobby_open(ride)

    if ride.creator_id == user_id:
        raise CreatorCannotLeave(
            "The ride creator cannot leave; cancel the ride instead",
            details={"ride_id": ride.id}
        )

    result = await db.execute(
        delete(RideMember).where(
            RideMember.ride_id == ride.id,
            RideMember.user_id == user_id
        )
    )
    if result.rowcount == 0:
        raise NotAMember(
            "You are not in this ride",
            details={"ride_id": ride.id}
        )

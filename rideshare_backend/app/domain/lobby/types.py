"""
Value types passed in and out of the lobby engine.
"""

from dataclasses import dataclass, field
from typing import List

from rideshare_backend.app.models.ride import Ride
from rideshare_backend.app.models.ride_member import RideMember


@dataclass(frozen=True)
class Identity:
    """Caller as vouched for by the identity provider."""
    user_id: str
    display_name: str


@dataclass(frozen=True)
class Place:
    """A named point: ride origin or destination."""
    name: str
    latitude: float
    longitude: float


@dataclass
class RideSnapshot:
    """
    Point-in-time view of a ride and its members.

    Built inside the transaction that read (or changed) the ride, so
    current_passengers always matches the membership rows it came with.
    """
    ride: Ride
    members: List[RideMember] = field(default_factory=list)

    @property
    def current_passengers(self) -> int:
        return len(self.members)

"""
Ride lobby schemas.

Schemas for ride creation, ride snapshots and action responses.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from rideshare_backend.app.domain.lobby.types import Place, RideSnapshot


class PlaceIn(BaseModel):
    """A named map point."""
    name: str = Field(..., min_length=1, max_length=255)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def to_place(self) -> Place:
        return Place(name=self.name, latitude=self.latitude, longitude=self.longitude)


class RideCreate(BaseModel):
    """Schema for opening a ride lobby."""
    origin: PlaceIn
    destination: PlaceIn
    # Range is checked by the lobby engine (InvalidConfiguration)
    max_passengers: int
    note: Optional[str] = Field(None, max_length=500)


class RideResponse(BaseModel):
    """Schema for a ride snapshot."""
    id: str
    creator_id: str
    creator_name: str
    driver_id: Optional[str]
    driver_name: Optional[str]
    origin_name: str
    origin_lat: float
    origin_lng: float
    destination_name: str
    destination_lat: float
    destination_lng: float
    max_passengers: int
    current_passengers: int
    status: str
    note: Optional[str]
    share_code: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_snapshot(cls, snapshot: RideSnapshot) -> "RideResponse":
        ride = snapshot.ride
        return cls(
            id=ride.id,
            creator_id=ride.creator_id,
            creator_name=ride.creator_name,
            driver_id=ride.driver_id,
            driver_name=ride.driver_name,
            origin_name=ride.origin_name,
            origin_lat=ride.origin_lat,
            origin_lng=ride.origin_lng,
            destination_name=ride.destination_name,
            destination_lat=ride.destination_lat,
            destination_lng=ride.destination_lng,
            max_passengers=ride.max_passengers,
            current_passengers=snapshot.current_passengers,
            status=ride.status.value,
            note=ride.note,
            share_code=ride.share_code,
            created_at=ride.created_at,
            updated_at=ride.updated_at,
        )


class PassengerResponse(BaseModel):
    """Schema for a ride member."""
    id: int
    ride_id: str
    user_id: str
    user_name: str
    joined_at: datetime

    class Config:
        from_attributes = True


class RideDetailResponse(BaseModel):
    """Ride with its passenger list."""
    ride: RideResponse
    passengers: List[PassengerResponse]

    @classmethod
    def from_snapshot(cls, snapshot: RideSnapshot) -> "RideDetailResponse":
        return cls(
            ride=RideResponse.from_snapshot(snapshot),
            passengers=[PassengerResponse.model_validate(m) for m in snapshot.members],
        )


class RideListResponse(BaseModel):
    """Schema for ride lists."""
    rides: List[RideResponse]


class RideActionResponse(BaseModel):
    """Response after a state transition."""
    message: str
    ride: RideResponse


class RideJoinResponse(BaseModel):
    """Response after joining a ride."""
    message: str
    ride: RideResponse
    passengers: List[PassengerResponse]


class MessageResponse(BaseModel):
    message: str

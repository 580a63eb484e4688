"""
Ride database model.

A ride is a lobby that users join to share transport to a destination.
"""

import uuid

from sqlalchemy import Column, Integer, String, Float, Enum, Text
from sqlalchemy.sql import func
from rideshare_backend.app.db.session import Base
from rideshare_backend.app.db.types import UTCDateTime
from rideshare_backend.app.models.ride_enums import RideStatus


class Ride(Base):
    """
    Ride model.

    The creator is always a member (see RideMember). driver_id is set once,
    by accept-transport, and never reassigned. Passenger count is not stored
    here; it is always counted from ride_members.
    """
    __tablename__ = "rides"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Roles
    creator_id = Column(String(128), nullable=False, index=True)
    creator_name = Column(String(255), nullable=False)
    driver_id = Column(String(128), nullable=True, index=True)
    driver_name = Column(String(255), nullable=True)

    # Route endpoints
    origin_name = Column(String(255), nullable=False)
    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    destination_name = Column(String(255), nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)

    max_passengers = Column(Integer, nullable=False)
    status = Column(
        Enum(RideStatus, name="ride_status", values_callable=lambda e: [m.value for m in e]),
        default=RideStatus.WAITING,
        nullable=False,
        index=True,
    )
    note = Column(Text, nullable=True)

    # Out-of-band invitation token
    share_code = Column(String(6), unique=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(UTCDateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<Ride(id={self.id}, share_code='{self.share_code}', status='{self.status.value}')>"

"""
Ride membership database model.

Join table between a ride and the users riding in it.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from rideshare_backend.app.db.session import Base
from rideshare_backend.app.db.types import UTCDateTime


class RideMember(Base):
    """
    Ride membership model.

    A user joins a given ride at most once (unique ride_id + user_id).
    """
    __tablename__ = "ride_members"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    ride_id = Column(String(36), ForeignKey('rides.id', ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)

    joined_at = Column(UTCDateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('ride_id', 'user_id', name='uq_ride_members_ride_user'),
    )

    def __repr__(self):
        return f"<RideMember(ride_id={self.ride_id}, user_id={self.user_id})>"

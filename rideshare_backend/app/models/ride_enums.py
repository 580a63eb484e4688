"""
Ride-related enumerations.
"""

import enum


class RideStatus(str, enum.Enum):
    """Ride lobby status enumeration."""
    WAITING = "waiting"  # Lobby open, no driver yet
    ACCEPTED = "accepted"  # Driver assigned, lobby still open
    IN_TRANSIT = "in_transit"  # Driver started, membership frozen
    COMPLETED = "completed"  # Terminal
    CANCELLED = "cancelled"  # Terminal


# Statuses in which passengers may still join or leave
OPEN_STATUSES = (RideStatus.WAITING, RideStatus.ACCEPTED)

TERMINAL_STATUSES = (RideStatus.COMPLETED, RideStatus.CANCELLED)

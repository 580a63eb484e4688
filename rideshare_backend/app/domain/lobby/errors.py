"""
Lobby domain errors.

Every guard violation in the lobby engine raises one of these. They are
user-facing: the gateway returns them as-is through the AppException
handler, with a stable error_code per failure.
"""

from typing import Any, Dict

from fastapi import status

from rideshare_backend.app.core.exceptions import AppException


class LobbyError(AppException):
    """Base class for lobby rule violations."""

    error_code = "ERR_LOBBY"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=self.error_code,
            status_code=self.status_code,
            details=details,
        )


class NotFound(LobbyError):
    """Ride id or share code does not resolve."""

    error_code = "ERR_RIDE_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidConfiguration(LobbyError):
    """Ride parameters rejected at creation (e.g. max_passengers out of range)."""

    error_code = "ERR_INVALID_CONFIGURATION"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidTransition(LobbyError):
    """Operation is not permitted from the ride's current status."""

    error_code = "ERR_INVALID_TRANSITION"


class LobbyClosed(InvalidTransition):
    """
    Join/leave attempted once the ride is in transit or terminal.

    Subclass of InvalidTransition: on a completed/cancelled ride a join is
    both a closed-lobby and an invalid-transition failure.
    """

    error_code = "ERR_LOBBY_CLOSED"


class LobbyFull(LobbyError):
    error_code = "ERR_LOBBY_FULL"


class AlreadyMember(LobbyError):
    error_code = "ERR_ALREADY_MEMBER"


class NotAMember(LobbyError):
    error_code = "ERR_NOT_A_MEMBER"


class CreatorCannotLeave(LobbyError):
    error_code = "ERR_CREATOR_CANNOT_LEAVE"


class RoleConflict(LobbyError):
    """Creator tried to drive, or a driver is already assigned."""

    error_code = "ERR_ROLE_CONFLICT"


class NotAuthorizedForTransition(LobbyError):
    """Caller lacks the role the transition requires."""

    error_code = "ERR_NOT_AUTHORIZED"
    status_code = status.HTTP_403_FORBIDDEN

"""
Rideshare Lobby API Endpoints.

Thin gateway over the lobby engine: resolves the caller, calls the engine,
serializes the snapshot. Lobby rule violations raised by the engine are
turned into error responses by the global AppException handler.
"""

from fastapi import APIRouter, Depends, Path, Query, status

from rideshare_backend.app.core.dependencies import get_current_identity, get_lobby_engine
from rideshare_backend.app.domain.lobby.lobby_engine import LobbyEngine
from rideshare_backend.app.domain.lobby.types import Identity
from rideshare_backend.app.schemas.ride import (
    RideCreate, RideResponse, RideDetailResponse, RideListResponse,
    RideActionResponse, RideJoinResponse, PassengerResponse, MessageResponse,
)

router = APIRouter(prefix="/rides", tags=["Rideshare Lobby"])


@router.post("", response_model=RideActionResponse, status_code=status.HTTP_201_CREATED)
async def create_ride(
    payload: RideCreate,
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """
    Open a new ride lobby.

    The caller becomes the creator and the first passenger.
    """
    snapshot = await engine.create_ride(
        creator=identity,
        origin=payload.origin.to_place(),
        destination=payload.destination.to_place(),
        max_passengers=payload.max_passengers,
        note=payload.note,
    )
    return RideActionResponse(
        message="Ride created",
        ride=RideResponse.from_snapshot(snapshot),
    )


@router.get("", response_model=RideListResponse)
async def list_rides(
    mine: bool = Query(False, description="Only rides the caller created, drives, or joined"),
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """
    List rides.

    Default: active lobbies (waiting + accepted). With mine=true: every ride
    the caller is involved in, any status.
    """
    if mine:
        snapshots = await engine.list_rides_for_user(identity.user_id)
    else:
        snapshots = await engine.list_active_rides()

    return RideListResponse(rides=[RideResponse.from_snapshot(s) for s in snapshots])


@router.get("/code/{code}", response_model=RideDetailResponse)
async def get_ride_by_share_code(
    code: str = Path(..., description="6-character share code, any case"),
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """Look up a ride by its share code."""
    snapshot = await engine.get_ride_by_share_code(code)
    return RideDetailResponse.from_snapshot(snapshot)


@router.get("/{ride_id}", response_model=RideDetailResponse)
async def get_ride(
    ride_id: str = Path(..., description="Ride ID"),
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """Get a ride with its passengers."""
    snapshot = await engine.get_ride(ride_id)
    return RideDetailResponse.from_snapshot(snapshot)


@router.post("/{ride_id}/join", response_model=RideJoinResponse)
async def join_ride(
    ride_id: str = Path(..., description="Ride ID"),
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """Take a seat in a ride lobby."""
    snapshot = await engine.join_ride(ride_id, identity)
    return RideJoinResponse(
        message="Joined ride",
        ride=RideResponse.from_snapshot(snapshot),
        passengers=[PassengerResponse.model_validate(m) for m in snapshot.members],
    )


@router.post("/{ride_id}/leave", response_model=MessageResponse)
async def leave_ride(
    ride_id: str = Path(..., description="Ride ID"),
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """Give up a seat in a ride lobby."""
    await engine.leave_ride(ride_id, identity)
    return MessageResponse(message="Left ride")


@router.post("/{ride_id}/accept-transport", response_model=RideActionResponse)
async def accept_transport(
    ride_id: str = Path(..., description="Ride ID"),
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """Become the ride's driver."""
    snapshot = await engine.accept_transport(ride_id, identity)
    return RideActionResponse(
        message="You are now the driver for this ride",
        ride=RideResponse.from_snapshot(snapshot),
    )


@router.post("/{ride_id}/start", response_model=RideActionResponse)
async def start_transport(
    ride_id: str = Path(..., description="Ride ID"),
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """Start the ride (driver only). The lobby is locked from here on."""
    snapshot = await engine.start_transport(ride_id, identity)
    return RideActionResponse(
        message="Passengers in transport",
        ride=RideResponse.from_snapshot(snapshot),
    )


@router.post("/{ride_id}/complete", response_model=RideActionResponse)
async def complete_ride(
    ride_id: str = Path(..., description="Ride ID"),
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """Complete the ride (driver or creator)."""
    snapshot = await engine.complete_ride(ride_id, identity)
    return RideActionResponse(
        message="Ride completed",
        ride=RideResponse.from_snapshot(snapshot),
    )


@router.post("/{ride_id}/cancel", response_model=RideActionResponse)
async def cancel_ride(
    ride_id: str = Path(..., description="Ride ID"),
    identity: Identity = Depends(get_current_identity),
    engine: LobbyEngine = Depends(get_lobby_engine)
):
    """Cancel the ride (creator or driver)."""
    snapshot = await engine.cancel_ride(ride_id, identity)
    return RideActionResponse(
        message="Ride cancelled",
        ride=RideResponse.from_snapshot(snapshot),
    )

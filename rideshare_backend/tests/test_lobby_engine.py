"""
Lobby engine state machine tests.

Covers creation, driver assignment, start / complete / cancel guards and
terminal-state immutability.
"""

from datetime import timedelta

import pytest

from rideshare_backend.app.models.ride_enums import RideStatus
from rideshare_backend.app.domain.lobby.types import Place
from rideshare_backend.app.domain.lobby.share_codes import SHARE_CODE_ALPHABET
from rideshare_backend.app.domain.lobby.errors import (
    NotFound, InvalidConfiguration, InvalidTransition, LobbyClosed,
    RoleConflict, NotAuthorizedForTransition,
)


async def drive_to(lobby, ride_id, driver, status):
    """Walk a ride forward to the given status."""
    await lobby.accept_transport(ride_id, driver)
    if status == RideStatus.ACCEPTED:
        return
    await lobby.start_transport(ride_id, driver)
    if status == RideStatus.IN_TRANSIT:
        return
    await lobby.complete_ride(ride_id, driver)


# ===================== Creation =====================

@pytest.mark.asyncio
async def test_create_ride_starts_waiting_with_creator_seated(make_ride, alice):
    snapshot = await make_ride(max_passengers=3, note="  Meet at the north entrance  ")
    ride = snapshot.ride

    assert ride.status == RideStatus.WAITING
    assert ride.creator_id == alice.user_id
    assert ride.creator_name == "Alice"
    assert ride.driver_id is None
    assert ride.max_passengers == 3
    assert ride.note == "  Meet at the north entrance  "
    assert [m.user_id for m in snapshot.members] == [alice.user_id]
    assert snapshot.current_passengers == 1
    assert len(ride.share_code) == 6
    assert set(ride.share_code) <= set(SHARE_CODE_ALPHABET)


@pytest.mark.asyncio
async def test_created_ride_is_persisted(lobby, make_ride, alice):
    created = await make_ride()

    fetched = await lobby.get_ride(created.ride.id)

    assert fetched.ride.share_code == created.ride.share_code
    assert fetched.ride.origin_name == "Union Station"
    assert fetched.ride.destination_lat == pytest.approx(38.9072)
    assert [m.user_name for m in fetched.members] == ["Alice"]


@pytest.mark.asyncio
async def test_blank_note_is_stored_as_none(make_ride):
    snapshot = await make_ride(note="   ")
    assert snapshot.ride.note is None


@pytest.mark.asyncio
@pytest.mark.parametrize("max_passengers", [0, -1, 5, 10])
async def test_create_rejects_out_of_range_capacity(make_ride, max_passengers):
    with pytest.raises(InvalidConfiguration):
        await make_ride(max_passengers=max_passengers)


@pytest.mark.asyncio
@pytest.mark.parametrize("max_passengers", [1, 4])
async def test_create_accepts_capacity_bounds(make_ride, max_passengers):
    snapshot = await make_ride(max_passengers=max_passengers)
    assert snapshot.ride.max_passengers == max_passengers


@pytest.mark.asyncio
async def test_create_rejects_bad_places(lobby, alice):
    good = Place(name="Library", latitude=10.0, longitude=10.0)

    with pytest.raises(InvalidConfiguration):
        await lobby.create_ride(alice, Place("  ", 10.0, 10.0), good, 2)

    with pytest.raises(InvalidConfiguration):
        await lobby.create_ride(alice, good, Place("Nowhere", 91.0, 0.0), 2)


@pytest.mark.asyncio
async def test_create_rejects_long_note(make_ride):
    with pytest.raises(InvalidConfiguration):
        await make_ride(note="x" * 501)


@pytest.mark.asyncio
async def test_get_unknown_ride_is_not_found(lobby):
    with pytest.raises(NotFound):
        await lobby.get_ride("does-not-exist")


# ===================== Accept transport =====================

@pytest.mark.asyncio
async def test_accept_transport_assigns_driver(lobby, make_ride, dave):
    ride_id = (await make_ride()).ride.id

    snapshot = await lobby.accept_transport(ride_id, dave)

    assert snapshot.ride.status == RideStatus.ACCEPTED
    assert snapshot.ride.driver_id == dave.user_id
    assert snapshot.ride.driver_name == "Dave"


@pytest.mark.asyncio
async def test_creator_cannot_accept_own_ride(lobby, make_ride, alice):
    """Creator and driver are disjoint roles."""
    ride_id = (await make_ride()).ride.id

    with pytest.raises(RoleConflict):
        await lobby.accept_transport(ride_id, alice)

    snapshot = await lobby.get_ride(ride_id)
    assert snapshot.ride.status == RideStatus.WAITING
    assert snapshot.ride.driver_id is None


@pytest.mark.asyncio
async def test_driver_is_assigned_only_once(lobby, make_ride, dave, erin):
    ride_id = (await make_ride()).ride.id
    await lobby.accept_transport(ride_id, dave)

    with pytest.raises(RoleConflict):
        await lobby.accept_transport(ride_id, erin)
    with pytest.raises(RoleConflict):
        await lobby.accept_transport(ride_id, dave)

    snapshot = await lobby.get_ride(ride_id)
    assert snapshot.ride.driver_id == dave.user_id


@pytest.mark.asyncio
async def test_passenger_accepting_transport_gives_up_seat(lobby, make_ride, alice, bob):
    ride_id = (await make_ride(max_passengers=2)).ride.id
    await lobby.join_ride(ride_id, bob)

    snapshot = await lobby.accept_transport(ride_id, bob)

    assert snapshot.ride.driver_id == bob.user_id
    assert [m.user_id for m in snapshot.members] == [alice.user_id]
    assert snapshot.current_passengers == 1


@pytest.mark.asyncio
async def test_accept_on_unknown_ride_is_not_found(lobby, dave):
    with pytest.raises(NotFound):
        await lobby.accept_transport("missing", dave)


@pytest.mark.asyncio
async def test_accept_on_in_transit_ride_is_invalid_transition(lobby, make_ride, alice, dave, erin):
    """Status is checked before the driver and creator roles."""
    ride_id = (await make_ride()).ride.id
    await drive_to(lobby, ride_id, dave, RideStatus.IN_TRANSIT)

    for caller in (erin, alice):
        with pytest.raises(InvalidTransition) as exc_info:
            await lobby.accept_transport(ride_id, caller)
        assert not isinstance(exc_info.value, (RoleConflict, LobbyClosed))

    snapshot = await lobby.get_ride(ride_id)
    assert snapshot.ride.driver_id == dave.user_id
    assert snapshot.ride.status == RideStatus.IN_TRANSIT


# ===================== Start / complete =====================

@pytest.mark.asyncio
async def test_only_driver_can_start(lobby, make_ride, alice, bob, dave):
    ride_id = (await make_ride()).ride.id
    await lobby.join_ride(ride_id, bob)
    await lobby.accept_transport(ride_id, dave)

    for caller in (alice, bob):
        with pytest.raises(NotAuthorizedForTransition):
            await lobby.start_transport(ride_id, caller)

    snapshot = await lobby.start_transport(ride_id, dave)
    assert snapshot.ride.status == RideStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_start_requires_accepted(lobby, make_ride, dave):
    ride_id = (await make_ride()).ride.id

    with pytest.raises(InvalidTransition):
        await lobby.start_transport(ride_id, dave)


@pytest.mark.asyncio
async def test_join_after_start_is_lobby_closed(lobby, make_ride, bob, dave, erin):
    """B joins, D accepts and starts, then E tries to join."""
    ride_id = (await make_ride()).ride.id
    await lobby.join_ride(ride_id, bob)
    await lobby.accept_transport(ride_id, dave)
    await lobby.start_transport(ride_id, dave)

    with pytest.raises(LobbyClosed):
        await lobby.join_ride(ride_id, erin)
    with pytest.raises(LobbyClosed):
        await lobby.leave_ride(ride_id, bob)

    snapshot = await lobby.get_ride(ride_id)
    assert bob.user_id in [m.user_id for m in snapshot.members]
    assert erin.user_id not in [m.user_id for m in snapshot.members]


@pytest.mark.asyncio
async def test_complete_before_transit_is_invalid(lobby, make_ride, dave):
    """Driver completes while the ride is only accepted."""
    ride_id = (await make_ride()).ride.id
    await lobby.accept_transport(ride_id, dave)

    with pytest.raises(InvalidTransition) as exc_info:
        await lobby.complete_ride(ride_id, dave)

    assert not isinstance(exc_info.value, LobbyClosed)
    assert (await lobby.get_ride(ride_id)).ride.status == RideStatus.ACCEPTED


@pytest.mark.asyncio
async def test_creator_can_complete(lobby, make_ride, alice, dave):
    ride_id = (await make_ride()).ride.id
    await drive_to(lobby, ride_id, dave, RideStatus.IN_TRANSIT)

    snapshot = await lobby.complete_ride(ride_id, alice)

    assert snapshot.ride.status == RideStatus.COMPLETED


@pytest.mark.asyncio
async def test_passenger_cannot_complete(lobby, make_ride, bob, dave):
    ride_id = (await make_ride()).ride.id
    await lobby.join_ride(ride_id, bob)
    await drive_to(lobby, ride_id, dave, RideStatus.IN_TRANSIT)

    with pytest.raises(NotAuthorizedForTransition):
        await lobby.complete_ride(ride_id, bob)


# ===================== Cancel =====================

@pytest.mark.asyncio
async def test_creator_cancels_waiting_ride(lobby, make_ride, alice):
    ride_id = (await make_ride()).ride.id

    snapshot = await lobby.cancel_ride(ride_id, alice)

    assert snapshot.ride.status == RideStatus.CANCELLED
    # Creator keeps their seat until housekeeping purges the ride
    assert alice.user_id in [m.user_id for m in snapshot.members]


@pytest.mark.asyncio
async def test_driver_cancels_in_transit_ride(lobby, make_ride, dave):
    ride_id = (await make_ride()).ride.id
    await drive_to(lobby, ride_id, dave, RideStatus.IN_TRANSIT)

    snapshot = await lobby.cancel_ride(ride_id, dave)

    assert snapshot.ride.status == RideStatus.CANCELLED


@pytest.mark.asyncio
async def test_passenger_cannot_cancel(lobby, make_ride, bob):
    ride_id = (await make_ride()).ride.id
    await lobby.join_ride(ride_id, bob)

    with pytest.raises(NotAuthorizedForTransition):
        await lobby.cancel_ride(ride_id, bob)


# ===================== Terminal states =====================

@pytest.fixture(params=[RideStatus.COMPLETED, RideStatus.CANCELLED])
async def terminal_ride(request, lobby, make_ride, alice, bob, dave):
    ride_id = (await make_ride()).ride.id
    await lobby.join_ride(ride_id, bob)
    if request.param == RideStatus.COMPLETED:
        await drive_to(lobby, ride_id, dave, RideStatus.COMPLETED)
    else:
        await lobby.accept_transport(ride_id, dave)
        await lobby.cancel_ride(ride_id, alice)
    return ride_id


@pytest.mark.asyncio
async def test_terminal_ride_rejects_every_mutation(lobby, terminal_ride, alice, bob, dave, erin):
    before = await lobby.get_ride(terminal_ride)

    attempts = [
        lambda: lobby.join_ride(terminal_ride, erin),
        lambda: lobby.leave_ride(terminal_ride, bob),
        lambda: lobby.accept_transport(terminal_ride, erin),
        lambda: lobby.start_transport(terminal_ride, dave),
        lambda: lobby.complete_ride(terminal_ride, dave),
        lambda: lobby.cancel_ride(terminal_ride, alice),
        lambda: lobby.cancel_ride(terminal_ride, dave),
    ]
    for attempt in attempts:
        with pytest.raises(InvalidTransition):
            await attempt()

    after = await lobby.get_ride(terminal_ride)
    assert after.ride.status == before.ride.status
    assert after.ride.updated_at == before.ride.updated_at
    assert [m.user_id for m in after.members] == [m.user_id for m in before.members]


@pytest.mark.asyncio
async def test_join_on_terminal_ride_reports_lobby_closed(lobby, terminal_ride, erin):
    with pytest.raises(LobbyClosed):
        await lobby.join_ride(terminal_ride, erin)


# ===================== Timestamps =====================

@pytest.mark.asyncio
async def test_every_mutation_refreshes_updated_at(lobby, make_ride, clock, bob, cara, dave):
    created = await make_ride()
    ride_id = created.ride.id
    assert created.ride.updated_at == clock.now

    steps = [
        ("join", lambda: lobby.join_ride(ride_id, bob)),
        ("join", lambda: lobby.join_ride(ride_id, cara)),
        ("leave", lambda: lobby.leave_ride(ride_id, cara)),
        ("accept_transport", lambda: lobby.accept_transport(ride_id, dave)),
        ("start_transport", lambda: lobby.start_transport(ride_id, dave)),
        ("complete", lambda: lobby.complete_ride(ride_id, dave)),
    ]
    previous = created.ride.updated_at
    for name, mutate in steps:
        stamp = clock.advance(minutes=5)
        await mutate()

        ride = (await lobby.get_ride(ride_id)).ride
        assert ride.updated_at == stamp, name
        assert ride.updated_at > previous, name
        assert ride.created_at == created.ride.created_at, name
        previous = ride.updated_at


@pytest.mark.asyncio
async def test_cancel_refreshes_updated_at(lobby, make_ride, clock, alice):
    created = await make_ride()
    stamp = clock.advance(hours=3)

    snapshot = await lobby.cancel_ride(created.ride.id, alice)

    assert snapshot.ride.updated_at == stamp
    assert (await lobby.get_ride(created.ride.id)).ride.updated_at == stamp


@pytest.mark.asyncio
async def test_rejected_mutation_keeps_updated_at(lobby, make_ride, clock, alice):
    created = await make_ride()
    clock.advance(minutes=5)

    with pytest.raises(RoleConflict):
        await lobby.accept_transport(created.ride.id, alice)

    assert (await lobby.get_ride(created.ride.id)).ride.updated_at == created.ride.updated_at


@pytest.mark.asyncio
async def test_stored_timestamps_are_utc(lobby, make_ride):
    created = await make_ride()

    fetched = await lobby.get_ride(created.ride.id)

    assert fetched.ride.created_at.utcoffset() == timedelta(0)
    assert fetched.ride.created_at == created.ride.created_at
    assert fetched.members[0].joined_at.utcoffset() == timedelta(0)

import re
import pytest
from app.services import capacity_service
from app.services.capacity_service import Reservation
from app.domain.exceptions import CapacityExceeded, NotFound, InvalidInput
from tests.helper import db_with_rows


@pytest.mark.asyncio
async def test_reserve_second_overlapping_request_raises_capacity_exceeded(mocker):
    # capacity 10: first reserve(6) wins, second reserve(6) matches no row and sees 4 left
    first = db_with_rows(mocker, (1, 6))
    first.scalar = mocker.AsyncMock(return_value=6)
    second = db_with_rows(mocker, None, (10, 6))
    second.scalar = mocker.AsyncMock()

    reservation = await capacity_service.reserve(first, ticket_type_id=3, quantity=6)
    with pytest.raises(CapacityExceeded) as e:
        await capacity_service.reserve(second, ticket_type_id=3, quantity=6)

    assert reservation == Reservation(ticket_type_id=3, event_id=1, quantity=6, committed=6)
    assert e.value.ctx == {"ticket_type_id": 3, "requested": 6, "available": 4}
    second.scalar.assert_not_awaited()


@pytest.mark.asyncio
async def test_reserve_unknown_ticket_type_raises_not_found(mocker):
    db = db_with_rows(mocker, None, None)
    db.scalar = mocker.AsyncMock()

    with pytest.raises(NotFound):
        await capacity_service.reserve(db, ticket_type_id=99, quantity=1)

    db.scalar.assert_not_awaited()


@pytest.mark.asyncio
async def test_reserve_when_event_full_gives_ticket_type_units_back(mocker):
    db = db_with_rows(mocker, (1, 2))
    db.scalar = mocker.AsyncMock(side_effect=[None, 1])

    with pytest.raises(CapacityExceeded) as e:
        await capacity_service.reserve(db, ticket_type_id=3, quantity=2)

    assert e.value.ctx["event_id"] == 1
    assert db.scalar.await_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -1])
async def test_reserve_non_positive_quantity_raises_invalid_input(mocker, quantity):
    db = mocker.Mock()
    db.execute = mocker.AsyncMock()

    with pytest.raises(InvalidInput):
        await capacity_service.reserve(db, ticket_type_id=1, quantity=quantity)

    db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_reserve_many_locks_ticket_types_in_ascending_order_then_event(mocker):
    calls = []

    async def fake_reserve(db, ticket_type_id, quantity):
        calls.append(("ticket_type", ticket_type_id))
        return Reservation(ticket_type_id, 5, quantity, quantity)

    async def fake_event(db, event_id, quantity):
        calls.append(("event", quantity))
        return True

    mocker.patch("app.services.capacity_service._reserve_ticket_type", side_effect=fake_reserve)
    mocker.patch("app.services.capacity_service._reserve_event", side_effect=fake_event)

    reservations = await capacity_service.reserve_many(mocker.Mock(), 5, {9: 1, 2: 3, 4: 2})

    assert calls == [("ticket_type", 2), ("ticket_type", 4), ("ticket_type", 9), ("event", 6)]
    assert [r.ticket_type_id for r in reservations] == [2, 4, 9]


@pytest.mark.asyncio
async def test_reserve_many_when_later_type_is_full_releases_earlier_ones(mocker):
    reserve_spy = mocker.patch(
        "app.services.capacity_service._reserve_ticket_type",
        new=mocker.AsyncMock(side_effect=[
            Reservation(1, 5, 2, 2),
            CapacityExceeded("Not enough tickets left"),
        ]),
    )
    release_spy = mocker.patch("app.services.capacity_service._release_ticket_type", new=mocker.AsyncMock())
    event_spy = mocker.patch("app.services.capacity_service._reserve_event", new=mocker.AsyncMock())

    with pytest.raises(CapacityExceeded):
        await capacity_service.reserve_many(mocker.Mock(), 5, {1: 2, 2: 3})

    assert reserve_spy.await_count == 2
    release_spy.assert_awaited_once()
    assert release_spy.await_args.args[1:] == (1, 2)
    event_spy.assert_not_awaited()


@pytest.mark.asyncio
async def test_reserve_many_when_event_full_releases_every_ticket_type(mocker):
    mocker.patch(
        "app.services.capacity_service._reserve_ticket_type",
        new=mocker.AsyncMock(side_effect=[Reservation(1, 5, 2, 2), Reservation(2, 5, 3, 3)]),
    )
    mocker.patch("app.services.capacity_service._reserve_event", new=mocker.AsyncMock(return_value=False))
    release_spy = mocker.patch("app.services.capacity_service._release_ticket_type", new=mocker.AsyncMock())

    with pytest.raises(CapacityExceeded) as e:
        await capacity_service.reserve_many(mocker.Mock(), 5, {1: 2, 2: 3})

    assert e.value.ctx == {"event_id": 5, "requested": 5}
    assert [c.args[1:] for c in release_spy.await_args_list] == [(2, 3), (1, 2)]


@pytest.mark.asyncio
async def test_reserve_many_ticket_type_of_other_event_raises_not_found_and_releases(mocker):
    mocker.patch(
        "app.services.capacity_service._reserve_ticket_type",
        new=mocker.AsyncMock(return_value=Reservation(1, 6, 1, 1)),
    )
    release_spy = mocker.patch("app.services.capacity_service._release_ticket_type", new=mocker.AsyncMock())

    with pytest.raises(NotFound):
        await capacity_service.reserve_many(mocker.Mock(), 5, {1: 1})

    release_spy.assert_awaited_once()


@pytest.mark.asyncio
async def test_ticket_type_guard_is_one_conditional_update(mocker):
    db = db_with_rows(mocker, (1, 6))
    db.scalar = mocker.AsyncMock(return_value=6)

    await capacity_service.reserve(db, ticket_type_id=3, quantity=6)

    stmt = str(db.execute.await_args_list[0].args[0])
    assert re.match(r"UPDATE ticket_types SET committed=\(?ticket_types\.committed \+ ", stmt)
    assert re.search(
        r"ticket_types\.capacity IS NULL OR ticket_types\.committed \+ :\w+ <= ticket_types\.capacity", stmt
    )
    assert "ticket_types.deleted_at IS NULL" in stmt
    assert "RETURNING ticket_types.event_id, ticket_types.committed" in stmt


@pytest.mark.asyncio
async def test_event_guard_lets_unlimited_events_through(mocker):
    db = mocker.Mock()
    db.scalar = mocker.AsyncMock(return_value=1)

    assert await capacity_service._reserve_event(db, 5, 3) is True

    stmt = str(db.scalar.await_args.args[0])
    assert "events.capacity IS NULL" in stmt
    assert "RETURNING events.committed" in stmt


@pytest.mark.asyncio
async def test_release_gives_back_ticket_type_and_event_units(mocker):
    db = mocker.Mock()
    db.scalar = mocker.AsyncMock(return_value=5)
    db.execute = mocker.AsyncMock()

    await capacity_service.release(db, ticket_type_id=1, quantity=4)

    db.scalar.assert_awaited_once()
    db.execute.assert_awaited_once()
    assert "greatest(ticket_types.committed - " in str(db.scalar.await_args.args[0]).lower()
    assert "greatest(events.committed - " in str(db.execute.await_args.args[0]).lower()


@pytest.mark.asyncio
async def test_release_unknown_ticket_type_raises_not_found(mocker):
    db = mocker.Mock()
    db.scalar = mocker.AsyncMock(return_value=None)
    db.execute = mocker.AsyncMock()

    with pytest.raises(NotFound):
        await capacity_service.release(db, ticket_type_id=1, quantity=1)

    db.execute.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("capacity, committed, expected", [
    (None, 10_000, True),
    (10, 9, True),
    (10, 10, False),
])
async def test_check_capacity(mocker, capacity, committed, expected):
    event = mocker.Mock(capacity=capacity, committed=committed)
    db = mocker.Mock()
    db.scalar = mocker.AsyncMock(return_value=event)

    space_available, returned = await capacity_service.check_capacity(db, 1)

    assert space_available is expected
    assert returned is event


@pytest.mark.asyncio
async def test_check_capacity_unknown_event_raises_not_found(mocker):
    db = mocker.Mock()
    db.scalar = mocker.AsyncMock(return_value=None)

    with pytest.raises(NotFound):
        await capacity_service.check_capacity(db, 1)

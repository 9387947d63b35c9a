import pytest
import time_machine
from datetime import datetime, timezone, timedelta
from sqlalchemy.exc import IntegrityError
from app.services import registration_service
from app.domain.registrations.models import RegistrationPaymentStatus
from app.domain.payments.models import PaymentStatus
from app.domain.exceptions import NotFound, Conflict, InvalidInput, Unprocessable, CapacityExceeded
from tests.helper import make_actor


def _ticket_type(mocker, id: int, price: int):
    return mocker.Mock(id=id, price=price, is_free=price == 0)


@pytest.fixture
def ledger(mocker):
    """Wire the ledger's collaborators; tests tweak the returned mocks."""
    counter = iter(range(100, 200))

    def _new_row(db, data):
        return mocker.Mock(id=next(counter), payment=None, **data)

    mocks = mocker.Mock()
    mocks.get_event = mocker.patch(
        "app.services.registration_service.events_crud.get_event_by_id",
        new=mocker.AsyncMock(return_value=mocker.Mock(id=1)),
    )
    mocks.get_ticket_types = mocker.patch(
        "app.services.registration_service.ticketing_crud.get_ticket_types_for_event",
        new=mocker.AsyncMock(return_value=[]),
    )
    mocks.get_active = mocker.patch(
        "app.services.registration_service.crud.get_active_registration",
        new=mocker.AsyncMock(return_value=None),
    )
    mocks.create_registration = mocker.patch(
        "app.services.registration_service.crud.create_registration",
        new=mocker.AsyncMock(side_effect=_new_row),
    )
    mocks.create_payment = mocker.patch(
        "app.services.registration_service.payments_crud.create_payment",
        new=mocker.AsyncMock(side_effect=_new_row),
    )
    mocks.reserve_many = mocker.patch(
        "app.services.registration_service.capacity_service.reserve_many",
        new=mocker.AsyncMock(return_value=[]),
    )
    mocks.release = mocker.patch(
        "app.services.registration_service.capacity_service.release",
        new=mocker.AsyncMock(),
    )
    mocks.db = mocker.Mock()
    mocks.db.flush = mocker.AsyncMock()
    return mocks


@pytest.mark.parametrize("amount, expected", [
    (1000, 50),
    (10, 1),
    (30, 2),
    (9, 0),
    (0, 0),
])
def test_platform_fee_rounds_half_up(amount, expected):
    assert registration_service.platform_fee_for(amount, fee_bps=500) == expected


@pytest.mark.asyncio
@pytest.mark.parametrize("selections", [{}, {1: 0}, {1: 2, 2: -1}])
async def test_register_invalid_selections_raise_invalid_input(ledger, selections):
    with pytest.raises(InvalidInput):
        await registration_service.register(ledger.db, make_actor(), 1, selections)

    ledger.reserve_many.assert_not_awaited()


@pytest.mark.asyncio
async def test_register_unknown_event_raises_not_found(ledger):
    ledger.get_event.return_value = None

    with pytest.raises(NotFound):
        await registration_service.register(ledger.db, make_actor(), 1, {1: 1})

    ledger.reserve_many.assert_not_awaited()


@pytest.mark.asyncio
async def test_register_ticket_type_of_other_event_raises_unprocessable(ledger, mocker):
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 0)]

    with pytest.raises(Unprocessable) as e:
        await registration_service.register(ledger.db, make_actor(), 1, {1: 1, 2: 1})

    assert e.value.ctx["ticket_type_ids"] == [2]
    ledger.reserve_many.assert_not_awaited()


@pytest.mark.asyncio
async def test_register_free_ticket_finalizes_without_payment(ledger, mocker):
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 0)]

    result = await registration_service.register(ledger.db, make_actor(7), 1, {1: 2})

    ledger.reserve_many.assert_awaited_once_with(ledger.db, 1, {1: 2})
    ledger.create_payment.assert_not_awaited()
    data = ledger.create_registration.await_args.args[1]
    assert data["payment_required"] is False
    assert data["payment_status"] == RegistrationPaymentStatus.NOT_REQUIRED
    assert data["user_id"] == 7 and data["quantity"] == 2
    assert result.payment_required is False
    assert result.checkout_reference is None
    assert result.amount_due == 0
    assert result.registration_ids == [100]


@pytest.mark.asyncio
async def test_register_repeat_request_merges_by_delta(ledger, mocker):
    existing = mocker.Mock(id=55, quantity=2, payment_required=False, payment=None,
                           payment_status=RegistrationPaymentStatus.NOT_REQUIRED)
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 0)]
    ledger.get_active.return_value = existing

    result = await registration_service.register(ledger.db, make_actor(), 1, {1: 3})

    ledger.reserve_many.assert_awaited_once_with(ledger.db, 1, {1: 3})
    ledger.create_registration.assert_not_awaited()
    assert existing.quantity == 5
    assert result.registration_ids == [55]


@time_machine.travel("2025-03-01 12:00:00", tick=False)
@pytest.mark.asyncio
async def test_register_paid_tickets_share_one_checkout(ledger, mocker):
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 1000), _ticket_type(mocker, 2, 250)]

    result = await registration_service.register(ledger.db, make_actor(), 1, {2: 1, 1: 2})

    payments = [c.args[1] for c in ledger.create_payment.await_args_list]
    assert [p["amount_total"] for p in payments] == [2000, 250]
    assert [p["platform_fee"] for p in payments] == [100, 13]
    assert all(p["status"] == PaymentStatus.PENDING for p in payments)
    assert {p["checkout_reference"] for p in payments} == {result.checkout_reference}
    expected_expiry = datetime(2025, 3, 1, 12, 15, tzinfo=timezone.utc)
    assert all(p["expires_at"] == expected_expiry for p in payments)
    assert result.payment_required is True
    assert result.amount_due == 2250
    assert result.expires_at == expected_expiry
    assert len(result.payment_ids) == 2


@pytest.mark.asyncio
async def test_register_mixed_batch_only_charges_paid_part(ledger, mocker):
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 0), _ticket_type(mocker, 2, 500)]

    result = await registration_service.register(ledger.db, make_actor(), 1, {1: 1, 2: 1})

    statuses = [c.args[1]["payment_status"] for c in ledger.create_registration.await_args_list]
    assert statuses == [RegistrationPaymentStatus.NOT_REQUIRED, RegistrationPaymentStatus.PENDING]
    ledger.create_payment.assert_awaited_once()
    assert result.amount_due == 500


@pytest.mark.asyncio
async def test_register_more_of_paid_ticket_grows_pending_payment(ledger, mocker):
    payment = mocker.Mock(id=9, status=PaymentStatus.PENDING, amount_total=1000, quantity=1, platform_fee=50)
    existing = mocker.Mock(id=55, quantity=1, payment_required=True, payment=payment,
                           payment_status=RegistrationPaymentStatus.PENDING)
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 1000)]
    ledger.get_active.return_value = existing

    result = await registration_service.register(ledger.db, make_actor(), 1, {1: 2})

    assert existing.quantity == 3
    assert payment.amount_total == 3000
    assert payment.quantity == 3
    assert payment.platform_fee == 150
    assert payment.checkout_reference == result.checkout_reference
    # the new checkout replaces the earlier one, so it charges the whole grown payment
    assert result.amount_due == 3000
    ledger.create_payment.assert_not_awaited()


@pytest.mark.asyncio
async def test_register_more_of_pending_ticket_made_free_raises_conflict(ledger, mocker):
    payment = mocker.Mock(id=9, status=PaymentStatus.PENDING, amount_total=1000, quantity=1, platform_fee=50)
    existing = mocker.Mock(id=55, quantity=1, payment_required=True, payment=payment,
                           payment_status=RegistrationPaymentStatus.PENDING)
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 0)]
    ledger.get_active.return_value = existing

    with pytest.raises(Conflict) as e:
        await registration_service.register(ledger.db, make_actor(), 1, {1: 1})

    assert e.value.ctx == {"payment_id": 9}
    assert payment.amount_total == 1000
    ledger.db.flush.assert_not_awaited()


@pytest.mark.asyncio
async def test_register_more_of_paid_ticket_after_payment_raises_conflict(ledger, mocker):
    existing = mocker.Mock(id=55, quantity=1, payment_required=True,
                           payment_status=RegistrationPaymentStatus.PAID)
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 1000)]
    ledger.get_active.return_value = existing

    with pytest.raises(Conflict):
        await registration_service.register(ledger.db, make_actor(), 1, {1: 1})

    ledger.reserve_many.assert_not_awaited()
    assert existing.quantity == 1


@pytest.mark.asyncio
async def test_register_when_capacity_exceeded_creates_nothing(ledger, mocker):
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 0), _ticket_type(mocker, 2, 0)]
    ledger.reserve_many.side_effect = CapacityExceeded("Not enough tickets left")

    with pytest.raises(CapacityExceeded):
        await registration_service.register(ledger.db, make_actor(), 1, {1: 1, 2: 6})

    ledger.create_registration.assert_not_awaited()
    ledger.db.flush.assert_not_awaited()


@pytest.mark.asyncio
async def test_register_concurrent_duplicate_insert_raises_conflict(ledger, mocker):
    ledger.get_ticket_types.return_value = [_ticket_type(mocker, 1, 0)]
    ledger.db.flush.side_effect = IntegrityError("stmt", {}, Exception("uq_registrations_user_ticket_type_active"))

    with pytest.raises(Conflict):
        await registration_service.register(ledger.db, make_actor(), 1, {1: 1})


@time_machine.travel("2025-03-01 12:00:00", tick=False)
@pytest.mark.asyncio
async def test_cancel_releases_quantity_once(ledger, mocker):
    registration = mocker.Mock(id=5, ticket_type_id=3, quantity=4, is_cancelled=False)

    first = await registration_service.cancel(ledger.db, registration, reason="Refunded")
    second = await registration_service.cancel(ledger.db, registration, reason="Refunded")

    assert (first, second) == (True, False)
    ledger.release.assert_awaited_once_with(ledger.db, 3, 4)
    assert registration.is_cancelled is True
    assert registration.cancelled_at == datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert registration.cancellation_reason == "Refunded"


@pytest.mark.asyncio
async def test_deregister_free_registration_cancels_it(ledger, mocker):
    registration = mocker.Mock(id=5, event_id=1, user_id=7, ticket_type_id=3, quantity=2,
                               is_cancelled=False, payment_required=False)
    mocker.patch(
        "app.services.registration_service.crud.get_registration",
        new=mocker.AsyncMock(return_value=registration),
    )

    await registration_service.deregister(ledger.db, make_actor(7), 1, 5)

    assert registration.is_cancelled is True
    ledger.release.assert_awaited_once_with(ledger.db, 3, 2)


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides, exception", [
    ({"user_id": 8}, NotFound),
    ({"event_id": 2}, NotFound),
    ({"is_cancelled": True}, Conflict),
    ({"payment_required": True}, Conflict),
])
async def test_deregister_rejections(ledger, mocker, overrides, exception):
    fields = {"id": 5, "event_id": 1, "user_id": 7, "is_cancelled": False, "payment_required": False,
              "payment_status": RegistrationPaymentStatus.NOT_REQUIRED}
    fields.update(overrides)
    mocker.patch(
        "app.services.registration_service.crud.get_registration",
        new=mocker.AsyncMock(return_value=mocker.Mock(**fields)),
    )

    with pytest.raises(exception):
        await registration_service.deregister(ledger.db, make_actor(7), 1, 5)

    ledger.release.assert_not_awaited()


@pytest.mark.asyncio
async def test_is_registered_delegates_to_active_lookup(mocker):
    exists_spy = mocker.patch(
        "app.services.registration_service.crud.active_registration_exists",
        new=mocker.AsyncMock(return_value=True),
    )
    db = mocker.Mock()

    assert await registration_service.is_registered(db, 7, 1) is True
    exists_spy.assert_awaited_once_with(db, 7, 1)

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.auditing import AuditSpan
from app.core.config import RESERVATION_MINUTES, PLATFORM_FEE_BPS
from app.domain.auth.schemas import Actor
from app.domain.events import crud as events_crud
from app.domain.events.models import Event
from app.domain.ticketing import crud as ticketing_crud
from app.domain.ticketing.models import TicketType
from app.domain.registrations import crud
from app.domain.registrations.models import Registration, RegistrationPaymentStatus
from app.domain.payments import crud as payments_crud
from app.domain.payments.models import Payment, PaymentStatus
from app.domain.exceptions import NotFound, Conflict, InvalidInput, Unprocessable
from app.services import capacity_service

logger = logging.getLogger("app.registrations")


@dataclass
class RegistrationResult:
    registration_ids: list[int]
    payment_required: bool = False
    checkout_reference: uuid.UUID | None = None
    amount_due: int = 0
    expires_at: datetime | None = None
    success: bool = True
    payment_ids: list[int] = field(default_factory=list)


def platform_fee_for(amount: int, fee_bps: int = PLATFORM_FEE_BPS) -> int:
    """Fee in minor units, rounded half up."""
    return (amount * fee_bps + 5000) // 10000


def _validate_selections(selections: dict[int, int]) -> None:
    if not selections:
        raise InvalidInput("Select at least one ticket")
    bad = {tid: qty for tid, qty in selections.items() if qty < 1}
    if bad:
        raise InvalidInput("Quantity must be at least 1", ctx={"quantities": bad})


async def _require_event(db: AsyncSession, event_id: int) -> Event:
    event = await events_crud.get_event_by_id(db, event_id)
    if not event:
        raise NotFound("Event not found", ctx={"event_id": event_id})
    return event


async def _load_ticket_types(db: AsyncSession, event_id: int, ids: list[int]) -> dict[int, TicketType]:
    ticket_types = await ticketing_crud.get_ticket_types_for_event(db, event_id, ids)
    by_id = {t.id: t for t in ticket_types}
    missing = [tid for tid in ids if tid not in by_id]
    if missing:
        raise Unprocessable(
            "Ticket type does not match event",
            ctx={"event_id": event_id, "ticket_type_ids": missing}
        )
    return by_id


async def _lock_existing(db: AsyncSession, user_id: int, ticket_types: dict[int, TicketType]) -> dict[int, Registration]:
    existing: dict[int, Registration] = {}
    for ticket_type_id in sorted(ticket_types):
        registration = await crud.get_active_registration(db, user_id, ticket_type_id, for_update=True)
        if not registration:
            continue
        if registration.payment_required and registration.payment_status != RegistrationPaymentStatus.PENDING:
            # one payment per paid registration; a settled payment cannot grow
            raise Conflict(
                "Already registered for this paid ticket",
                ctx={
                    "registration_id": registration.id,
                    "ticket_type_id": ticket_type_id,
                    "payment_status": registration.payment_status,
                },
            )
        existing[ticket_type_id] = registration
    return existing


def _grow_pending_payment(payment: Payment, amount: int, quantity: int, result: RegistrationResult) -> None:
    if payment.status != PaymentStatus.PENDING:
        raise Conflict("Payment is no longer pending", ctx={"payment_id": payment.id, "status": payment.status})
    if result.checkout_reference is None:
        # every selected type is free now, so this call opens no checkout to move the payment to
        raise Conflict(
            "Ticket price changed, cancel the pending registration first",
            ctx={"payment_id": payment.id},
        )
    payment.amount_total += amount
    payment.quantity += quantity
    payment.platform_fee = platform_fee_for(payment.amount_total)
    # the earlier checkout is superseded: the one returned from this call charges the whole payment
    payment.checkout_reference = result.checkout_reference
    payment.expires_at = result.expires_at


async def register(
        db: AsyncSession,
        user: Actor,
        event_id: int,
        selections: dict[int, int],
) -> RegistrationResult:
    """
    Register `user` for the selected ticket types of an event.
    - Capacity for every selection is reserved in one all-or-nothing step (CapacityExceeded aborts the call)
    - A repeat selection grows the active registration (and its still pending payment) by the requested quantity
    - Paid selections get a PENDING payment each, sharing one checkout reference; they hold capacity
      until the gateway confirms or the reservation expires
    """
    _validate_selections(selections)
    async with AuditSpan(
        scope="REGISTRATIONS",
        action="REGISTER",
        object_type="registration",
        event_id=event_id,
        meta={"selections": {str(k): v for k, v in selections.items()}}
    ) as span:
        await _require_event(db, event_id)
        ids = sorted(selections)
        ticket_types = await _load_ticket_types(db, event_id, ids)
        existing = await _lock_existing(db, user.id, ticket_types)

        await capacity_service.reserve_many(db, event_id, {tid: selections[tid] for tid in ids})

        now = datetime.now(timezone.utc)
        payment_required = any(not ticket_types[tid].is_free for tid in ids)
        result = RegistrationResult(registration_ids=[], payment_required=payment_required)
        if payment_required:
            result.checkout_reference = uuid.uuid4()
            result.expires_at = now + timedelta(minutes=RESERVATION_MINUTES)

        registrations: list[Registration] = []
        for tid in ids:
            ticket_type = ticket_types[tid]
            quantity = selections[tid]
            registration = existing.get(tid)

            if registration is not None:
                if registration.payment is None and not ticket_type.is_free:
                    raise Conflict(
                        "Ticket is no longer free, cancel the existing registration first",
                        ctx={"registration_id": registration.id, "ticket_type_id": tid},
                    )
                registration.quantity += quantity
                if registration.payment is not None:
                    amount = ticket_type.price * quantity
                    _grow_pending_payment(registration.payment, amount, quantity, result)
                    result.amount_due += registration.payment.amount_total
                registrations.append(registration)
                continue

            registration = await crud.create_registration(db, {
                "event_id": event_id,
                "user_id": user.id,
                "ticket_type_id": tid,
                "quantity": quantity,
                "name": user.name,
                "email": user.email,
                "payment_required": not ticket_type.is_free,
                "payment_status": (
                    RegistrationPaymentStatus.NOT_REQUIRED if ticket_type.is_free
                    else RegistrationPaymentStatus.PENDING
                ),
            })
            if not ticket_type.is_free:
                amount = ticket_type.price * quantity
                registration.payment = await payments_crud.create_payment(db, {
                    "event_id": event_id,
                    "user_id": user.id,
                    "checkout_reference": result.checkout_reference,
                    "amount_total": amount,
                    "platform_fee": platform_fee_for(amount),
                    "quantity": quantity,
                    "status": PaymentStatus.PENDING,
                    "expires_at": result.expires_at,
                })
                result.amount_due += amount
            registrations.append(registration)

        try:
            await db.flush()
        except IntegrityError as e:
            # partial unique index on active (user, ticket type): a concurrent request won the insert
            raise Conflict(
                "Registration changed concurrently, retry",
                ctx={"event_id": event_id, "user_id": user.id}
            ) from e

        result.registration_ids = [r.id for r in registrations]
        result.payment_ids = [r.payment.id for r in registrations if r.payment is not None]
        span.object_id = result.registration_ids[0]
        span.meta.update({
            "registration_ids": result.registration_ids,
            "payment_required": payment_required,
            "amount_due": result.amount_due,
        })
        return result


async def is_registered(db: AsyncSession, user_id: int, event_id: int) -> bool:
    return await crud.active_registration_exists(db, user_id, event_id)


async def list_registrations(db: AsyncSession, event_id: int) -> list[Registration]:
    return await crud.list_registrations(db, event_id)


async def cancel(db: AsyncSession, registration: Registration, reason: str | None = None) -> bool:
    """
    Cancel a registration the caller has locked and give its quantity back.
    Returns False (and releases nothing) when it was already cancelled.
    """
    if registration.is_cancelled:
        return False
    registration.is_cancelled = True
    registration.cancelled_at = datetime.now(timezone.utc)
    registration.cancellation_reason = reason
    await capacity_service.release(db, registration.ticket_type_id, registration.quantity)
    await db.flush()
    logger.info(
        "Registration cancelled id=%s ticket_type_id=%s quantity=%s reason=%s",
        registration.id, registration.ticket_type_id, registration.quantity, reason,
    )
    return True


async def deregister(db: AsyncSession, user: Actor, event_id: int, registration_id: int) -> Registration:
    async with AuditSpan(
        scope="REGISTRATIONS",
        action="DEREGISTER",
        object_type="registration",
        object_id=registration_id,
        registration_id=registration_id,
        event_id=event_id,
    ):
        registration = await crud.get_registration(db, registration_id, for_update=True)
        if not registration or registration.event_id != event_id or registration.user_id != user.id:
            raise NotFound("Registration not found", ctx={"registration_id": registration_id, "event_id": event_id})
        if registration.is_cancelled:
            raise Conflict("Registration already cancelled", ctx={"registration_id": registration_id})
        if registration.payment_required:
            raise Conflict(
                "Paid registrations are cancelled through a refund",
                ctx={"registration_id": registration_id, "payment_status": registration.payment_status},
            )
        await cancel(db, registration, reason="Deregistered by user")
        return registration

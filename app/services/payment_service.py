"""
Payment status machine.

    PENDING -> SUCCEEDED | FAILED
    SUCCEEDED -> REFUNDED | PARTIALLY_REFUNDED
    PARTIALLY_REFUNDED -> REFUNDED

Repeating the current state is a no-op; anything else raises Conflict.
Rows are locked registration first, then payment.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.auditing import AuditSpan
from app.core.config import EXPIRY_BATCH
from app.domain.payments import crud
from app.domain.payments.models import Payment, PaymentStatus
from app.domain.registrations import crud as registrations_crud
from app.domain.registrations.models import Registration, RegistrationPaymentStatus
from app.domain.exceptions import NotFound, Conflict
from app.integrations.payment_gateway import PaymentGateway
from app.services import registration_service

logger = logging.getLogger("app.payments")

LATE_PAYMENT_REASON = "Paid after the reservation was released"
SUPERSEDED_CHECKOUT_REASON = "Checkout replaced by a newer one"
GATEWAY_REFUND_REASON = "Refunded in the payment gateway"


_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.FAILED}),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

_REGISTRATION_STATUS = {
    PaymentStatus.SUCCEEDED: RegistrationPaymentStatus.PAID,
    PaymentStatus.FAILED: RegistrationPaymentStatus.FAILED,
    PaymentStatus.REFUNDED: RegistrationPaymentStatus.REFUNDED,
    PaymentStatus.PARTIALLY_REFUNDED: RegistrationPaymentStatus.PARTIALLY_REFUNDED,
}


@dataclass
class ExpiryStats:
    payments_expired: int = 0
    registrations_cancelled: int = 0
    seats_released: int = 0


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return current == target or target in _TRANSITIONS[current]


def _transition(payment: Payment, registration: Registration | None, target: PaymentStatus) -> bool:
    """Move `payment` to `target`; False when it is already there."""
    if payment.status == target:
        return False
    if target not in _TRANSITIONS[payment.status]:
        raise Conflict(
            "Illegal payment status transition",
            ctx={"payment_id": payment.id, "from": payment.status, "to": target},
        )
    payment.status = target
    if registration is not None:
        registration.payment_status = _REGISTRATION_STATUS[target]
    return True


async def lock_registration_payment(db: AsyncSession, registration_id: int) -> tuple[Registration, Payment]:
    registration = await registrations_crud.get_registration(db, registration_id, for_update=True)
    if not registration or registration.payment_id is None:
        raise NotFound("Payment not found", ctx={"registration_id": registration_id})
    payment = await crud.get_payment(db, registration.payment_id, for_update=True)
    if not payment:
        raise NotFound("Payment not found", ctx={"payment_id": registration.payment_id})
    return registration, payment


async def _lock_by_payment(db: AsyncSession, payment_id: int) -> tuple[Registration, Payment]:
    registration_id = await registrations_crud.get_registration_id_by_payment(db, payment_id)
    if registration_id is None:
        raise NotFound("Payment not found", ctx={"payment_id": payment_id})
    return await lock_registration_payment(db, registration_id)


def _apply_paid(registration: Registration, payment: Payment, gateway_payment_id: str | None) -> bool:
    changed = _transition(payment, registration, PaymentStatus.SUCCEEDED)
    if changed:
        payment.paid_at = datetime.now(timezone.utc)
        if gateway_payment_id:
            payment.gateway_payment_id = gateway_payment_id
    return changed


async def _apply_failed(db: AsyncSession, registration: Registration, payment: Payment, reason: str) -> bool:
    changed = _transition(payment, registration, PaymentStatus.FAILED)
    if changed:
        await registration_service.cancel(db, registration, reason=reason)
    return changed


async def mark_paid(db: AsyncSession, payment_id: int, gateway_payment_id: str | None = None) -> Payment:
    async with AuditSpan(
        scope="PAYMENTS",
        action="MARK_PAID",
        object_type="payment",
        object_id=payment_id,
        payment_id=payment_id,
    ) as span:
        registration, payment = await _lock_by_payment(db, payment_id)
        span.event_id = payment.event_id
        span.registration_id = registration.id
        span.meta["changed"] = _apply_paid(registration, payment, gateway_payment_id)
        await db.flush()
        return payment


async def mark_failed(db: AsyncSession, payment_id: int, reason: str = "Payment failed") -> Payment:
    async with AuditSpan(
        scope="PAYMENTS",
        action="MARK_FAILED",
        object_type="payment",
        object_id=payment_id,
        payment_id=payment_id,
        meta={"reason": reason}
    ) as span:
        registration, payment = await _lock_by_payment(db, payment_id)
        span.event_id = payment.event_id
        span.registration_id = registration.id
        span.meta["changed"] = await _apply_failed(db, registration, payment, reason)
        await db.flush()
        return payment


def mark_refunded(payment: Payment, refund_id: str, reason: str | None = None) -> bool:
    """Caller holds the row locks. Capacity is not touched here."""
    changed = _transition(payment, payment.registration, PaymentStatus.REFUNDED)
    if changed:
        payment.refund_amount = payment.amount_total
        payment.gateway_refund_id = refund_id
        payment.refund_reason = reason
        payment.refunded_at = datetime.now(timezone.utc)
    return changed


def refund_idempotency_key(payment: Payment) -> str:
    return f"refund-payment-{payment.id}"


async def _refund_late_payment(gateway: PaymentGateway | None, payment: Payment,
                               gateway_payment_id: str | None) -> bool:
    """Give back a payment that arrived after its reservation was released. The payment stays FAILED."""
    if payment.gateway_refund_id:
        return False
    if gateway is None or not gateway_payment_id:
        logger.error(
            "Late payment needs a manual refund payment_id=%s gateway_payment_id=%s",
            payment.id, gateway_payment_id,
        )
        return False
    result = await gateway.refund(
        gateway_payment_id,
        payment.amount_total,
        idempotency_key=refund_idempotency_key(payment),
        reason=LATE_PAYMENT_REASON,
    )
    payment.gateway_payment_id = gateway_payment_id
    payment.gateway_refund_id = result.refund_id
    payment.refund_amount = result.amount
    payment.refund_reason = LATE_PAYMENT_REASON
    payment.refunded_at = datetime.now(timezone.utc)
    logger.warning(
        "Refunded late payment payment_id=%s amount=%s refund_id=%s",
        payment.id, result.amount, result.refund_id,
    )
    return True


async def mark_checkout_paid(
        db: AsyncSession,
        checkout_reference: UUID,
        gateway_payment_id: str | None = None,
        *,
        gateway: PaymentGateway | None = None,
        amount_paid: int | None = None,
) -> int:
    """
    Settle every payment of one checkout. Returns how many changed state.
    Money the ledger cannot keep goes back through `gateway`:
    - payments already FAILED (the reservation expired first) are refunded in full
    - `amount_paid` beyond the payments still on this checkout belongs to payments a later
      registration moved to a newer checkout, and is refunded as one surplus
    """
    changed = 0
    covered = 0
    async with AuditSpan(
        scope="PAYMENTS",
        action="CHECKOUT_PAID",
        object_type="checkout",
        meta={"checkout_reference": str(checkout_reference)}
    ) as span:
        for registration_id in await crud.list_checkout_registration_ids(db, checkout_reference):
            registration, payment = await lock_registration_payment(db, registration_id)
            if payment.checkout_reference != checkout_reference:
                logger.warning(
                    "Checkout paid for a superseded payment payment_id=%s checkout=%s current=%s",
                    payment.id, checkout_reference, payment.checkout_reference,
                )
                span.meta.setdefault("superseded_payment_ids", []).append(payment.id)
                continue
            covered += payment.amount_total
            if payment.status == PaymentStatus.FAILED:
                if await _refund_late_payment(gateway, payment, gateway_payment_id):
                    span.meta.setdefault("late_refund_payment_ids", []).append(payment.id)
                continue
            if not can_transition(payment.status, PaymentStatus.SUCCEEDED):
                logger.error(
                    "Checkout paid for a settled payment payment_id=%s status=%s checkout=%s",
                    payment.id, payment.status, checkout_reference,
                )
                span.meta.setdefault("unsettled_payment_ids", []).append(payment.id)
                continue
            changed += _apply_paid(registration, payment, gateway_payment_id)

        surplus = (amount_paid or 0) - covered
        if surplus > 0:
            span.meta["surplus"] = surplus
            if gateway is None or not gateway_payment_id:
                logger.error("Checkout surplus needs a manual refund checkout=%s amount=%s",
                             checkout_reference, surplus)
            else:
                result = await gateway.refund(
                    gateway_payment_id,
                    surplus,
                    idempotency_key=f"refund-checkout-{checkout_reference}",
                    reason=SUPERSEDED_CHECKOUT_REASON,
                )
                span.meta["surplus_refund_id"] = result.refund_id
                logger.warning("Refunded superseded checkout=%s amount=%s refund_id=%s",
                               checkout_reference, surplus, result.refund_id)
        await db.flush()
        span.meta["changed"] = changed
    return changed


async def mark_checkout_failed(db: AsyncSession, checkout_reference: UUID, reason: str = "Checkout failed") -> int:
    changed = 0
    async with AuditSpan(
        scope="PAYMENTS",
        action="CHECKOUT_FAILED",
        object_type="checkout",
        meta={"checkout_reference": str(checkout_reference), "reason": reason}
    ) as span:
        for registration_id in await crud.list_checkout_registration_ids(db, checkout_reference):
            registration, payment = await lock_registration_payment(db, registration_id)
            if payment.checkout_reference != checkout_reference or payment.status != PaymentStatus.PENDING:
                continue
            changed += await _apply_failed(db, registration, payment, reason)
        await db.flush()
        span.meta["changed"] = changed
    return changed


async def mark_gateway_refunded(db: AsyncSession, gateway_payment_id: str, refund_id: str,
                                reason: str = GATEWAY_REFUND_REASON) -> int:
    """A refund issued in the gateway itself: refund every settled payment of that charge and free the seats."""
    changed = 0
    async with AuditSpan(
        scope="PAYMENTS",
        action="GATEWAY_REFUNDED",
        object_type="payment",
        meta={"gateway_payment_id": gateway_payment_id, "refund_id": refund_id}
    ) as span:
        for registration_id in await crud.list_gateway_payment_registration_ids(db, gateway_payment_id):
            registration, payment = await lock_registration_payment(db, registration_id)
            if payment.status not in (PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED):
                continue
            mark_refunded(payment, refund_id, reason)
            await registration_service.cancel(db, registration, reason=reason)
            changed += 1
        await db.flush()
        span.meta["changed"] = changed
    if changed:
        logger.info("Gateway refund applied gateway_payment_id=%s payments=%s", gateway_payment_id, changed)
    return changed


async def expire_pending_payments(db: AsyncSession, limit: int = EXPIRY_BATCH,
                                  now: datetime | None = None) -> ExpiryStats:
    """Fail pending payments past `expires_at` and give their seats back."""
    now = now or datetime.now(timezone.utc)
    stats = ExpiryStats()
    async with AuditSpan(
        scope="PAYMENTS",
        action="EXPIRE_PENDING",
        object_type="payment",
        meta={"limit": limit}
    ) as span:
        for registration_id in await crud.claim_expired_registration_ids(db, now, limit):
            registration, payment = await lock_registration_payment(db, registration_id)
            if payment.status != PaymentStatus.PENDING:
                continue
            quantity = registration.quantity
            was_active = not registration.is_cancelled
            if await _apply_failed(db, registration, payment, "Reservation expired"):
                stats.payments_expired += 1
                if was_active:
                    stats.registrations_cancelled += 1
                    stats.seats_released += quantity
        await db.flush()
        span.meta.update({
            "payments_expired": stats.payments_expired,
            "registrations_cancelled": stats.registrations_cancelled,
            "seats_released": stats.seats_released,
        })
    if stats.payments_expired:
        logger.info(
            "Expired pending payments=%s seats_released=%s",
            stats.payments_expired, stats.seats_released,
        )
    return stats

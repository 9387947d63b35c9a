import logging
from dataclasses import dataclass
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.auditing import AuditSpan
from app.integrations.payment_gateway import PaymentGateway
from app.domain.registrations import crud as registrations_crud
from app.domain.registrations.models import Registration
from app.domain.payments.models import Payment, PaymentStatus
from app.domain.exceptions import NotFound, RefundNotEligible
from app.services import payment_service, registration_service

logger = logging.getLogger("app.refunds")


@dataclass(frozen=True)
class RefundOutcome:
    amount: int
    refund_id: str
    status: str


def can_refund(registration: Registration | None, payment: Payment | None = None) -> bool:
    if registration is None or registration.is_cancelled or not registration.payment_required:
        return False
    payment = payment if payment is not None else registration.payment
    return payment is not None and payment.status == PaymentStatus.SUCCEEDED


async def refund(
        db: AsyncSession,
        gateway: PaymentGateway,
        event_id: int,
        registration_uuid: UUID,
        reason: str | None = None,
) -> RefundOutcome:
    """
    Refund a paid registration in full and cancel it.
    - The gateway call is keyed by payment id: a retry after a lost response gets the same refund back
    - Status change and capacity release happen in the caller's transaction, after the gateway succeeded
    - Gateway failures leave every row untouched
    """
    async with AuditSpan(
        scope="REFUNDS",
        action="REFUND",
        object_type="registration",
        event_id=event_id,
        meta={"registration_uuid": str(registration_uuid), "reason": reason}
    ) as span:
        found = await registrations_crud.get_registration_by_uuid(db, registration_uuid)
        if not found or found.event_id != event_id:
            raise NotFound("Registration not found", ctx={"event_id": event_id, "registration_uuid": registration_uuid})
        span.object_id = found.id
        span.registration_id = found.id
        if found.payment_id is None:
            raise RefundNotEligible("Registration has no payment", ctx={"registration_id": found.id})

        registration, payment = await payment_service.lock_registration_payment(db, found.id)
        span.payment_id = payment.id
        if not can_refund(registration, payment):
            raise RefundNotEligible(
                "Registration is not eligible for a refund",
                ctx={
                    "registration_id": registration.id,
                    "is_cancelled": registration.is_cancelled,
                    "payment_status": payment.status,
                },
            )
        if not payment.gateway_payment_id:
            raise RefundNotEligible(
                "Payment has no gateway reference",
                ctx={"registration_id": registration.id, "payment_id": payment.id},
            )

        result = await gateway.refund(
            payment.gateway_payment_id,
            payment.amount_total,
            idempotency_key=payment_service.refund_idempotency_key(payment),
            reason=reason,
        )

        payment_service.mark_refunded(payment, result.refund_id, reason)
        await registration_service.cancel(db, registration, reason=reason or "Refunded")
        await db.flush()

        logger.info(
            "Refunded registration_id=%s payment_id=%s amount=%s refund_id=%s",
            registration.id, payment.id, payment.amount_total, result.refund_id,
        )
        span.meta.update({"amount": payment.amount_total, "refund_id": result.refund_id})
        return RefundOutcome(amount=payment.amount_total, refund_id=result.refund_id, status=PaymentStatus.REFUNDED.value)

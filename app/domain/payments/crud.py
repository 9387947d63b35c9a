from datetime import datetime
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.domain.registrations.models import Registration
from .models import Payment, PaymentStatus


async def get_payment(db: AsyncSession, payment_id: int, *, for_update: bool = False) -> Payment | None:
    stmt = select(Payment).where(Payment.id == payment_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return await db.scalar(stmt)


async def list_checkout_registration_ids(db: AsyncSession, checkout_reference: UUID) -> list[int]:
    result = await db.scalars(
        select(Registration.id)
        .join(Payment, Registration.payment_id == Payment.id)
        .where(Payment.checkout_reference == checkout_reference)
        .order_by(Registration.ticket_type_id, Registration.id)
    )
    return list(result)


async def claim_expired_registration_ids(db: AsyncSession, now: datetime, limit: int) -> list[int]:
    """Lock registrations behind expired pending payments; rows another worker holds are skipped."""
    result = await db.scalars(
        select(Registration.id)
        .join(Payment, Registration.payment_id == Payment.id)
        .where(Payment.status == PaymentStatus.PENDING, Payment.expires_at < now)
        .order_by(Payment.expires_at, Registration.id)
        .with_for_update(skip_locked=True, of=Registration)
        .limit(limit)
    )
    return list(result)


async def list_recent_payments(db: AsyncSession, event_id: int, limit: int = 10) -> list[Payment]:
    result = await db.scalars(
        select(Payment)
        .where(Payment.event_id == event_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(limit)
    )
    return list(result)


async def create_payment(db: AsyncSession, data: dict) -> Payment:
    payment = Payment(**data)
    db.add(payment)
    return payment


async def list_gateway_payment_registration_ids(db: AsyncSession, gateway_payment_id: str) -> list[int]:
    result = await db.scalars(
        select(Registration.id)
        .join(Payment, Registration.payment_id == Payment.id)
        .where(Payment.gateway_payment_id == gateway_payment_id)
        .order_by(Registration.ticket_type_id, Registration.id)
    )
    return list(result)

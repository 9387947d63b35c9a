from uuid import UUID
from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession
from .models import Registration


async def get_active_registration(
        db: AsyncSession,
        user_id: int,
        ticket_type_id: int,
        *,
        for_update: bool = True
) -> Registration | None:
    stmt = select(Registration).where(
        Registration.user_id == user_id,
        Registration.ticket_type_id == ticket_type_id,
        Registration.is_cancelled.is_(False),
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return await db.scalar(stmt)


async def get_registration(db: AsyncSession, registration_id: int, *, for_update: bool = False) -> Registration | None:
    stmt = select(Registration).where(Registration.id == registration_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return await db.scalar(stmt)


async def get_registration_by_uuid(
        db: AsyncSession,
        registration_uuid: UUID,
        *,
        for_update: bool = False
) -> Registration | None:
    stmt = select(Registration).where(Registration.uuid == registration_uuid)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return await db.scalar(stmt)


async def active_registration_exists(db: AsyncSession, user_id: int, event_id: int) -> bool:
    stmt = select(
        exists().where(
            Registration.user_id == user_id,
            Registration.event_id == event_id,
            Registration.is_cancelled.is_(False),
        )
    )
    return bool(await db.scalar(stmt))


async def list_registrations(db: AsyncSession, event_id: int, *, include_cancelled: bool = True) -> list[Registration]:
    stmt = select(Registration).where(Registration.event_id == event_id)
    if not include_cancelled:
        stmt = stmt.where(Registration.is_cancelled.is_(False))
    result = await db.execute(stmt.order_by(Registration.created_at, Registration.id))
    return result.scalars().all()


async def create_registration(db: AsyncSession, data: dict) -> Registration:
    registration = Registration(**data)
    db.add(registration)
    return registration


async def get_registration_id_by_payment(db: AsyncSession, payment_id: int) -> int | None:
    return await db.scalar(select(Registration.id).where(Registration.payment_id == payment_id))

from datetime import datetime, timezone
from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession
from app.domain.ticketing.models import TicketType
from app.domain.registrations.models import Registration


def _live():
    return TicketType.deleted_at.is_(None)


async def get_ticket_type(db: AsyncSession, ticket_type_id: int, *, for_update: bool = False) -> TicketType | None:
    stmt = select(TicketType).where(TicketType.id == ticket_type_id, _live())
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalars().first()


async def get_ticket_types_for_event(
        db: AsyncSession,
        event_id: int,
        ids: list[int],
        *,
        for_update: bool = False
) -> list[TicketType]:
    stmt = (
        select(TicketType)
        .where(TicketType.event_id == event_id, TicketType.id.in_(ids), _live())
        .order_by(TicketType.id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalars().all()


async def list_ticket_types(db: AsyncSession, event_id: int) -> list[TicketType]:
    stmt = (
        select(TicketType)
        .where(TicketType.event_id == event_id, _live())
        .order_by(TicketType.price, TicketType.id)
    )
    result = await db.execute(stmt)
    return result.scalars().all()


async def create_ticket_type(db: AsyncSession, data: dict) -> TicketType:
    ticket_type = TicketType(**data)
    db.add(ticket_type)
    return ticket_type


async def update_ticket_type(ticket_type: TicketType, data: dict) -> TicketType:
    for key, value in data.items():
        setattr(ticket_type, key, value)
    return ticket_type


async def has_active_registrations(db: AsyncSession, ticket_type_id: int) -> bool:
    stmt = select(
        exists().where(Registration.ticket_type_id == ticket_type_id, Registration.is_cancelled.is_(False))
    )
    return bool(await db.scalar(stmt))


async def delete_ticket_type(ticket_type: TicketType) -> None:
    ticket_type.deleted_at = datetime.now(timezone.utc)

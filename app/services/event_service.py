from sqlalchemy.ext.asyncio import AsyncSession
from app.domain.events.models import Event
from app.domain.events.schemas import EventCreateDTO
from app.core.auditing import AuditSpan
from app.domain.events import crud
from app.domain.exceptions import NotFound
from app.services import capacity_service


async def get_event(db: AsyncSession, event_id: int) -> Event:
    event = await crud.get_event_by_id(db, event_id)
    if not event:
        raise NotFound("Event not found", ctx={"event_id": event_id})
    return event


async def get_capacity(db: AsyncSession, event_id: int) -> tuple[bool, Event]:
    """(space_available, event). Unlimited events always have space."""
    return await capacity_service.check_capacity(db, event_id)


async def create_event(db: AsyncSession, organizer_id: int, schema: EventCreateDTO) -> Event:
    async with AuditSpan(
        scope="EVENTS",
        action="CREATE",
        object_type="event",
        meta={"organizer_id": organizer_id, "capacity": schema.capacity}
    ) as span:
        data = schema.model_dump()
        data["organizer_id"] = organizer_id
        event = await crud.create_event(db, data)
        await db.flush()

        span.object_id = event.id
        span.event_id = event.id
        return event

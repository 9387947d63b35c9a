from fastapi import Depends
from typing import Annotated, NamedTuple
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.core.dependencies.auth import get_current_actor
from app.domain.auth.schemas import Actor
from app.domain.events import crud as events_crud
from app.domain.events.models import Event
from app.domain.exceptions import NotFound, Forbidden


class EventActor(NamedTuple):
    event: Event
    actor: Actor


async def _ensure_event_owner(event_id: int, db: AsyncSession, actor: Actor) -> Event:
    event = await events_crud.get_event_by_id(db, event_id)
    if not event:
        raise NotFound("Event not found", ctx={"event_id": event_id})

    if actor.is_admin:
        return event

    if event.organizer_id != actor.id:
        raise Forbidden("Not allowed", ctx={"event_id": event_id, "reason": "organizer_mismatch"})

    return event


async def require_event_owner(
        event_id: int,
        db: Annotated[AsyncSession, Depends(get_db)],
        actor: Annotated[Actor, Depends(get_current_actor)]
) -> Event:
    return await _ensure_event_owner(event_id, db, actor)


async def require_event_actor(
        event_id: int,
        db: Annotated[AsyncSession, Depends(get_db)],
        actor: Annotated[Actor, Depends(get_current_actor)]
) -> EventActor:
    event = await _ensure_event_owner(event_id, db, actor)
    return EventActor(event, actor)

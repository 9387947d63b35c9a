from fastapi import APIRouter, status, Depends, Response
from typing import Annotated
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.core.dependencies.auth import get_current_actor_with_roles, get_current_actor
from app.domain.auth.schemas import Actor
from app.domain.events.schemas import EventCreateDTO, EventReadDTO, CapacityReadDTO
from app.services import event_service


router = APIRouter(tags=["events"])
db_dependency = Annotated[AsyncSession, Depends(get_db)]


@router.post(
    "/events",
    status_code=status.HTTP_201_CREATED,
    response_model=EventReadDTO
)
async def create_event(
        schema: EventCreateDTO,
        db: db_dependency,
        actor: Annotated[Actor, Depends(get_current_actor_with_roles("ADMIN", "ORGANIZER"))],
        response: Response
):
    event = await event_service.create_event(db, actor.id, schema)
    response.headers["Location"] = f"/events/{event.id}"
    return event


@router.get(
    "/events/{event_id}",
    status_code=status.HTTP_200_OK,
    response_model=EventReadDTO,
    dependencies=[Depends(get_current_actor)]
)
async def get_event(event_id: int, db: db_dependency):
    return await event_service.get_event(db, event_id)


@router.get(
    "/events/{event_id}/capacity",
    status_code=status.HTTP_200_OK,
    response_model=CapacityReadDTO,
    dependencies=[Depends(get_current_actor)]
)
async def check_capacity(event_id: int, db: db_dependency):
    space_available, event = await event_service.get_capacity(db, event_id)
    return CapacityReadDTO(space_available=space_available, capacity=event.capacity, committed=event.committed)

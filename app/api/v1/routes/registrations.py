from fastapi import APIRouter, status, Depends
from typing import Annotated
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.core.dependencies.auth import get_current_actor
from app.core.dependencies.events import require_event_owner
from app.domain.auth.schemas import Actor
from app.domain.events.models import Event
from app.domain.registrations.schemas import RegistrationRequestDTO, RegistrationResultDTO, RegistrationStatusDTO, \
    RegistrationReadDTO
from app.services import registration_service, event_service


router = APIRouter(prefix="/events/{event_id}/registrations", tags=["registrations"])
db_dependency = Annotated[AsyncSession, Depends(get_db)]
actor_dependency = Annotated[Actor, Depends(get_current_actor)]


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=RegistrationResultDTO
)
async def register(event_id: int, schema: RegistrationRequestDTO, db: db_dependency, actor: actor_dependency):
    result = await registration_service.register(db, actor, event_id, schema.ticket_quantities)
    return RegistrationResultDTO(
        success=result.success,
        registration_ids=result.registration_ids,
        payment_required=result.payment_required,
        checkout_reference=result.checkout_reference,
        amount_due=result.amount_due,
        expires_at=result.expires_at,
    )


@router.get(
    "/me",
    status_code=status.HTTP_200_OK,
    response_model=RegistrationStatusDTO
)
async def is_registered(event_id: int, db: db_dependency, actor: actor_dependency):
    await event_service.get_event(db, event_id)
    registered = await registration_service.is_registered(db, actor.id, event_id)
    return RegistrationStatusDTO(event_id=event_id, registered=registered)


@router.delete(
    "/{registration_id}",
    status_code=status.HTTP_204_NO_CONTENT
)
async def deregister(event_id: int, registration_id: int, db: db_dependency, actor: actor_dependency):
    await registration_service.deregister(db, actor, event_id, registration_id)


@router.get(
    "",
    status_code=status.HTTP_200_OK,
    response_model=list[RegistrationReadDTO]
)
async def list_registrations(event: Annotated[Event, Depends(require_event_owner)], db: db_dependency):
    return await registration_service.list_registrations(db, event.id)

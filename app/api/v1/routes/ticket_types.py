from fastapi import APIRouter, status, Depends
from typing import Annotated
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.core.dependencies.auth import get_current_actor
from app.core.dependencies.events import require_event_owner
from app.domain.events.models import Event
from app.domain.ticketing.schemas import TicketTypeReadDTO, TicketTypeBulkCreateDTO, TicketTypeUpdateDTO, \
    TicketTypeDeleteDTO
from app.services import ticket_type_service, event_service


router = APIRouter(prefix="/events/{event_id}/ticket-types", tags=["ticket-types"])
db_dependency = Annotated[AsyncSession, Depends(get_db)]
owner_dependency = Annotated[Event, Depends(require_event_owner)]


@router.get(
    "",
    status_code=status.HTTP_200_OK,
    response_model=list[TicketTypeReadDTO],
    dependencies=[Depends(get_current_actor)]
)
async def list_ticket_types(event_id: int, db: db_dependency):
    await event_service.get_event(db, event_id)
    return await ticket_type_service.list_ticket_types(db, event_id)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=list[TicketTypeReadDTO]
)
async def create_ticket_types(schema: TicketTypeBulkCreateDTO, event: owner_dependency, db: db_dependency):
    return await ticket_type_service.insert_ticket_types(db, event, schema)


@router.patch(
    "/{ticket_type_id}",
    status_code=status.HTTP_200_OK,
    response_model=TicketTypeReadDTO
)
async def update_ticket_type(
        ticket_type_id: int,
        schema: TicketTypeUpdateDTO,
        event: owner_dependency,
        db: db_dependency
):
    return await ticket_type_service.update_ticket_type(db, event.id, ticket_type_id, schema)


@router.delete(
    "/{ticket_type_id}",
    status_code=status.HTTP_204_NO_CONTENT
)
async def delete_ticket_type(ticket_type_id: int, event: owner_dependency, db: db_dependency):
    await ticket_type_service.delete_ticket_type(db, event.id, ticket_type_id)


@router.post(
    "/bulk-delete",
    status_code=status.HTTP_204_NO_CONTENT
)
async def delete_ticket_types(schema: TicketTypeDeleteDTO, event: owner_dependency, db: db_dependency):
    await ticket_type_service.delete_ticket_types(db, event.id, schema.ticket_ids)

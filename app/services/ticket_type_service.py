from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from app.domain.ticketing import crud
from app.domain.ticketing.models import TicketType
from app.domain.ticketing.schemas import TicketTypeCreateDTO, TicketTypeBulkCreateDTO, TicketTypeUpdateDTO
from app.domain.events.models import Event
from app.core.auditing import AuditSpan
from app.domain.exceptions import NotFound, Conflict, InvalidInput, TicketTypeInUse


def _validate_amounts(price: int | None, capacity: int | None) -> None:
    if price is not None and price < 0:
        raise InvalidInput("Price must not be negative", ctx={"price": price})
    if capacity is not None and capacity < 0:
        raise InvalidInput("Capacity must not be negative", ctx={"capacity": capacity})


async def get_ticket_type(db: AsyncSession, event_id: int, ticket_type_id: int, *, for_update: bool = False) -> TicketType:
    ticket_type = await crud.get_ticket_type(db, ticket_type_id, for_update=for_update)
    if not ticket_type or ticket_type.event_id != event_id:
        raise NotFound("Ticket type not found", ctx={"event_id": event_id, "ticket_type_id": ticket_type_id})
    return ticket_type


async def list_ticket_types(db: AsyncSession, event_id: int) -> list[TicketType]:
    return await crud.list_ticket_types(db, event_id)


async def create_ticket_type(db: AsyncSession, event: Event, schema: TicketTypeCreateDTO) -> TicketType:
    data = schema.model_dump()
    _validate_amounts(data["price"], data["capacity"])
    data["event_id"] = event.id

    async with AuditSpan(
        scope="TICKET_TYPES",
        action="CREATE",
        object_type="ticket_type",
        event_id=event.id,
        meta={"price": data["price"], "capacity": data["capacity"]}
    ) as span:
        ticket_type = await crud.create_ticket_type(db, data)
        try:
            await db.flush()
        except IntegrityError as e:
            raise Conflict("Ticket type with this name already exists", ctx={"event_id": event.id, "name": data["name"]}) from e
        span.object_id = ticket_type.id
        span.ticket_type_id = ticket_type.id
        return ticket_type


async def insert_ticket_types(db: AsyncSession, event: Event, schema: TicketTypeBulkCreateDTO) -> list[TicketType]:
    names = [t.name for t in schema.tickets]
    if len(set(names)) != len(names):
        raise InvalidInput("Duplicate ticket names in request", ctx={"names": names})

    async with AuditSpan(
        scope="TICKET_TYPES",
        action="CREATE_BULK",
        object_type="ticket_type",
        event_id=event.id,
        meta={"count": len(names)}
    ):
        created = []
        for ticket in schema.tickets:
            data = ticket.model_dump()
            _validate_amounts(data["price"], data["capacity"])
            created.append(await crud.create_ticket_type(db, {**data, "event_id": event.id}))
        try:
            await db.flush()
        except IntegrityError as e:
            raise Conflict("Ticket type with this name already exists", ctx={"event_id": event.id, "names": names}) from e
        return created


async def update_ticket_type(
        db: AsyncSession,
        event_id: int,
        ticket_type_id: int,
        schema: TicketTypeUpdateDTO
) -> TicketType:
    data = schema.model_dump(exclude_none=True, exclude={"unlimited"})
    if schema.unlimited:
        if "capacity" in data:
            raise InvalidInput("Either capacity or unlimited, not both", ctx={"ticket_type_id": ticket_type_id})
        data["capacity"] = None
    _validate_amounts(data.get("price"), data.get("capacity"))

    async with AuditSpan(
        scope="TICKET_TYPES",
        action="UPDATE",
        object_type="ticket_type",
        object_id=ticket_type_id,
        ticket_type_id=ticket_type_id,
        event_id=event_id,
        meta={"fields": sorted(data)}
    ):
        # row lock: committed cannot grow between this check and the capacity write
        ticket_type = await get_ticket_type(db, event_id, ticket_type_id, for_update=True)
        new_capacity = data.get("capacity", ticket_type.capacity)
        if new_capacity is not None and new_capacity < ticket_type.committed:
            raise Conflict(
                "Capacity cannot be lower than tickets already taken",
                ctx={"ticket_type_id": ticket_type_id, "capacity": new_capacity, "committed": ticket_type.committed},
            )

        ticket_type = await crud.update_ticket_type(ticket_type, data)
        try:
            await db.flush()
        except IntegrityError as e:
            raise Conflict("Ticket type with this name already exists", ctx={"ticket_type_id": ticket_type_id}) from e
        return ticket_type


async def _delete_locked(db: AsyncSession, ticket_type: TicketType) -> None:
    if await crud.has_active_registrations(db, ticket_type.id):
        raise TicketTypeInUse(
            "Ticket type has active registrations",
            ctx={"ticket_type_id": ticket_type.id, "committed": ticket_type.committed},
        )
    await crud.delete_ticket_type(ticket_type)


async def delete_ticket_type(db: AsyncSession, event_id: int, ticket_type_id: int) -> None:
    async with AuditSpan(
        scope="TICKET_TYPES",
        action="DELETE",
        object_type="ticket_type",
        object_id=ticket_type_id,
        ticket_type_id=ticket_type_id,
        event_id=event_id,
    ):
        ticket_type = await get_ticket_type(db, event_id, ticket_type_id, for_update=True)
        await _delete_locked(db, ticket_type)
        await db.flush()


async def delete_ticket_types(db: AsyncSession, event_id: int, ticket_type_ids: list[int]) -> None:
    """All-or-nothing: one in-use or unknown id aborts the whole batch."""
    ids = sorted(set(ticket_type_ids))
    async with AuditSpan(
        scope="TICKET_TYPES",
        action="DELETE_BULK",
        object_type="ticket_type",
        event_id=event_id,
        meta={"ticket_type_ids": ids}
    ):
        ticket_types = await crud.get_ticket_types_for_event(db, event_id, ids, for_update=True)
        missing = sorted(set(ids) - {t.id for t in ticket_types})
        if missing:
            raise NotFound("Ticket type not found", ctx={"event_id": event_id, "ticket_type_ids": missing})

        for ticket_type in ticket_types:
            await _delete_locked(db, ticket_type)
        await db.flush()

"""
Capacity allocation for ticket types and events.

Every reservation is a single guarded UPDATE: the row lock taken by the UPDATE
serializes concurrent reservations of the same ticket type and the guard
(`capacity IS NULL OR committed + q <= capacity`) makes the loser match zero
rows instead of overselling. Locks are always taken ticket types first (by
ascending id) and the event row last.
"""
import logging
from dataclasses import dataclass
from sqlalchemy import update, or_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from app.domain.events.models import Event
from app.domain.ticketing.models import TicketType
from app.domain.exceptions import CapacityExceeded, InvalidInput, NotFound

logger = logging.getLogger("app.capacity")


@dataclass(frozen=True)
class Reservation:
    ticket_type_id: int
    event_id: int
    quantity: int
    committed: int


def _require_positive(quantity: int) -> None:
    if quantity < 1:
        raise InvalidInput("Quantity must be at least 1", ctx={"quantity": quantity})


async def _explain_ticket_type_miss(db: AsyncSession, ticket_type_id: int, quantity: int) -> CapacityExceeded:
    row = (await db.execute(
        select(TicketType.capacity, TicketType.committed)
        .where(TicketType.id == ticket_type_id, TicketType.deleted_at.is_(None))
    )).first()
    if row is None:
        raise NotFound("Ticket type not found", ctx={"ticket_type_id": ticket_type_id})
    capacity, committed = row
    return CapacityExceeded(
        "Not enough tickets left",
        ctx={
            "ticket_type_id": ticket_type_id,
            "requested": quantity,
            "available": max((capacity or 0) - (committed or 0), 0),
        }
    )


async def _reserve_ticket_type(db: AsyncSession, ticket_type_id: int, quantity: int) -> Reservation:
    row = (await db.execute(
        update(TicketType)
        .where(
            TicketType.id == ticket_type_id,
            TicketType.deleted_at.is_(None),
            or_(TicketType.capacity.is_(None), TicketType.committed + quantity <= TicketType.capacity),
        )
        .values(committed=TicketType.committed + quantity)
        .returning(TicketType.event_id, TicketType.committed)
    )).first()
    if row is None:
        raise await _explain_ticket_type_miss(db, ticket_type_id, quantity)
    event_id, committed = row
    return Reservation(ticket_type_id=ticket_type_id, event_id=event_id, quantity=quantity, committed=committed)


async def _reserve_event(db: AsyncSession, event_id: int, quantity: int) -> bool:
    committed = await db.scalar(
        update(Event)
        .where(
            Event.id == event_id,
            or_(Event.capacity.is_(None), Event.committed + quantity <= Event.capacity),
        )
        .values(committed=Event.committed + quantity)
        .returning(Event.committed)
    )
    return committed is not None


async def _release_ticket_type(db: AsyncSession, ticket_type_id: int, quantity: int) -> int | None:
    return await db.scalar(
        update(TicketType)
        .where(TicketType.id == ticket_type_id)
        .values(committed=func.greatest(TicketType.committed - quantity, 0))
        .returning(TicketType.event_id)
    )


async def _release_event(db: AsyncSession, event_id: int, quantity: int) -> None:
    await db.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(committed=func.greatest(Event.committed - quantity, 0))
    )


async def reserve_many(db: AsyncSession, event_id: int, quantities: dict[int, int]) -> list[Reservation]:
    """
    Reserve several ticket types of one event. All-or-nothing: when any guard
    fails, the increments already made by this call are undone before
    CapacityExceeded propagates.
    """
    for quantity in quantities.values():
        _require_positive(quantity)

    reservations: list[Reservation] = []
    try:
        for ticket_type_id in sorted(quantities):
            reservation = await _reserve_ticket_type(db, ticket_type_id, quantities[ticket_type_id])
            reservations.append(reservation)
            if reservation.event_id != event_id:
                raise NotFound(
                    "Ticket type not found for event",
                    ctx={"ticket_type_id": ticket_type_id, "event_id": event_id},
                )

        total = sum(quantities.values())
        if not await _reserve_event(db, event_id, total):
            raise CapacityExceeded("Event capacity reached", ctx={"event_id": event_id, "requested": total})
    except (CapacityExceeded, NotFound):
        for reservation in reversed(reservations):
            await _release_ticket_type(db, reservation.ticket_type_id, reservation.quantity)
        logger.info("Reservation rejected event_id=%s quantities=%s", event_id, quantities)
        raise

    return reservations


async def reserve(db: AsyncSession, ticket_type_id: int, quantity: int) -> Reservation:
    """Reserve `quantity` units of one ticket type (and of its event)."""
    _require_positive(quantity)
    reservation = await _reserve_ticket_type(db, ticket_type_id, quantity)
    if not await _reserve_event(db, reservation.event_id, quantity):
        await _release_ticket_type(db, ticket_type_id, quantity)
        raise CapacityExceeded(
            "Event capacity reached",
            ctx={"event_id": reservation.event_id, "ticket_type_id": ticket_type_id, "requested": quantity},
        )
    return reservation


async def release(db: AsyncSession, ticket_type_id: int, quantity: int) -> None:
    """Give back `quantity` units; committed counters never go below zero."""
    _require_positive(quantity)
    event_id = await _release_ticket_type(db, ticket_type_id, quantity)
    if event_id is None:
        raise NotFound("Ticket type not found", ctx={"ticket_type_id": ticket_type_id})
    await _release_event(db, event_id, quantity)


async def check_capacity(db: AsyncSession, event_id: int) -> tuple[bool, Event]:
    event = await db.scalar(select(Event).where(Event.id == event_id))
    if not event:
        raise NotFound("Event not found", ctx={"event_id": event_id})
    if event.capacity is None:
        return True, event
    return event.committed < event.capacity, event

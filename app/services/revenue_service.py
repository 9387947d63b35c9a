from dataclasses import dataclass, field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from app.domain.payments import crud
from app.domain.payments.models import Payment, PaymentStatus


@dataclass
class RevenueSummary:
    total_revenue: int = 0
    platform_fee: int = 0
    organizer_earnings: int = 0
    refunded_amount: int = 0
    pending_amount: int = 0
    total_transactions: int = 0
    successful_payments: int = 0
    failed_payments: int = 0
    average_transaction_value: int = 0
    recent_payments: list[Payment] = field(default_factory=list)


def _sum_where(column, status: PaymentStatus):
    return func.coalesce(func.sum(column).filter(Payment.status == status), 0)


def _count_where(status: PaymentStatus):
    return func.count(Payment.id).filter(Payment.status == status)


def average_half_up(total: int, count: int) -> int:
    if count <= 0:
        return 0
    return (2 * total + count) // (2 * count)


async def summarize(db: AsyncSession, event_id: int, *, recent: int = 10) -> RevenueSummary:
    """
    One aggregate pass over the event's payments.
    Only SUCCEEDED payments count as revenue. A refunded payment moves to `refunded_amount`,
    so `organizer_earnings + platform_fee == total_revenue` always holds.
    """
    row = (await db.execute(
        select(
            _sum_where(Payment.amount_total, PaymentStatus.SUCCEEDED).label("total_revenue"),
            _sum_where(Payment.platform_fee, PaymentStatus.SUCCEEDED).label("platform_fee"),
            _sum_where(Payment.amount_total, PaymentStatus.REFUNDED).label("refunded_amount"),
            _sum_where(Payment.amount_total, PaymentStatus.PENDING).label("pending_amount"),
            func.count(Payment.id).label("total_transactions"),
            _count_where(PaymentStatus.SUCCEEDED).label("successful_payments"),
            _count_where(PaymentStatus.FAILED).label("failed_payments"),
        )
        .where(Payment.event_id == event_id)
    )).one()

    total_revenue = int(row.total_revenue)
    platform_fee = int(row.platform_fee)
    successful = int(row.successful_payments)
    return RevenueSummary(
        total_revenue=total_revenue,
        platform_fee=platform_fee,
        organizer_earnings=total_revenue - platform_fee,
        refunded_amount=int(row.refunded_amount),
        pending_amount=int(row.pending_amount),
        total_transactions=int(row.total_transactions),
        successful_payments=successful,
        failed_payments=int(row.failed_payments),
        average_transaction_value=average_half_up(total_revenue, successful),
        recent_payments=await crud.list_recent_payments(db, event_id, limit=recent),
    )

from fastapi import APIRouter, status, Depends
from typing import Annotated
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.core.dependencies.events import require_event_owner
from app.domain.events.models import Event
from app.domain.payments.schemas import RefundRequestDTO, RefundResponseDTO, RefundReadDTO, RevenueResponseDTO, \
    RevenueSummaryDTO, RecentPaymentDTO
from app.integrations.payment_gateway import PaymentGateway, get_payment_gateway
from app.services import refund_service, revenue_service


router = APIRouter(prefix="/events/{event_id}", tags=["refunds", "revenue"])
db_dependency = Annotated[AsyncSession, Depends(get_db)]
owner_dependency = Annotated[Event, Depends(require_event_owner)]


@router.post(
    "/refunds",
    status_code=status.HTTP_200_OK,
    response_model=RefundResponseDTO
)
async def refund_registration(
        schema: RefundRequestDTO,
        event: owner_dependency,
        db: db_dependency,
        gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)]
):
    outcome = await refund_service.refund(db, gateway, event.id, schema.registration_uuid, schema.reason)
    return RefundResponseDTO(refund=RefundReadDTO(id=outcome.refund_id, amount=outcome.amount, status=outcome.status))


@router.get(
    "/revenue",
    status_code=status.HTTP_200_OK,
    response_model=RevenueResponseDTO
)
async def get_revenue(event: owner_dependency, db: db_dependency):
    summary = await revenue_service.summarize(db, event.id)
    return RevenueResponseDTO(
        revenue=RevenueSummaryDTO(
            total_revenue=summary.total_revenue,
            platform_fee=summary.platform_fee,
            organizer_earnings=summary.organizer_earnings,
            refunded_amount=summary.refunded_amount,
            pending_amount=summary.pending_amount,
            total_transactions=summary.total_transactions,
            successful_payments=summary.successful_payments,
            failed_payments=summary.failed_payments,
            average_transaction_value=summary.average_transaction_value,
            recent_payments=[RecentPaymentDTO.model_validate(p) for p in summary.recent_payments],
        )
    )

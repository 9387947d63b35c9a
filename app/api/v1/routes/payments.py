from fastapi import APIRouter, Depends, status, Request, Header
from typing import Annotated
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.domain.payments.schemas import WebhookAckDTO
from app.integrations.payment_gateway import PaymentGateway, get_payment_gateway
from app.services import webhook_service


router = APIRouter(prefix="/payments", tags=["payments"])
db_dependency = Annotated[AsyncSession, Depends(get_db)]


@router.post(
    "/webhook",
    status_code=status.HTTP_200_OK,
    response_model=WebhookAckDTO
)
async def gateway_webhook(
        request: Request,
        db: db_dependency,
        gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
        stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
):
    payload = await request.body()
    redis = getattr(request.app.state, "redis", None)
    outcome = await webhook_service.handle_webhook(db, gateway, redis, payload, stripe_signature)
    return WebhookAckDTO(duplicate=outcome.duplicate, handled=outcome.handled)

import logging
from dataclasses import dataclass
from uuid import UUID
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.config import WEBHOOK_DEDUP_TTL_SECONDS
from app.core.redis import claim_once, forget
from app.integrations.payment_gateway import PaymentGateway, GatewayEvent
from app.services import payment_service

logger = logging.getLogger("app.webhooks")

PAID_EVENTS = frozenset({"checkout.session.completed", "checkout.session.async_payment_succeeded"})
# a declined attempt (payment_intent.payment_failed) is not terminal: the customer can retry in the same session
FAILED_EVENTS = frozenset({"checkout.session.expired", "checkout.session.async_payment_failed"})
REFUNDED_EVENTS = frozenset({"charge.refunded"})


@dataclass(frozen=True)
class WebhookOutcome:
    duplicate: bool = False
    handled: bool = False


def _dedup_key(event_id: str) -> str:
    return f"webhook:stripe:{event_id}"


def _parse_reference(event: GatewayEvent) -> UUID | None:
    if not event.checkout_reference:
        return None
    try:
        return UUID(event.checkout_reference)
    except ValueError:
        return None


def _latest_refund_id(data: dict) -> str | None:
    refunds = (data.get("refunds") or {}).get("data") or []
    if refunds:
        return refunds[0].get("id")
    return data.get("id")


async def _apply_gateway_refund(db: AsyncSession, event: GatewayEvent) -> bool:
    if not event.gateway_payment_id:
        logger.warning("Refund webhook without payment intent id=%s", event.id)
        return False
    if not event.data.get("refunded"):
        # partial refunds are issued per payment by the refund endpoint and recorded there
        logger.info("Partial charge refund ignored id=%s payment_intent=%s", event.id, event.gateway_payment_id)
        return False
    await payment_service.mark_gateway_refunded(db, event.gateway_payment_id, _latest_refund_id(event.data))
    return True


async def _dispatch(db: AsyncSession, gateway: PaymentGateway, event: GatewayEvent) -> bool:
    if event.type in REFUNDED_EVENTS:
        return await _apply_gateway_refund(db, event)
    if event.type not in PAID_EVENTS and event.type not in FAILED_EVENTS:
        return False

    reference = _parse_reference(event)
    if reference is None:
        logger.warning("Webhook without checkout reference id=%s type=%s", event.id, event.type)
        return False

    if event.type in PAID_EVENTS:
        # completed sessions paid by delayed methods arrive as "unpaid" and settle later
        if event.data.get("payment_status", "paid") == "unpaid":
            return False
        await payment_service.mark_checkout_paid(
            db,
            reference,
            event.gateway_payment_id,
            gateway=gateway,
            amount_paid=event.data.get("amount_total"),
        )
    else:
        await payment_service.mark_checkout_failed(db, reference, reason=event.type)
    return True


async def handle_webhook(
        db: AsyncSession,
        gateway: PaymentGateway,
        redis,
        payload: bytes,
        signature: str | None,
) -> WebhookOutcome:
    """
    Verify, dedupe and apply one gateway delivery.
    Deliveries are claimed in Redis by event id; when applying fails the claim is dropped so
    the gateway's retry is processed again. Status transitions are idempotent, so a lost
    claim only costs a repeated no-op.
    """
    event = gateway.parse_webhook(payload, signature)
    key = _dedup_key(event.id)

    claimed = False
    if redis is not None:
        try:
            if not await claim_once(redis, key, WEBHOOK_DEDUP_TTL_SECONDS):
                logger.info("Duplicate webhook id=%s type=%s", event.id, event.type)
                return WebhookOutcome(duplicate=True)
            claimed = True
        except RedisError:
            logger.warning("Webhook dedupe unavailable id=%s", event.id, exc_info=True)

    try:
        handled = await _dispatch(db, gateway, event)
        await db.commit()
    except Exception:
        if claimed:
            try:
                await forget(redis, key)
            except RedisError:
                logger.warning("Could not drop webhook claim id=%s", event.id, exc_info=True)
        raise

    logger.info("Webhook processed id=%s type=%s handled=%s", event.id, event.type, handled)
    return WebhookOutcome(handled=handled)

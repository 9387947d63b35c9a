"""
Payment gateway contract and the Stripe adapter.

Checkout creation and webhook delivery belong to the gateway; the engine only
needs refunds and verified webhook events. The Stripe SDK is synchronous, so
calls run in a worker thread.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import partial
from typing import Any
import anyio.to_thread
import stripe
from app.core.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, STRIPE_API_VERSION, STRIPE_MAX_RETRIES
from app.domain.exceptions import GatewayError, Unauthorized

logger = logging.getLogger("app.gateway")


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount: int
    status: str


@dataclass(frozen=True)
class GatewayEvent:
    id: str
    type: str
    checkout_reference: str | None = None
    gateway_payment_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    @abstractmethod
    async def refund(self, gateway_payment_id: str, amount: int, *, idempotency_key: str,
                     reason: str | None = None) -> RefundResult:
        """Refund `amount` of a captured payment. Same key, same refund: retries never refund twice."""

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        """Verify the signature and return the event; Unauthorized when verification fails."""


def _checkout_reference(obj: dict[str, Any]) -> str | None:
    return obj.get("client_reference_id") or (obj.get("metadata") or {}).get("checkout_reference")


def _gateway_payment_id(event_type: str, obj: dict[str, Any]) -> str | None:
    if event_type.startswith("payment_intent."):
        return obj.get("id")
    return obj.get("payment_intent")


class StripeGateway(PaymentGateway):
    def __init__(self, secret_key: str | None, webhook_secret: str | None, *,
                 api_version: str | None = None, max_retries: int = 2):
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        stripe.api_key = secret_key
        if api_version:
            stripe.api_version = api_version
        stripe.max_network_retries = max_retries

    async def refund(self, gateway_payment_id: str, amount: int, *, idempotency_key: str,
                     reason: str | None = None) -> RefundResult:
        params: dict[str, Any] = {
            "payment_intent": gateway_payment_id,
            "amount": amount,
            "reason": "requested_by_customer",
        }
        if reason:
            params["metadata"] = {"reason": reason[:500]}
        try:
            refund = await anyio.to_thread.run_sync(
                partial(stripe.Refund.create, **params, idempotency_key=idempotency_key)
            )
        except stripe.InvalidRequestError as e:
            logger.error("Refund rejected payment_intent=%s key=%s: %s", gateway_payment_id, idempotency_key, e)
            raise GatewayError(
                "Refund rejected by payment gateway",
                ctx={"gateway_payment_id": gateway_payment_id, "code": getattr(e, "code", None)},
                retryable=False,
            ) from e
        except stripe.StripeError as e:
            logger.error("Refund failed payment_intent=%s key=%s: %s", gateway_payment_id, idempotency_key, e)
            raise GatewayError(
                "Could not process refund",
                ctx={"gateway_payment_id": gateway_payment_id},
            ) from e

        if refund.status in ("failed", "canceled"):
            raise GatewayError(
                "Refund was not accepted",
                ctx={"gateway_payment_id": gateway_payment_id, "refund_id": refund.id, "status": refund.status},
                retryable=False,
            )
        return RefundResult(refund_id=refund.id, amount=refund.amount, status=refund.status)

    def parse_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        if not signature or not self._webhook_secret:
            raise Unauthorized("Missing webhook signature", ctx={"reason": "missing_signature"})
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise Unauthorized("Invalid webhook signature", ctx={"reason": "invalid_signature"}) from e
        except ValueError as e:
            raise Unauthorized("Invalid webhook payload", ctx={"reason": "invalid_payload"}) from e

        raw = json.loads(payload)
        event_type = raw.get("type", "")
        obj = (raw.get("data") or {}).get("object") or {}
        return GatewayEvent(
            id=raw["id"],
            type=event_type,
            checkout_reference=_checkout_reference(obj),
            gateway_payment_id=_gateway_payment_id(event_type, obj),
            data=obj,
        )


_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway(
            STRIPE_SECRET_KEY,
            STRIPE_WEBHOOK_SECRET,
            api_version=STRIPE_API_VERSION,
            max_retries=STRIPE_MAX_RETRIES,
        )
    return _gateway

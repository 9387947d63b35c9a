import json
import pytest
import stripe
from app.integrations.payment_gateway import StripeGateway, RefundResult
from app.domain.exceptions import GatewayError, Unauthorized


def _gateway():
    return StripeGateway("sk_test_123", "whsec_123")


def _payload(event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": obj}}).encode()


@pytest.mark.asyncio
async def test_refund_passes_idempotency_key_and_amount(mocker):
    create = mocker.patch("stripe.Refund.create", return_value=mocker.Mock(id="re_1", amount=1000, status="succeeded"))

    result = await _gateway().refund("pi_123", 1000, idempotency_key="refund-payment-9", reason="Can't attend")

    assert result == RefundResult(refund_id="re_1", amount=1000, status="succeeded")
    create.assert_called_once_with(
        payment_intent="pi_123",
        amount=1000,
        reason="requested_by_customer",
        metadata={"reason": "Can't attend"},
        idempotency_key="refund-payment-9",
    )


@pytest.mark.asyncio
async def test_refund_rejected_request_is_not_retryable(mocker):
    mocker.patch("stripe.Refund.create", side_effect=stripe.InvalidRequestError("already refunded", "payment_intent"))

    with pytest.raises(GatewayError) as exc:
        await _gateway().refund("pi_123", 1000, idempotency_key="refund-payment-9")

    assert exc.value.retryable is False


@pytest.mark.asyncio
async def test_refund_transport_error_is_retryable(mocker):
    mocker.patch("stripe.Refund.create", side_effect=stripe.StripeError("connection reset"))

    with pytest.raises(GatewayError) as exc:
        await _gateway().refund("pi_123", 1000, idempotency_key="refund-payment-9")

    assert exc.value.retryable is True


@pytest.mark.asyncio
async def test_refund_failed_status_raises(mocker):
    mocker.patch("stripe.Refund.create", return_value=mocker.Mock(id="re_2", amount=1000, status="failed"))

    with pytest.raises(GatewayError):
        await _gateway().refund("pi_123", 1000, idempotency_key="refund-payment-9")


def test_parse_webhook_checkout_session(mocker):
    mocker.patch("stripe.Webhook.construct_event")
    payload = _payload("checkout.session.completed", {
        "client_reference_id": "1b4e28ba-2fa1-4d3b-a3f5-ef19b5a7633b",
        "payment_intent": "pi_1",
        "payment_status": "paid",
    })

    event = _gateway().parse_webhook(payload, "t=1,v1=abc")

    assert event.id == "evt_1"
    assert event.checkout_reference == "1b4e28ba-2fa1-4d3b-a3f5-ef19b5a7633b"
    assert event.gateway_payment_id == "pi_1"
    assert event.data["payment_status"] == "paid"


def test_parse_webhook_payment_intent_reads_metadata(mocker):
    mocker.patch("stripe.Webhook.construct_event")
    payload = _payload("payment_intent.payment_failed", {
        "id": "pi_2",
        "metadata": {"checkout_reference": "1b4e28ba-2fa1-4d3b-a3f5-ef19b5a7633b"},
    })

    event = _gateway().parse_webhook(payload, "t=1,v1=abc")

    assert event.gateway_payment_id == "pi_2"
    assert event.checkout_reference == "1b4e28ba-2fa1-4d3b-a3f5-ef19b5a7633b"


def test_parse_webhook_charge_refund_takes_payment_intent(mocker):
    mocker.patch("stripe.Webhook.construct_event")
    payload = _payload("charge.refunded", {"id": "ch_1", "payment_intent": "pi_3", "refunded": True})

    event = _gateway().parse_webhook(payload, "t=1,v1=abc")

    assert event.gateway_payment_id == "pi_3"
    assert event.data["refunded"] is True


@pytest.mark.parametrize("signature", [None, ""])
def test_parse_webhook_without_signature_is_unauthorized(signature):
    with pytest.raises(Unauthorized):
        _gateway().parse_webhook(b"{}", signature)


@pytest.mark.parametrize("error", [
    stripe.SignatureVerificationError("bad signature", "t=1,v1=abc"),
    ValueError("bad payload"),
])
def test_parse_webhook_verification_failure_is_unauthorized(mocker, error):
    mocker.patch("stripe.Webhook.construct_event", side_effect=error)

    with pytest.raises(Unauthorized):
        _gateway().parse_webhook(b"{}", "t=1,v1=abc")

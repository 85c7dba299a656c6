"""Card payments through Stripe hosted Checkout."""

import asyncio
import json
from typing import Any

import stripe

from ..errors import PaymentNotConfiguredError, PaymentProcessorError, WebhookSignatureError
from ..logs import get_logger
from ..models import Order
from ..utils import to_cents
from .protocol import ProcessorSession

log = get_logger("stripe")

# Seconds a signed webhook stays acceptable.
WEBHOOK_TOLERANCE = 300


def build_line_items(order: Order, currency: str) -> list[dict[str, Any]]:
    """One line per order item, plus Shipping and Tax lines when they are non-zero."""

    def line(name: str, amount, quantity: int) -> dict[str, Any]:
        return {
            "price_data": {
                "currency": currency,
                "product_data": {"name": name},
                "unit_amount": to_cents(amount),
            },
            "quantity": quantity,
        }

    items = [line(i.product_name, i.unit_price, i.quantity) for i in order.items]
    if order.shipping_fee > 0:
        items.append(line("Shipping", order.shipping_fee, 1))
    if order.tax > 0:
        items.append(line("Tax", order.tax, 1))
    return items


class StripeGateway:
    """
    Opens Checkout sessions and verifies webhook deliveries.

    The secret key is passed per request rather than set on the `stripe` module,
    so several gateways (e.g. in tests) can coexist in one process.
    """

    name = "stripe"

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        frontend_url: str,
        currency: str = "usd",
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url.rstrip("/")
        self.currency = currency

    async def create_checkout_session(self, order: Order) -> ProcessorSession:
        """
        Create a hosted Checkout session correlated to `order` by metadata.

        Raises:
            PaymentNotConfiguredError: If no secret key is set.
            PaymentProcessorError: If Stripe rejects the request.
        """
        if not self.secret_key:
            raise PaymentNotConfiguredError("Stripe")

        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": build_line_items(order, self.currency),
            "success_url": (
                f"{self.frontend_url}/order-success"
                f"?session_id={{CHECKOUT_SESSION_ID}}&order_id={order.id}"
            ),
            "cancel_url": f"{self.frontend_url}/checkout?cancelled=true",
            "customer_email": order.customer_info.email,
            "client_reference_id": order.id,
            "metadata": {"orderId": order.id},
        }
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create, api_key=self.secret_key, **params
            )
        except stripe.StripeError as e:
            log.error("checkout_failed", order_id=order.id, error=str(e), error_type=type(e).__name__)
            raise PaymentProcessorError("stripe", e.user_message or str(e))

        log.info("checkout_created", order_id=order.id, stripe_session_id=session.id)
        return ProcessorSession(processor=self.name, reference=session.id, redirect_url=session.url)

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Check the Stripe-Signature header against the raw body, then parse it.

        Raises:
            WebhookSignatureError: If the secret is missing, the header is absent,
                or the signature doesn't match.
        """
        if not self.webhook_secret:
            raise WebhookSignatureError("webhook secret is not configured")
        if not signature:
            raise WebhookSignatureError("missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            log.warning("webhook_payload_undecodable", error=str(e))
            raise WebhookSignatureError(f"invalid payload: {e}")

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, tolerance=WEBHOOK_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            log.warning("webhook_signature_invalid", error=str(e))
            raise WebhookSignatureError(str(e))

        try:
            return json.loads(body)
        except ValueError as e:
            raise WebhookSignatureError(f"invalid payload: {e}")

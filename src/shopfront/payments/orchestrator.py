"""Opens processor sessions for pending orders and reconciles payment outcomes."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..cart_store import CartStore
from ..catalog_store import ProductStore
from ..errors import (
    PaymentNotConfiguredError,
    ShopError,
    UnsupportedPaymentMethodError,
)
from ..logs import get_logger
from ..models import Order, PaymentMethod, _utc_now
from ..notifications import Notifier, send_order_emails
from ..order_store import OrderStore
from ..utils import validate_id
from .protocol import CardGateway, ProcessorSession, WalletGateway

log = get_logger("payments")

STRIPE_COMPLETED = "checkout.session.completed"
STRIPE_FAILED = {"checkout.session.expired", "checkout.session.async_payment_failed"}
STRIPE_INTENT_FAILED = "payment_intent.payment_failed"


class PaymentOrchestrator:
    """
    Per-order payment state machine.

    unpaid -> session created -> paid (order moves to processing), or
    unpaid -> failed. The move to paid is a compare-and-set on the order's
    payment status, so a redelivered or concurrent confirmation is a no-op and
    stock is decremented exactly once.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orders: OrderStore,
        notifier: Notifier,
        frontend_url: str,
        stripe_gateway: CardGateway | None = None,
        paypal_gateway: WalletGateway | None = None,
    ):
        self._session = session_factory
        self.orders = orders
        self.notifier = notifier
        self.frontend_url = frontend_url.rstrip("/")
        self.stripe = stripe_gateway
        self.paypal = paypal_gateway

    # --- Session creation ---

    async def open_session(self, order: Order) -> ProcessorSession:
        """
        Open a hosted payment page for a pending order and record its reference.

        On failure the order is left pending/unpaid as stored.

        Raises:
            UnsupportedPaymentMethodError: If the order's method has no processor.
            PaymentNotConfiguredError: If the processor has no credentials.
            PaymentProcessorError: If the processor rejects the request.
        """
        method = order.payment_method
        if method == PaymentMethod.STRIPE.value:
            if self.stripe is None:
                raise PaymentNotConfiguredError("Stripe")
            session = await self.stripe.create_checkout_session(order)
            await self.orders.attach_processor_reference(order.id, stripe_session_id=session.reference)
        elif method == PaymentMethod.PAYPAL.value:
            if self.paypal is None:
                raise PaymentNotConfiguredError("PayPal")
            session = await self.paypal.create_order(order)
            await self.orders.attach_processor_reference(order.id, paypal_order_id=session.reference)
        else:
            log.warning("unsupported_payment_method", order_id=order.id, payment_method=method)
            raise UnsupportedPaymentMethodError(method)

        log.info(
            "payment_session_created",
            order_id=order.id,
            processor=session.processor,
            reference=session.reference,
        )
        return session

    # --- Reconciliation ---

    async def settle(
        self,
        order_id: str,
        stripe_payment_intent_id: str | None = None,
        paypal_capture_id: str | None = None,
    ) -> Order | None:
        """
        Record a confirmed payment.

        In one transaction: claim the order (unpaid -> paid, pending -> processing),
        take each line out of stock, and empty the carts the order came from.
        Emails go out after commit. Returns None if the order was missing or
        already settled, in which case nothing changes.
        """
        paid_at = _utc_now()
        oversold: list[str] = []
        async with self._session() as session, session.begin():
            order = await OrderStore.claim_payment(
                session,
                order_id,
                paid_at,
                stripe_payment_intent_id=stripe_payment_intent_id,
                paypal_capture_id=paypal_capture_id,
            )
            if order is None:
                log.info("payment_already_recorded", order_id=order_id)
                return None

            for item in order.items:
                if not await ProductStore.decrement_stock(session, item.product_id, item.quantity):
                    # Sold out between checkout and confirmation; stock stops at zero.
                    await ProductStore.drain_stock(session, item.product_id)
                    oversold.append(item.product_id)
            for key in order.cart_keys:
                await CartStore.clear_items(session, key)

        for product_id in oversold:
            log.warning("stock_oversold", order_id=order.id, product_id=product_id)
        log.info("order_paid", order_id=order.id, order_number=order.order_number)

        await send_order_emails(self.notifier, order)
        return order

    async def handle_stripe_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Verify and apply one Stripe webhook delivery.

        Raises:
            PaymentNotConfiguredError: If Stripe is not set up.
            WebhookSignatureError: If verification fails; nothing is changed.
        """
        if self.stripe is None:
            raise PaymentNotConfiguredError("Stripe")
        event = self.stripe.verify_webhook(payload, signature)

        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        order_id = (obj.get("metadata") or {}).get("orderId")
        log.info("webhook_received", event_type=event_type, event_id=event.get("id"), order_id=order_id)

        if event_type == STRIPE_COMPLETED or event_type in STRIPE_FAILED:
            if not order_id:
                log.warning("webhook_missing_order", event_type=event_type)
            elif event_type == STRIPE_COMPLETED:
                await self.settle(order_id, stripe_payment_intent_id=obj.get("payment_intent"))
            elif await self.orders.mark_payment_failed(order_id) is not None:
                log.info("payment_failed", order_id=order_id, event_type=event_type)
        elif event_type == STRIPE_INTENT_FAILED:
            error = obj.get("last_payment_error") or {}
            log.warning("payment_intent_failed", payment_intent=obj.get("id"), error=error.get("message"))
        else:
            log.debug("webhook_ignored", event_type=event_type)

        return {"received": True}

    async def handle_paypal_return(self, order_id: str | None, token: str | None) -> str:
        """
        Capture a buyer-approved PayPal order and return where to send the browser.

        Only a PayPal order whose stored PayPal ID matches `token` is captured,
        and only a COMPLETED capture settles it; anything else leaves the order
        untouched and points at the checkout failure page.
        """
        success_url = f"{self.frontend_url}/order-success?order_id={order_id}"
        failed_url = f"{self.frontend_url}/checkout?payment_failed=true"
        error_url = f"{self.frontend_url}/checkout?payment_error=true"

        if self.paypal is None or not order_id or not token:
            return error_url
        try:
            validate_id(order_id, "order")
            order = await self.orders.get_order(order_id)
            if order.payment_method != PaymentMethod.PAYPAL.value or order.paypal_order_id != token:
                log.warning("paypal_token_mismatch", order_id=order_id, payment_method=order.payment_method)
                return failed_url
            if order.is_paid:
                return success_url

            capture = await self.paypal.capture_order(token)
            if not capture.completed:
                log.warning("paypal_capture_incomplete", order_id=order_id, status=capture.status)
                return failed_url

            await self.settle(order_id, paypal_capture_id=capture.capture_id)
            return success_url
        except ShopError as e:
            log.error("paypal_capture_error", order_id=order_id, error=str(e))
            return error_url

"""Transactional email: rendering and delivery through the Mailjet send API."""

from dataclasses import dataclass
from html import escape
from typing import Any, Protocol

import httpx

from .logs import get_logger
from .models import Order

log = get_logger("notifications")

MAILJET_SEND_URL = "https://api.mailjet.com/v3.1/send"


@dataclass
class EmailResult:
    """Outcome of one send attempt. Failures are reported here, never raised."""

    sent: bool
    reason: str | None = None
    message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"sent": self.sent}
        if self.reason is not None:
            data["reason"] = self.reason
        if self.message_id is not None:
            data["message_id"] = self.message_id
        return data


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


class Notifier(Protocol):
    async def send_order_confirmation(self, order: Order) -> EmailResult: ...

    async def send_admin_notification(self, order: Order) -> EmailResult: ...

    async def send_test_email(self, to_email: str) -> EmailResult: ...


# --- Rendering ---


def _money(amount) -> str:
    return f"${amount:.2f}"


def _items_table(order: Order) -> str:
    rows = "".join(
        f"<tr><td>{escape(item.product_name)}</td><td>{item.quantity}</td>"
        f"<td>{_money(item.unit_price)}</td><td>{_money(item.subtotal)}</td></tr>"
        for item in order.items
    )
    return (
        "<table><thead><tr><th>Item</th><th>Qty</th><th>Price</th><th>Subtotal</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
    )


def _totals_block(order: Order) -> str:
    return (
        f"<p>Subtotal: {_money(order.subtotal)}<br>"
        f"Shipping: {_money(order.shipping_fee)}<br>"
        f"Tax: {_money(order.tax)}<br>"
        f"<strong>Total: {_money(order.total)}</strong></p>"
    )


def _address_block(order: Order) -> str:
    a = order.shipping_address
    parts = [a.full_name, a.street, f"{a.city}, {a.state} {a.zip_code}", a.country]
    return "<br>".join(escape(p) for p in parts if p and p.strip(", "))


def render_order_confirmation(order: Order, shop_name: str) -> RenderedEmail:
    """Customer-facing confirmation with items, totals and the shipping address."""
    name = escape(order.customer_info.name or "there")
    html = (
        f"<h1>Thank you for your order, {name}!</h1>"
        f"<p>Order number: <strong>{escape(order.order_number)}</strong></p>"
        f"{_items_table(order)}"
        f"{_totals_block(order)}"
        f"<h3>Shipping to</h3><p>{_address_block(order)}</p>"
        f"<p>{escape(shop_name)}</p>"
    )
    lines = [f"Order {order.order_number}"]
    lines += [f"{i.quantity} x {i.product_name} = {_money(i.subtotal)}" for i in order.items]
    lines.append(f"Total: {_money(order.total)}")
    return RenderedEmail(
        subject=f"Order Confirmation #{order.order_number} - {shop_name}",
        html=html,
        text="\n".join(lines),
    )


def render_admin_notification(order: Order) -> RenderedEmail:
    """Internal notice of a new order, with customer contact details and notes."""
    info = order.customer_info
    notes = f"<h3>Notes</h3><p>{escape(order.notes)}</p>" if order.notes else ""
    html = (
        f"<h1>New order {escape(order.order_number)}</h1>"
        f"<p>Customer: {escape(info.name)}<br>Email: {escape(info.email)}<br>"
        f"Phone: {escape(info.phone or '-')}</p>"
        f"<p>Payment: {escape(order.payment_method)} ({order.payment_status.value})</p>"
        f"{_items_table(order)}"
        f"{_totals_block(order)}"
        f"<h3>Ship to</h3><p>{_address_block(order)}</p>"
        f"{notes}"
    )
    return RenderedEmail(
        subject=f"New Order #{order.order_number} - {_money(order.total)}",
        html=html,
        text=f"New order {order.order_number} from {info.name} <{info.email}>: {_money(order.total)}",
    )


# --- Delivery ---


class MailjetNotifier:
    """
    Sends email through Mailjet's v3.1 HTTP API.

    Every send returns an EmailResult; transport and API errors are logged and
    reported as `sent=False` so callers never fail because of email.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        from_email: str,
        from_name: str = "Shopfront",
        admin_email: str = "",
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.secret_key = secret_key
        self.from_email = from_email
        self.from_name = from_name
        self.admin_email = admin_email
        self._client = client or httpx.AsyncClient(timeout=10.0)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.secret_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, to_email: str, to_name: str, email: RenderedEmail) -> EmailResult:
        if not self.configured:
            return EmailResult(sent=False, reason="Mailjet not configured")
        if not to_email:
            return EmailResult(sent=False, reason="No recipient address")

        payload = {
            "Messages": [
                {
                    "From": {"Email": self.from_email, "Name": self.from_name},
                    "To": [{"Email": to_email, "Name": to_name}],
                    "Subject": email.subject,
                    "TextPart": email.text,
                    "HTMLPart": email.html,
                }
            ]
        }
        try:
            response = await self._client.post(
                MAILJET_SEND_URL, json=payload, auth=(self.api_key, self.secret_key)
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("email_failed", subject=email.subject, error=str(e))
            return EmailResult(sent=False, reason=str(e))

        messages = body.get("Messages") or [{}]
        if messages[0].get("Status") != "success":
            log.warning("email_failed", subject=email.subject, error="unexpected response")
            return EmailResult(sent=False, reason="Unexpected response")

        recipients = messages[0].get("To") or [{}]
        message_id = recipients[0].get("MessageID")
        log.info("email_sent", subject=email.subject, message_id=message_id)
        return EmailResult(sent=True, message_id=str(message_id) if message_id is not None else None)

    async def send_order_confirmation(self, order: Order) -> EmailResult:
        email = render_order_confirmation(order, self.from_name)
        return await self._send(order.customer_info.email, order.customer_info.name, email)

    async def send_admin_notification(self, order: Order) -> EmailResult:
        return await self._send(self.admin_email, "Admin", render_admin_notification(order))

    async def send_test_email(self, to_email: str) -> EmailResult:
        email = RenderedEmail(
            subject=f"{self.from_name} email test",
            html="<h1>Test Successful</h1><p>Mail delivery is configured correctly.</p>",
            text="Mail delivery is configured correctly.",
        )
        return await self._send(to_email, "", email)


async def send_order_emails(notifier: Notifier, order: Order) -> dict[str, EmailResult]:
    """Send the customer confirmation and the admin notice for `order`."""
    return {
        "customer": await notifier.send_order_confirmation(order),
        "admin": await notifier.send_admin_notification(order),
    }

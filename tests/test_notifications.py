"""Tests for order email rendering and Mailjet delivery."""

import asyncio
from decimal import Decimal

import httpx

from shopfront.models import CustomerInfo, Order, OrderItem, ShippingAddress
from shopfront.notifications import (
    MailjetNotifier,
    render_admin_notification,
    render_order_confirmation,
    send_order_emails,
)


def sample_order(notes=None) -> Order:
    return Order(
        id="b" * 32,
        order_number="SF123456789",
        customer_info=CustomerInfo(name="Ada <Admin>", email="ada@example.com", phone="555"),
        items=[OrderItem("a" * 32, "Mug & Saucer", Decimal("7.25"), 2, Decimal("14.50"))],
        shipping_address=ShippingAddress("Ada", "1 Way", "London", "", "N1", "United Kingdom"),
        subtotal=Decimal("14.50"),
        shipping_fee=Decimal("2.00"),
        tax=Decimal("0.00"),
        total=Decimal("16.50"),
        payment_method="cod",
        notes=notes,
    )


def notifier_with(handler, **kwargs) -> MailjetNotifier:
    options = {
        "api_key": "key",
        "secret_key": "secret",
        "from_email": "shop@example.com",
        "admin_email": "admin@example.com",
    }
    options.update(kwargs)
    return MailjetNotifier(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **options)


class TestRendering:
    def test_confirmation(self):
        email = render_order_confirmation(sample_order(), "Shopfront")
        assert email.subject == "Order Confirmation #SF123456789 - Shopfront"
        assert "Mug &amp; Saucer" in email.html
        assert "Ada &lt;Admin&gt;" in email.html
        assert "<Admin>" not in email.html
        assert "Total" in email.text

    def test_admin_notice_includes_notes(self):
        email = render_admin_notification(sample_order(notes="Leave at door"))
        assert email.subject.startswith("New Order #SF123456789")
        assert "Leave at door" in email.html
        assert "ada@example.com" in email.html


class TestMailjetNotifier:
    def test_unconfigured_reports_not_sent(self):
        notifier = MailjetNotifier(api_key="", secret_key="", from_email="")
        result = asyncio.run(notifier.send_test_email("ops@example.com"))
        assert result.sent is False
        assert result.reason == "Mailjet not configured"

    def test_api_error_reported_not_raised(self):
        notifier = notifier_with(lambda request: httpx.Response(401, json={"ErrorMessage": "Unauthorized"}))
        result = asyncio.run(notifier.send_test_email("ops@example.com"))
        assert result.sent is False
        assert "401" in result.reason

    def test_unexpected_body_reported(self):
        notifier = notifier_with(lambda request: httpx.Response(200, json={"Messages": [{"Status": "error"}]}))
        result = asyncio.run(notifier.send_test_email("ops@example.com"))
        assert result.sent is False

    def test_missing_admin_address(self, fake_mailjet):
        notifier = notifier_with(fake_mailjet.handler, admin_email="")
        results = asyncio.run(send_order_emails(notifier, sample_order()))
        assert results["customer"].sent is True
        assert results["admin"].sent is False
        assert results["admin"].reason == "No recipient address"
        assert len(fake_mailjet.messages) == 1

    def test_sends_with_basic_auth(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Messages": [{"Status": "success", "To": [{"MessageID": 42}]}]})

        result = asyncio.run(notifier_with(handler).send_test_email("ops@example.com"))
        assert result.sent is True
        assert result.message_id == "42"
        assert seen[0].headers["authorization"].startswith("Basic ")
        assert seen[0].url.path == "/v3.1/send"

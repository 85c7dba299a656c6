"""Pytest fixtures for shopfront tests."""

import hashlib
import hmac
import json
import re
import time
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest
import stripe
from fastapi.testclient import TestClient

from shopfront.api import create_app
from shopfront.cart_service import CartService
from shopfront.cart_store import CartStore
from shopfront.catalog_store import ProductStore
from shopfront.config import Settings
from shopfront.db import create_database
from shopfront.locks import InMemoryKeyedGate
from shopfront.notifications import MailjetNotifier
from shopfront.order_store import OrderStore
from shopfront.payments import PayPalGateway

WEBHOOK_SECRET = "whsec_test_secret"
FRONTEND_URL = "http://shop.test"
BACKEND_URL = "http://api.test"


# --- Fake processors ---


class FakeStripe:
    """Stands in for stripe.checkout.Session.create and records each call."""

    def __init__(self):
        self.calls: list[dict] = []
        self.error: Exception | None = None

    def create_session(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.calls.append(kwargs)
        session_id = f"cs_test_{len(self.calls)}"
        return SimpleNamespace(id=session_id, url=f"https://checkout.stripe.test/{session_id}")


class FakePayPal:
    """PayPal Orders v2 behind an httpx.MockTransport."""

    def __init__(self):
        self.capture_status = "COMPLETED"
        self.created: list[dict] = []
        self.captured: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-test", "expires_in": 3600})
        if path == "/v2/checkout/orders":
            body = json.loads(request.content)
            self.created.append(body)
            order_id = f"PAYPAL-{len(self.created)}"
            return httpx.Response(
                201,
                json={
                    "id": order_id,
                    "status": "CREATED",
                    "links": [
                        {"rel": "self", "href": f"https://api.paypal.test/v2/checkout/orders/{order_id}"},
                        {"rel": "approve", "href": f"https://paypal.test/checkoutnow?token={order_id}"},
                    ],
                },
            )
        match = re.fullmatch(r"/v2/checkout/orders/([^/]+)/capture", path)
        if match:
            order_id = match.group(1)
            self.captured.append(order_id)
            return httpx.Response(
                201,
                json={
                    "id": order_id,
                    "status": self.capture_status,
                    "purchase_units": [
                        {"payments": {"captures": [{"id": f"CAPTURE-{order_id}", "status": self.capture_status}]}}
                    ],
                },
            )
        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND", "message": "not found"})


class FakeMailjet:
    """Mailjet v3.1 send endpoint behind an httpx.MockTransport."""

    def __init__(self):
        self.messages: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        message = body["Messages"][0]
        self.messages.append(message)
        return httpx.Response(
            200,
            json={
                "Messages": [
                    {
                        "Status": "success",
                        "To": [{"Email": message["To"][0]["Email"], "MessageID": 1000 + len(self.messages)}],
                    }
                ]
            },
        )

    @property
    def subjects(self) -> list[str]:
        return [m["Subject"] for m in self.messages]


def sign_webhook(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_event(order_id: str, event_type: str = "checkout.session.completed", event_id: str = "evt_1") -> str:
    return json.dumps(
        {
            "id": event_id,
            "type": event_type,
            "data": {
                "object": {
                    "id": "cs_test_1",
                    "object": "checkout.session",
                    "payment_intent": "pi_test_1",
                    "payment_status": "paid",
                    "metadata": {"orderId": order_id},
                }
            },
        }
    )


# --- Fixtures ---


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}",
        uploads_dir=tmp_path / "uploads",
        frontend_url=FRONTEND_URL,
        backend_url=BACKEND_URL,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        paypal_client_id="paypal-client",
        paypal_client_secret="paypal-secret",
        mailjet_api_key="mj-key",
        mailjet_secret_key="mj-secret",
        mailjet_from_email="shop@example.com",
        admin_email="admin@example.com",
    )


@pytest.fixture
def fake_stripe(monkeypatch) -> FakeStripe:
    fake = FakeStripe()
    monkeypatch.setattr(stripe.checkout.Session, "create", fake.create_session)
    return fake


@pytest.fixture
def fake_paypal() -> FakePayPal:
    return FakePayPal()


@pytest.fixture
def fake_mailjet() -> FakeMailjet:
    return FakeMailjet()


@pytest.fixture
def client(settings, fake_stripe, fake_paypal, fake_mailjet):
    """Test client against a fresh database with all processors faked."""
    paypal = PayPalGateway(
        client_id=settings.paypal_client_id,
        client_secret=settings.paypal_client_secret,
        backend_url=settings.backend_url,
        frontend_url=settings.frontend_url,
        client=httpx.AsyncClient(transport=httpx.MockTransport(fake_paypal.handler)),
    )
    notifier = MailjetNotifier(
        api_key=settings.mailjet_api_key,
        secret_key=settings.mailjet_secret_key,
        from_email=settings.mailjet_from_email,
        admin_email=settings.admin_email,
        client=httpx.AsyncClient(transport=httpx.MockTransport(fake_mailjet.handler)),
    )
    app = create_app(settings, paypal_gateway=paypal, notifier=notifier)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_product(client):
    """Create a product through the API and return its JSON."""

    def _make(name="Widget", price="10.00", stock=5, is_active=True, category="gadgets", **extra):
        data = {
            "name": name,
            "description": f"A {name.lower()}",
            "price": str(price),
            "category": category,
            "stock": str(stock),
            "isActive": "true" if is_active else "false",
            **extra,
        }
        response = client.post("/products", data=data)
        assert response.status_code == 201, response.text
        return response.json()["product"]

    return _make


@pytest.fixture
def shipping_address() -> dict:
    return {
        "fullName": "Ada Lovelace",
        "address": "12 Analytical Way",
        "city": "London",
        "state": "Greater London",
        "zipCode": "N1 9GU",
        "country": "United Kingdom",
        "phone": "+44 20 0000 0000",
    }


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'unit.db'}"


async def build_cart_stack(url: str, max_wait: float = 5.0):
    """Stores and cart service on a fresh database; call inside the test's event loop."""
    session_factory, engine = await create_database(url)
    products = ProductStore(session_factory)
    carts = CartStore(session_factory)
    orders = OrderStore(session_factory)
    service = CartService(carts, products, InMemoryKeyedGate(poll_interval=0.001), max_wait=max_wait)
    return SimpleNamespace(
        engine=engine,
        session_factory=session_factory,
        products=products,
        carts=carts,
        orders=orders,
        cart_service=service,
    )

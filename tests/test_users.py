"""Tests for users, admin endpoints and the generic API surface."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from shopfront.api import create_app, seed_admin
from shopfront.config import Settings
from shopfront.db import create_database
from shopfront.notifications import MailjetNotifier
from shopfront.user_store import UserStore, check_password, hash_password


def register(client, email="grace@example.com", password="s3cret!", **extra):
    body = {"name": "Grace Hopper", "email": email, "password": password, **extra}
    return client.post("/register", json=body)


class TestHealth:
    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"success": True, "status": "ok", "service": "shopfront"}

    def test_unknown_route(self, client):
        response = client.get("/no/such/thing")
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Endpoint not found"}


class TestRegisterAndLogin:
    def test_register(self, client):
        response = register(client, phone="555-0100")
        assert response.status_code == 201
        user = response.json()["user"]
        assert user["email"] == "grace@example.com"
        assert user["role"] == "customer"
        assert user["phone"] == "555-0100"
        assert "password" not in user
        assert "passwordHash" not in user

    def test_email_normalized(self, client):
        user = register(client, email="  Grace@Example.COM ").json()["user"]
        assert user["email"] == "grace@example.com"

    def test_duplicate_email_409(self, client):
        register(client)
        response = register(client, email="GRACE@example.com")
        assert response.status_code == 409
        assert response.json()["message"] == "Email already registered"

    def test_short_password_rejected(self, client):
        assert register(client, password="123").status_code == 400

    def test_login(self, client):
        register(client)
        response = client.post("/login", json={"email": "grace@example.com", "password": "s3cret!"})
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Login successful"
        assert len(data["token"]) == 64
        assert data["user"]["name"] == "Grace Hopper"

    @pytest.mark.parametrize(
        "email,password",
        [("grace@example.com", "wrong-pass"), ("nobody@example.com", "s3cret!")],
    )
    def test_login_rejected(self, client, email, password):
        register(client)
        response = client.post("/login", json={"email": email, "password": password})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"


class TestUserQueries:
    def test_list_and_get(self, client):
        created = register(client).json()["user"]

        listing = client.get("/users").json()
        assert listing["count"] == 1
        assert "password" not in listing["users"][0]

        response = client.get(f"/users/{created['id']}")
        assert response.status_code == 200
        assert response.json()["user"]["email"] == created["email"]

    def test_get_unknown(self, client):
        assert client.get(f"/users/{'9' * 32}").status_code == 404

    def test_get_malformed(self, client):
        response = client.get("/users/123")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid user ID format"


class TestStats:
    def test_stats(self, client, make_product, shipping_address):
        register(client)
        product = make_product(price="10.00", stock=5)
        make_product(name="Other")
        client.post(
            "/orders",
            json={
                "customerInfo": {"name": "Grace", "email": "grace@example.com"},
                "shippingAddress": shipping_address,
                "items": [{"productId": product["id"], "quantity": 1}],
            },
        )

        stats = client.get("/stats").json()["stats"]
        assert stats == {
            "totalOrders": 1,
            "pendingOrders": 1,
            "totalProducts": 2,
            "totalCustomers": 1,
            "totalRevenue": 0.0,
        }


class TestTestEmail:
    def test_sends_to_admin_by_default(self, client, fake_mailjet):
        response = client.get("/test-email")
        assert response.status_code == 200
        assert response.json()["message"] == "Test email sent to admin@example.com"
        assert fake_mailjet.messages[0]["To"][0]["Email"] == "admin@example.com"

    def test_explicit_recipient(self, client, fake_mailjet):
        response = client.get("/test-email", params={"email": "ops@example.com"})
        assert response.json()["result"]["sent"] is True
        assert fake_mailjet.messages[0]["To"][0]["Email"] == "ops@example.com"

    def test_unconfigured_mail_500(self, settings):
        notifier = MailjetNotifier(api_key="", secret_key="", from_email="")
        with TestClient(create_app(settings, notifier=notifier)) as client:
            response = client.get("/test-email")
        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Mailjet not configured"}


class TestAdminSeed:
    def test_seeded_on_startup(self, tmp_path):
        settings = Settings(
            _env_file=None,
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'seed.db'}",
            uploads_dir=tmp_path / "uploads",
            admin_seed_email="root@example.com",
            admin_seed_password="changeme",
        )
        with TestClient(create_app(settings)) as client:
            users = client.get("/users").json()["users"]
            login = client.post("/login", json={"email": "root@example.com", "password": "changeme"})
        assert [u["role"] for u in users] == ["admin"]
        assert login.status_code == 200

    def test_seed_is_idempotent(self, db_url):
        async def run():
            session_factory, engine = await create_database(db_url)
            users = UserStore(session_factory)
            first = await seed_admin(users, "root@example.com", "changeme")
            second = await seed_admin(users, "root@example.com", "changeme")
            count = await users.count_users(role="admin")
            await engine.dispose()
            return first, second, count

        first, second, count = asyncio.run(run())
        assert first is not None and first.role == "admin"
        assert second is None
        assert count == 1


class TestLifespan:
    def test_built_clients_closed_on_shutdown(self, settings):
        app = create_app(settings)
        services = app.state.services
        with TestClient(app):
            assert not services.notifier._client.is_closed
        assert services.notifier._client.is_closed
        assert services.payments.paypal._client.is_closed

    def test_injected_clients_left_open(self, settings):
        notifier = MailjetNotifier(api_key="", secret_key="", from_email="")
        with TestClient(create_app(settings, notifier=notifier)):
            pass
        assert not notifier._client.is_closed


class TestPasswordHashing:
    def test_hash_roundtrip(self):
        hashed = hash_password("s3cret!")
        assert hashed != "s3cret!"
        assert check_password("s3cret!", hashed)
        assert not check_password("other", hashed)

    def test_missing_hash(self):
        assert not check_password("anything", None)

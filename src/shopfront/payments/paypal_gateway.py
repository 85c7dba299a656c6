"""Wallet payments through the PayPal Orders v2 REST API."""

import time
from decimal import Decimal
from typing import Any

import httpx

from ..errors import PaymentNotConfiguredError, PaymentProcessorError
from ..logs import get_logger
from ..models import Order
from .countries import country_code
from .protocol import CaptureResult, ProcessorSession

log = get_logger("paypal")

SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
LIVE_BASE_URL = "https://api-m.paypal.com"


def _amount(value: Decimal, currency: str) -> dict[str, str]:
    return {"currency_code": currency, "value": f"{value:.2f}"}


def build_order_request(
    order: Order,
    return_url: str,
    cancel_url: str,
    brand_name: str,
    currency: str = "USD",
) -> dict[str, Any]:
    """
    Orders v2 create body for `order`.

    The breakdown (item total, shipping, tax) adds up to the order total, which
    PayPal checks.
    """
    address = order.shipping_address
    return {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "reference_id": order.id,
                "custom_id": order.id,
                "amount": {
                    **_amount(order.total, currency),
                    "breakdown": {
                        "item_total": _amount(order.subtotal, currency),
                        "shipping": _amount(order.shipping_fee, currency),
                        "tax_total": _amount(order.tax, currency),
                    },
                },
                "items": [
                    {
                        "name": item.product_name[:127],
                        "unit_amount": _amount(item.unit_price, currency),
                        "quantity": str(item.quantity),
                    }
                    for item in order.items
                ],
                "shipping": {
                    "name": {"full_name": address.full_name},
                    "address": {
                        "address_line_1": address.street,
                        "admin_area_2": address.city,
                        "admin_area_1": address.state,
                        "postal_code": address.zip_code,
                        "country_code": country_code(address.country),
                    },
                },
            }
        ],
        "application_context": {
            "return_url": return_url,
            "cancel_url": cancel_url,
            "brand_name": brand_name,
            "user_action": "PAY_NOW",
        },
    }


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"PayPal request failed with status {response.status_code}"
    return body.get("message") or body.get("error_description") or body.get("name") or "PayPal request failed"


class PayPalGateway:
    """Creates PayPal orders and captures them after buyer approval."""

    name = "paypal"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        backend_url: str,
        frontend_url: str,
        mode: str = "sandbox",
        brand_name: str = "Shopfront",
        currency: str = "USD",
        client: httpx.AsyncClient | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.backend_url = backend_url.rstrip("/")
        self.frontend_url = frontend_url.rstrip("/")
        self.base_url = LIVE_BASE_URL if mode == "live" else SANDBOX_BASE_URL
        self.brand_name = brand_name
        self.currency = currency.upper()
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._token: str | None = None
        self._token_expires = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _access_token(self) -> str:
        if not self.configured:
            raise PaymentNotConfiguredError("PayPal")
        if self._token and time.monotonic() < self._token_expires:
            return self._token

        try:
            response = await self._client.post(
                f"{self.base_url}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
            )
        except httpx.HTTPError as e:
            raise PaymentProcessorError("paypal", str(e))
        if response.is_error:
            raise PaymentProcessorError("paypal", _error_message(response))

        body = response.json()
        self._token = body["access_token"]
        # Refresh a minute early.
        self._token_expires = time.monotonic() + max(int(body.get("expires_in", 0)) - 60, 0)
        return self._token

    async def _post(self, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        token = await self._access_token()
        try:
            response = await self._client.post(
                f"{self.base_url}{path}",
                json=json or {},
                headers={
                    "Authorization": f"Bearer {token}",
                    "Prefer": "return=representation",
                },
            )
        except httpx.HTTPError as e:
            raise PaymentProcessorError("paypal", str(e))
        if response.is_error:
            raise PaymentProcessorError("paypal", _error_message(response))
        return response.json()

    async def create_order(self, order: Order) -> ProcessorSession:
        """
        Create a PayPal order and return its buyer approval link.

        Raises:
            PaymentNotConfiguredError: If client credentials are missing.
            PaymentProcessorError: If PayPal rejects the request.
        """
        body = build_order_request(
            order,
            return_url=f"{self.backend_url}/payment/paypal-success?orderId={order.id}",
            cancel_url=f"{self.frontend_url}/checkout?cancelled=true",
            brand_name=self.brand_name,
            currency=self.currency,
        )
        try:
            result = await self._post("/v2/checkout/orders", body)
        except PaymentProcessorError as e:
            log.error("paypal_order_failed", order_id=order.id, error=str(e))
            raise

        approve = next(
            (
                link["href"]
                for link in result.get("links", [])
                if link.get("rel") in ("approve", "payer-action")
            ),
            None,
        )
        if approve is None:
            raise PaymentProcessorError("paypal", "PayPal response had no approval link")

        log.info("paypal_order_created", order_id=order.id, paypal_order_id=result["id"])
        return ProcessorSession(processor=self.name, reference=result["id"], redirect_url=approve)

    async def capture_order(self, token: str) -> CaptureResult:
        """Capture an approved PayPal order. `token` is the PayPal order ID from the redirect."""
        result = await self._post(f"/v2/checkout/orders/{token}/capture")
        capture_id = None
        for unit in result.get("purchase_units", []):
            captures = unit.get("payments", {}).get("captures", [])
            if captures:
                capture_id = captures[0].get("id")
                break
        return CaptureResult(status=result.get("status", ""), capture_id=capture_id)

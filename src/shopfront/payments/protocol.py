"""Processor-facing types shared by the gateways and the orchestrator."""

from dataclasses import dataclass
from typing import Any, Protocol

from ..models import Order


@dataclass(frozen=True)
class ProcessorSession:
    """A hosted payment page opened for one order."""

    processor: str
    reference: str  # Stripe checkout session ID or PayPal order ID
    redirect_url: str


@dataclass(frozen=True)
class CaptureResult:
    status: str
    capture_id: str | None = None

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"


class CardGateway(Protocol):
    async def create_checkout_session(self, order: Order) -> ProcessorSession: ...

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]: ...


class WalletGateway(Protocol):
    async def create_order(self, order: Order) -> ProcessorSession: ...

    async def capture_order(self, token: str) -> CaptureResult: ...

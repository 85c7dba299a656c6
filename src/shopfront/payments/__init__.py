"""Payment processing: processor gateways and the reconciliation orchestrator."""

from .orchestrator import PaymentOrchestrator
from .paypal_gateway import PayPalGateway
from .protocol import CaptureResult, CardGateway, ProcessorSession, WalletGateway
from .stripe_gateway import StripeGateway

__all__ = [
    "CaptureResult",
    "CardGateway",
    "PaymentOrchestrator",
    "PayPalGateway",
    "ProcessorSession",
    "StripeGateway",
    "WalletGateway",
]

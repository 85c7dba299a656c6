"""Data models for shopfront."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
import uuid

from .errors import ValidationError


def _utc_now() -> datetime:
    """Return current UTC time (naive, as stored in the database)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: datetime | None) -> str | None:
    """Render a stored UTC timestamp as ISO 8601 with a Z suffix."""
    if value is None:
        return None
    return value.isoformat() + "Z"


def _generate_id() -> str:
    """Generate a new entity ID."""
    return uuid.uuid4().hex


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    COD = "cod"


class PaymentStage(str, Enum):
    """Where an order sits in the payment state machine."""

    UNPAID = "unpaid"
    SESSION_CREATED = "session_created"
    PAID = "paid"
    FAILED = "failed"


# Order-status lifecycle; pending -> processing is also driven by payment reconciliation.
ORDER_STATUS_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

# Administrative payment-status changes. PAID is reserved for reconciliation.
PAYMENT_STATUS_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.UNPAID: {PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}


@dataclass
class Product:
    """A catalog entry."""

    id: str
    name: str
    description: str
    price: Decimal
    category: str
    stock: int = 0
    images: list[str] = field(default_factory=list)
    is_active: bool = False
    sku: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "stock": self.stock,
            "images": list(self.images),
            "is_active": self.is_active,
            "sku": self.sku,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class CartKey:
    """Identity scoping a cart: exactly one of a user ID or a guest session ID."""

    user_id: str | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        if bool(self.user_id) == bool(self.session_id):
            raise ValidationError("userId or sessionId required")

    @classmethod
    def resolve(cls, user_id: str | None, session_id: str | None) -> "CartKey":
        """Build a key where an explicit user ID takes precedence over a guest session."""
        if user_id:
            return cls(user_id=user_id)
        return cls(session_id=session_id)

    @property
    def lock_key(self) -> str:
        if self.user_id:
            return f"user:{self.user_id}"
        return f"guest:{self.session_id}"


@dataclass
class CartItem:
    """A (product, quantity) line in a cart."""

    product_id: str
    quantity: int
    added_at: datetime = field(default_factory=_utc_now)
    product: Product | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "added_at": _iso(self.added_at),
            "product": self.product.to_dict() if self.product else None,
        }


@dataclass
class Cart:
    """A cart; `id` is None for a synthesized empty cart that was never stored."""

    id: str | None
    user_id: str | None = None
    session_id: str | None = None
    items: list[CartItem] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def empty(cls, key: CartKey) -> "Cart":
        return cls(id=None, user_id=key.user_id, session_id=key.session_id)

    @property
    def key(self) -> CartKey:
        return CartKey.resolve(self.user_id, self.session_id)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find_item(self, product_id: str) -> CartItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "items": [item.to_dict() for item in self.items],
            "item_count": self.item_count,
        }


@dataclass(frozen=True)
class OrderItem:
    """Frozen snapshot of a purchased line, decoupled from the catalog."""

    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "price": self.unit_price,
            "quantity": self.quantity,
            "subtotal": self.subtotal,
        }


@dataclass(frozen=True)
class ShippingAddress:
    full_name: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "full_name": self.full_name,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "country": self.country,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShippingAddress":
        return cls(
            full_name=data.get("full_name", ""),
            street=data.get("street", ""),
            city=data.get("city", ""),
            state=data.get("state", ""),
            zip_code=data.get("zip_code", ""),
            country=data.get("country", ""),
            phone=data.get("phone"),
        )


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    email: str
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "email": self.email, "phone": self.phone}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CustomerInfo":
        return cls(
            name=data.get("name", ""),
            email=data.get("email", ""),
            phone=data.get("phone"),
        )


@dataclass
class Order:
    """A ledger entry. Totals are computed once at creation."""

    id: str
    order_number: str
    customer_info: CustomerInfo
    items: list[OrderItem]
    shipping_address: ShippingAddress
    subtotal: Decimal
    shipping_fee: Decimal
    tax: Decimal
    total: Decimal
    payment_method: str
    customer_id: str | None = None
    session_id: str | None = None
    notes: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    stripe_session_id: str | None = None
    stripe_payment_intent_id: str | None = None
    paypal_order_id: str | None = None
    paypal_capture_id: str | None = None
    tracking_number: str | None = None
    paid_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def payment_stage(self) -> PaymentStage:
        if self.payment_status == PaymentStatus.PAID:
            return PaymentStage.PAID
        if self.payment_status in (PaymentStatus.FAILED, PaymentStatus.REFUNDED):
            return PaymentStage.FAILED
        if self.stripe_session_id or self.paypal_order_id:
            return PaymentStage.SESSION_CREATED
        return PaymentStage.UNPAID

    @property
    def cart_keys(self) -> list[CartKey]:
        """Cart identities to clear once this order is paid."""
        keys = []
        if self.customer_id:
            keys.append(CartKey(user_id=self.customer_id))
        if self.session_id:
            keys.append(CartKey(session_id=self.session_id))
        return keys

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_info": self.customer_info.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "shipping_address": self.shipping_address.to_dict(),
            "subtotal": self.subtotal,
            "shipping_fee": self.shipping_fee,
            "tax": self.tax,
            "total_amount": self.total,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status.value,
            "payment_stage": self.payment_stage.value,
            "status": self.status.value,
            "notes": self.notes,
            "stripe_session_id": self.stripe_session_id,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "paypal_order_id": self.paypal_order_id,
            "paypal_capture_id": self.paypal_capture_id,
            "tracking_number": self.tracking_number,
            "paid_at": _iso(self.paid_at),
            "shipped_at": _iso(self.shipped_at),
            "delivered_at": _iso(self.delivered_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class User:
    """A registered customer or admin. The password hash never leaves the store layer."""

    id: str
    name: str
    email: str
    role: str = "customer"
    phone: str | None = None
    address: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
            "address": dict(self.address),
            "created_at": _iso(self.created_at),
        }

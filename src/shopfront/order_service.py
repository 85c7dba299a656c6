"""Order placement: item snapshots, totals, and the two placement variants."""

from dataclasses import dataclass, field
from decimal import Decimal

from .catalog_store import ProductStore
from .errors import InsufficientStockError, ValidationError
from .logs import get_logger
from .models import (
    CustomerInfo,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingAddress,
    _generate_id,
)
from .notifications import EmailResult, Notifier, send_order_emails
from .order_store import OrderStore
from .utils import to_money, validate_id

log = get_logger("orders")


@dataclass
class LineRequest:
    product_id: str
    quantity: int


@dataclass
class PlacementRequest:
    """What a caller asks to buy. Prices and totals always come from the catalog."""

    items: list[LineRequest]
    shipping_address: ShippingAddress | None
    customer_info: CustomerInfo | None
    payment_method: str | None = None
    shipping_fee: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    notes: str | None = None
    customer_id: str | None = None
    session_id: str | None = None


@dataclass
class PlacedOrder:
    order: Order
    email_status: dict[str, EmailResult] = field(default_factory=dict)


def compute_total(items: list[OrderItem], shipping_fee: Decimal, tax: Decimal) -> Decimal:
    return sum((item.subtotal for item in items), Decimal("0.00")) + shipping_fee + tax


class OrderService:
    """Turns placement requests into ledger entries."""

    def __init__(self, orders: OrderStore, products: ProductStore, notifier: Notifier):
        self.orders = orders
        self.products = products
        self.notifier = notifier

    async def snapshot_items(self, lines: list[LineRequest]) -> list[OrderItem]:
        """
        Freeze name and unit price of each requested line from the current catalog.

        Raises:
            InvalidIdentifierError: If a product ID is malformed.
            ProductNotFoundError: If a product doesn't exist.
            InsufficientStockError: If a quantity exceeds current stock.
        """
        items = []
        for line in lines:
            validate_id(line.product_id, "product")
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity < 1:
                raise ValidationError("Quantity must be a positive integer")
            product = await self.products.get_product(line.product_id)
            if product.stock < line.quantity:
                raise InsufficientStockError(product.name, product.stock)
            items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    unit_price=product.price,
                    quantity=line.quantity,
                    subtotal=product.price * line.quantity,
                )
            )
        return items

    async def _build_order(self, request: PlacementRequest, payment_method: str) -> Order:
        if not request.items:
            raise ValidationError("Cart is empty")
        if request.shipping_address is None or request.customer_info is None:
            raise ValidationError("Missing required fields")
        if request.customer_id:
            validate_id(request.customer_id, "customer")

        shipping_fee = to_money(request.shipping_fee, "shippingFee")
        tax = to_money(request.tax, "tax")
        items = await self.snapshot_items(request.items)
        subtotal = sum((item.subtotal for item in items), Decimal("0.00"))

        return Order(
            id=_generate_id(),
            order_number="",
            customer_id=request.customer_id,
            session_id=request.session_id,
            customer_info=request.customer_info,
            items=items,
            shipping_address=request.shipping_address,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            tax=tax,
            total=compute_total(items, shipping_fee, tax),
            payment_method=payment_method,
            notes=request.notes,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
        )

    async def place_direct_order(self, request: PlacementRequest) -> PlacedOrder:
        """
        Create an order that is settled outside any processor (e.g. cash on delivery).

        Stock for every line is taken in the same transaction that stores the
        order; if any line is short nothing is written. The order stays
        pending/unpaid. Emails are best-effort and reported, not raised.

        Raises:
            ValidationError: If items, shipping address or customer info are missing.
            ProductNotFoundError: If a product doesn't exist.
            InsufficientStockError: If a quantity exceeds stock.
        """
        if request.customer_info is not None and not request.customer_info.email:
            raise ValidationError("Missing required fields")
        order = await self._build_order(request, request.payment_method or PaymentMethod.COD.value)
        await self.orders.create_order(order, reserve_stock=True)
        log.info(
            "order_created",
            order_id=order.id,
            order_number=order.order_number,
            total=str(order.total),
            path="direct",
        )
        email_status = await send_order_emails(self.notifier, order)
        return PlacedOrder(order=order, email_status=email_status)

    async def place_pending_order(self, request: PlacementRequest) -> Order:
        """
        Store a pending/unpaid order ahead of opening a processor session.

        Stock is only checked here, not taken; it is decremented when payment
        is confirmed.
        """
        if not request.payment_method:
            raise ValidationError("Missing required fields")
        if request.customer_info is None or not request.customer_info.email:
            raise ValidationError("Missing required fields")
        order = await self._build_order(request, request.payment_method)
        await self.orders.create_order(order)
        log.info(
            "order_created",
            order_id=order.id,
            order_number=order.order_number,
            total=str(order.total),
            path="payment",
            payment_method=order.payment_method,
        )
        return order

"""Order ledger storage for shopfront."""

from datetime import datetime
from typing import Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .catalog_store import ProductStore
from .db import OrderItemTable, OrderTable
from .errors import (
    InsufficientStockError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderNumberExhaustedError,
)
from .logs import get_logger
from .models import (
    ORDER_STATUS_TRANSITIONS,
    PAYMENT_STATUS_TRANSITIONS,
    CustomerInfo,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ShippingAddress,
    _utc_now,
)
from .utils import from_cents, generate_order_number, to_cents

MAX_ORDER_NUMBER_ATTEMPTS = 5

log = get_logger("orders")


def _to_order(row: OrderTable) -> Order:
    return Order(
        id=row.id,
        order_number=row.order_number,
        customer_id=row.customer_id,
        session_id=row.session_id,
        customer_info=CustomerInfo(
            name=row.customer_name,
            email=row.customer_email,
            phone=row.customer_phone,
        ),
        items=[
            OrderItem(
                product_id=i.product_id,
                product_name=i.product_name,
                unit_price=from_cents(i.unit_price_cents),
                quantity=i.quantity,
                subtotal=from_cents(i.subtotal_cents),
            )
            for i in row.items
        ],
        shipping_address=ShippingAddress.from_dict(row.shipping_address or {}),
        subtotal=from_cents(row.subtotal_cents),
        shipping_fee=from_cents(row.shipping_cents),
        tax=from_cents(row.tax_cents),
        total=from_cents(row.total_cents),
        payment_method=row.payment_method,
        payment_status=PaymentStatus(row.payment_status),
        status=OrderStatus(row.status),
        notes=row.notes,
        stripe_session_id=row.stripe_session_id,
        stripe_payment_intent_id=row.stripe_payment_intent_id,
        paypal_order_id=row.paypal_order_id,
        paypal_capture_id=row.paypal_capture_id,
        tracking_number=row.tracking_number,
        paid_at=row.paid_at,
        shipped_at=row.shipped_at,
        delivered_at=row.delivered_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_row(order: Order, order_number: str) -> OrderTable:
    return OrderTable(
        id=order.id,
        order_number=order_number,
        customer_id=order.customer_id,
        session_id=order.session_id,
        customer_name=order.customer_info.name,
        customer_email=order.customer_info.email,
        customer_phone=order.customer_info.phone,
        shipping_address=order.shipping_address.to_dict(),
        subtotal_cents=to_cents(order.subtotal),
        shipping_cents=to_cents(order.shipping_fee),
        tax_cents=to_cents(order.tax),
        total_cents=to_cents(order.total),
        payment_method=order.payment_method,
        payment_status=order.payment_status.value,
        status=order.status.value,
        notes=order.notes,
        items=[
            OrderItemTable(
                product_id=i.product_id,
                product_name=i.product_name,
                unit_price_cents=to_cents(i.unit_price),
                quantity=i.quantity,
                subtotal_cents=to_cents(i.subtotal),
            )
            for i in order.items
        ],
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


class OrderStore:
    """Manages the order ledger."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        number_factory: Callable[[], str] = generate_order_number,
    ):
        self._session = session_factory
        self._new_number = number_factory

    async def _number_taken(self, session: AsyncSession, number: str) -> bool:
        stmt = select(OrderTable.id).where(OrderTable.order_number == number)
        return (await session.execute(stmt)).first() is not None

    async def create_order(self, order: Order, reserve_stock: bool = False) -> Order:
        """
        Persist a new order with a freshly allocated order number.

        With `reserve_stock`, every line's quantity is taken out of stock in the
        same transaction; if any line is short, nothing is written. A number
        already in the ledger, or one claimed by a concurrent insert, is
        replaced and the transaction retried.

        Raises:
            InsufficientStockError: If `reserve_stock` and a product ran out.
            OrderNumberExhaustedError: If no free number was found in
                MAX_ORDER_NUMBER_ATTEMPTS tries.
        """
        for _ in range(MAX_ORDER_NUMBER_ATTEMPTS):
            number = self._new_number()
            try:
                async with self._session() as session, session.begin():
                    if await self._number_taken(session, number):
                        continue
                    if reserve_stock:
                        for item in order.items:
                            if not await ProductStore.decrement_stock(session, item.product_id, item.quantity):
                                raise InsufficientStockError(item.product_name, available=0)
                    session.add(_to_row(order, number))
                    await session.flush()
            except IntegrityError as e:
                if "order_number" not in str(e.orig):
                    raise
                log.warning("order_number_conflict", order_number=number)
                continue
            order.order_number = number
            return order
        raise OrderNumberExhaustedError(MAX_ORDER_NUMBER_ATTEMPTS)

    async def get_order(self, order_id: str) -> Order:
        """
        Get an order by ID.

        Raises:
            OrderNotFoundError: If order doesn't exist.
        """
        async with self._session() as session:
            row = await session.get(OrderTable, order_id)
            if row is None:
                raise OrderNotFoundError(order_id)
            return _to_order(row)

    async def list_orders(
        self,
        status: str | None = None,
        customer_id: str | None = None,
    ) -> list[Order]:
        """List orders newest first, optionally filtered."""
        stmt = select(OrderTable)
        if status:
            stmt = stmt.where(OrderTable.status == status)
        if customer_id:
            stmt = stmt.where(OrderTable.customer_id == customer_id)
        stmt = stmt.order_by(OrderTable.created_at.desc())
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_order(r) for r in rows]

    async def attach_processor_reference(
        self,
        order_id: str,
        stripe_session_id: str | None = None,
        paypal_order_id: str | None = None,
    ) -> Order:
        """Record the processor's session/order ID on a pending order."""
        async with self._session() as session, session.begin():
            row = await session.get(OrderTable, order_id)
            if row is None:
                raise OrderNotFoundError(order_id)
            if stripe_session_id is not None:
                row.stripe_session_id = stripe_session_id
            if paypal_order_id is not None:
                row.paypal_order_id = paypal_order_id
            row.updated_at = _utc_now()
        return _to_order(row)

    @staticmethod
    async def claim_payment(
        session: AsyncSession,
        order_id: str,
        paid_at: datetime,
        stripe_payment_intent_id: str | None = None,
        paypal_capture_id: str | None = None,
    ) -> Order | None:
        """
        Move an unpaid order to paid/processing inside the caller's transaction.

        This is a compare-and-set: it returns None, changing nothing, when the
        order is missing or no longer unpaid (e.g. a redelivered callback).
        """
        values: dict = {
            "payment_status": PaymentStatus.PAID.value,
            "status": OrderStatus.PROCESSING.value,
            "paid_at": paid_at,
            "updated_at": paid_at,
        }
        if stripe_payment_intent_id is not None:
            values["stripe_payment_intent_id"] = stripe_payment_intent_id
        if paypal_capture_id is not None:
            values["paypal_capture_id"] = paypal_capture_id

        result = await session.execute(
            update(OrderTable)
            .where(
                OrderTable.id == order_id,
                OrderTable.payment_status == PaymentStatus.UNPAID.value,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            return None
        row = await session.get(OrderTable, order_id, populate_existing=True)
        return _to_order(row)

    async def mark_payment_failed(self, order_id: str) -> Order | None:
        """Move an unpaid order to payment-status failed. Returns None if it wasn't unpaid."""
        async with self._session() as session, session.begin():
            result = await session.execute(
                update(OrderTable)
                .where(
                    OrderTable.id == order_id,
                    OrderTable.payment_status == PaymentStatus.UNPAID.value,
                )
                .values(payment_status=PaymentStatus.FAILED.value, updated_at=_utc_now())
            )
            if result.rowcount != 1:
                return None
            row = await session.get(OrderTable, order_id, populate_existing=True)
            return _to_order(row)

    async def update_order(
        self,
        order_id: str,
        status: OrderStatus | None = None,
        payment_status: PaymentStatus | None = None,
        tracking_number: str | None = None,
    ) -> Order:
        """
        Apply an administrative update.

        Raises:
            OrderNotFoundError: If order doesn't exist.
            InvalidTransitionError: If a status change is not allowed from the current state.
        """
        now = _utc_now()
        async with self._session() as session, session.begin():
            row = await session.get(OrderTable, order_id)
            if row is None:
                raise OrderNotFoundError(order_id)

            if status is not None and status.value != row.status:
                current = OrderStatus(row.status)
                if status not in ORDER_STATUS_TRANSITIONS[current]:
                    raise InvalidTransitionError("status", current.value, status.value)
                row.status = status.value
                if status == OrderStatus.SHIPPED:
                    row.shipped_at = now
                elif status == OrderStatus.DELIVERED:
                    row.delivered_at = now

            if payment_status is not None and payment_status.value != row.payment_status:
                current_payment = PaymentStatus(row.payment_status)
                if payment_status not in PAYMENT_STATUS_TRANSITIONS[current_payment]:
                    raise InvalidTransitionError(
                        "paymentStatus", current_payment.value, payment_status.value
                    )
                row.payment_status = payment_status.value

            if tracking_number is not None:
                row.tracking_number = tracking_number
            row.updated_at = now
        return _to_order(row)

    async def count_orders(self, status: str | None = None) -> int:
        stmt = select(func.count(OrderTable.id))
        if status:
            stmt = stmt.where(OrderTable.status == status)
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def paid_revenue(self):
        """Sum of totals over paid orders."""
        stmt = select(func.coalesce(func.sum(OrderTable.total_cents), 0)).where(
            OrderTable.payment_status == PaymentStatus.PAID.value
        )
        async with self._session() as session:
            return from_cents((await session.execute(stmt)).scalar_one())

"""Product catalog storage for shopfront."""

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db import ProductTable
from .errors import DuplicateError, ProductNotFoundError, ValidationError
from .models import Product, _generate_id, _utc_now
from .utils import from_cents, generate_sku, to_cents


@dataclass
class ProductChanges:
    """Explicit set of mutable product fields. None means "leave unchanged"."""

    name: str | None = None
    description: str | None = None
    price: Decimal | None = None
    category: str | None = None
    stock: int | None = None
    images: list[str] | None = None
    is_active: bool | None = None
    sku: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


def _to_product(row: ProductTable) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        description=row.description,
        price=from_cents(row.price_cents),
        category=row.category,
        stock=row.stock,
        images=list(row.images or []),
        is_active=row.is_active,
        sku=row.sku,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _check_values(price: Decimal | None, stock: int | None) -> None:
    if price is not None and price < 0:
        raise ValidationError("price must not be negative")
    if stock is not None and stock < 0:
        raise ValidationError("stock must not be negative")


class ProductStore:
    """Manages catalog persistence."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session = session_factory

    async def list_products(
        self,
        category: str | None = None,
        search: str | None = None,
        is_active: bool | None = None,
    ) -> list[Product]:
        """List products, newest first. Filters apply only when given."""
        stmt = select(ProductTable)
        if is_active is not None:
            stmt = stmt.where(ProductTable.is_active == is_active)
        if category:
            stmt = stmt.where(ProductTable.category == category)
        if search:
            stmt = stmt.where(ProductTable.name.ilike(f"%{search}%"))
        stmt = stmt.order_by(ProductTable.created_at.desc())

        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_product(r) for r in rows]

    async def get_product(self, product_id: str) -> Product:
        """
        Get a product by ID.

        Raises:
            ProductNotFoundError: If product doesn't exist.
        """
        async with self._session() as session:
            row = await session.get(ProductTable, product_id)
            if row is None:
                raise ProductNotFoundError(product_id)
            return _to_product(row)

    async def get_products(self, product_ids: Iterable[str]) -> dict[str, Product]:
        """Fetch several products at once; missing IDs are simply absent."""
        ids = list(set(product_ids))
        if not ids:
            return {}
        async with self._session() as session:
            rows = (
                await session.execute(select(ProductTable).where(ProductTable.id.in_(ids)))
            ).scalars().all()
            return {r.id: _to_product(r) for r in rows}

    async def count_products(self) -> int:
        async with self._session() as session:
            return (await session.execute(select(func.count(ProductTable.id)))).scalar_one()

    async def create_product(
        self,
        name: str,
        description: str,
        price: Decimal,
        category: str,
        stock: int = 0,
        images: list[str] | None = None,
        is_active: bool = False,
        sku: str | None = None,
    ) -> Product:
        """
        Create a product. A SKU is generated when omitted.

        Raises:
            ValidationError: If price or stock is negative.
            DuplicateError: If the SKU is already taken.
        """
        _check_values(price, stock)
        now = _utc_now()
        row = ProductTable(
            id=_generate_id(),
            name=name,
            description=description,
            price_cents=to_cents(price),
            category=category,
            stock=stock,
            images=list(images or []),
            is_active=is_active,
            sku=sku or generate_sku(),
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session() as session, session.begin():
                session.add(row)
        except IntegrityError:
            raise DuplicateError("Product with this SKU already exists")
        return _to_product(row)

    async def update_product(self, product_id: str, changes: ProductChanges) -> Product:
        """
        Apply the set fields of `changes` to a product.

        Raises:
            ProductNotFoundError: If product doesn't exist.
            ValidationError: If price or stock is negative.
            DuplicateError: If the new SKU is already taken.
        """
        _check_values(changes.price, changes.stock)
        try:
            async with self._session() as session, session.begin():
                row = await session.get(ProductTable, product_id)
                if row is None:
                    raise ProductNotFoundError(product_id)

                if changes.name is not None:
                    row.name = changes.name
                if changes.description is not None:
                    row.description = changes.description
                if changes.price is not None:
                    row.price_cents = to_cents(changes.price)
                if changes.category is not None:
                    row.category = changes.category
                if changes.stock is not None:
                    row.stock = changes.stock
                if changes.images is not None:
                    row.images = list(changes.images)
                if changes.is_active is not None:
                    row.is_active = changes.is_active
                if changes.sku is not None:
                    row.sku = changes.sku
                row.updated_at = _utc_now()
        except IntegrityError:
            raise DuplicateError("Product with this SKU already exists")
        return _to_product(row)

    async def delete_product(self, product_id: str) -> Product:
        """
        Delete a product and return what was removed.

        Raises:
            ProductNotFoundError: If product doesn't exist.
        """
        async with self._session() as session, session.begin():
            row = await session.get(ProductTable, product_id)
            if row is None:
                raise ProductNotFoundError(product_id)
            removed = _to_product(row)
            await session.delete(row)
        return removed

    @staticmethod
    async def decrement_stock(session: AsyncSession, product_id: str, quantity: int) -> bool:
        """
        Take `quantity` units out of stock inside the caller's transaction.

        Returns False (and changes nothing) when stock is short or the product is gone.
        """
        result = await session.execute(
            update(ProductTable)
            .where(ProductTable.id == product_id, ProductTable.stock >= quantity)
            .values(stock=ProductTable.stock - quantity, updated_at=_utc_now())
        )
        return result.rowcount == 1

    @staticmethod
    async def drain_stock(session: AsyncSession, product_id: str) -> None:
        """Set stock to zero inside the caller's transaction."""
        await session.execute(
            update(ProductTable)
            .where(ProductTable.id == product_id)
            .values(stock=0, updated_at=_utc_now())
        )

"""Cart storage for shopfront."""

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db import CartItemTable, CartTable
from .models import Cart, CartItem, CartKey, _generate_id, _utc_now


def _key_clause(key: CartKey):
    if key.user_id:
        return CartTable.user_id == key.user_id
    return CartTable.session_id == key.session_id


def _to_cart(row: CartTable) -> Cart:
    return Cart(
        id=row.id,
        user_id=row.user_id,
        session_id=row.session_id,
        items=[
            CartItem(product_id=i.product_id, quantity=i.quantity, added_at=i.added_at)
            for i in row.items
        ],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class CartStore:
    """
    Manages cart persistence.

    The store does not serialize writers; callers hold the cart gate
    for the whole read-modify-write.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session = session_factory

    async def find_cart(self, key: CartKey) -> Cart | None:
        """Return the cart for `key`, or None if none has been stored."""
        async with self._session() as session:
            row = (await session.execute(select(CartTable).where(_key_clause(key)))).scalar_one_or_none()
            return _to_cart(row) if row else None

    async def save_cart(self, cart: Cart) -> Cart:
        """
        Persist a cart's line items, creating the cart record if needed.

        Lines are matched by product ID; lines absent from `cart.items` are deleted.
        """
        key = cart.key
        now = _utc_now()
        async with self._session() as session, session.begin():
            row = (await session.execute(select(CartTable).where(_key_clause(key)))).scalar_one_or_none()
            if row is None:
                row = CartTable(
                    id=_generate_id(),
                    user_id=key.user_id,
                    session_id=key.session_id,
                    items=[],
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)

            wanted = {item.product_id: item for item in cart.items}
            for line in list(row.items):
                item = wanted.pop(line.product_id, None)
                if item is None:
                    row.items.remove(line)
                else:
                    line.quantity = item.quantity
                    line.added_at = item.added_at
            for item in cart.items:
                if item.product_id in wanted:
                    row.items.append(
                        CartItemTable(
                            product_id=item.product_id,
                            quantity=item.quantity,
                            added_at=item.added_at,
                        )
                    )
            row.updated_at = now
            await session.flush()
            saved = _to_cart(row)
        return saved

    async def delete_cart(self, key: CartKey) -> bool:
        async with self._session() as session, session.begin():
            row = (await session.execute(select(CartTable).where(_key_clause(key)))).scalar_one_or_none()
            if row is None:
                return False
            await session.delete(row)
            return True

    async def rekey_cart(self, old: CartKey, new: CartKey) -> Cart | None:
        """Move a cart to a different identity, keeping its contents."""
        async with self._session() as session, session.begin():
            row = (await session.execute(select(CartTable).where(_key_clause(old)))).scalar_one_or_none()
            if row is None:
                return None
            row.user_id = new.user_id
            row.session_id = new.session_id
            row.updated_at = _utc_now()
            await session.flush()
            return _to_cart(row)

    @staticmethod
    async def clear_items(session: AsyncSession, key: CartKey) -> None:
        """Empty the cart for `key` inside the caller's transaction (no-op if absent)."""
        cart_ids = select(CartTable.id).where(_key_clause(key))
        await session.execute(delete(CartItemTable).where(CartItemTable.cart_id.in_(cart_ids)))
        await session.execute(
            update(CartTable).where(_key_clause(key)).values(updated_at=_utc_now())
        )

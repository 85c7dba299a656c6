"""Cart operations, each mutation serialized per identity by the cart gate."""

from .cart_store import CartStore
from .catalog_store import ProductStore
from .errors import (
    CartItemNotFoundError,
    CartNotFoundError,
    InsufficientStockError,
    ProductUnavailableError,
    ValidationError,
)
from .locks import KeyedGate
from .logs import get_logger
from .models import Cart, CartItem, CartKey, _utc_now
from .utils import validate_id

log = get_logger("cart")


def _check_quantity(quantity: object, minimum: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be an integer")
    if quantity < minimum:
        raise ValidationError(f"Quantity must be at least {minimum}")
    return quantity


def _check_key(key: CartKey) -> CartKey:
    if key.user_id:
        validate_id(key.user_id, "user")
    return key


class CartService:
    """
    Reads and mutations of carts.

    Every mutation holds the gate for the cart's identity across the whole
    read-modify-write, so concurrent adds to the same cart cannot lose updates.
    """

    def __init__(
        self,
        carts: CartStore,
        products: ProductStore,
        gate: KeyedGate,
        max_wait: float = 5.0,
    ):
        self.carts = carts
        self.products = products
        self.gate = gate
        self.max_wait = max_wait

    async def _with_products(self, cart: Cart) -> Cart:
        """Attach current catalog records to each line; deleted products stay None."""
        found = await self.products.get_products(item.product_id for item in cart.items)
        for item in cart.items:
            item.product = found.get(item.product_id)
        return cart

    async def get_cart(self, key: CartKey) -> Cart:
        """Return the cart for `key`, or an unsaved empty cart if there is none."""
        _check_key(key)
        cart = await self.carts.find_cart(key)
        if cart is None:
            return Cart.empty(key)
        return await self._with_products(cart)

    async def add_item(self, key: CartKey, product_id: str, quantity: int = 1) -> Cart:
        """
        Add `quantity` of a product, merging with any existing line.

        Raises:
            InvalidIdentifierError: If the product or user ID is malformed.
            ProductNotFoundError: If the product doesn't exist.
            ProductUnavailableError: If the product is inactive.
            InsufficientStockError: If the combined quantity would exceed stock.
        """
        _check_key(key)
        validate_id(product_id, "product")
        _check_quantity(quantity, 1)

        async with self.gate.hold(key.lock_key, self.max_wait):
            product = await self.products.get_product(product_id)
            if not product.is_active:
                raise ProductUnavailableError(product_id)

            cart = await self.carts.find_cart(key) or Cart.empty(key)
            existing = cart.find_item(product_id)
            combined = quantity + (existing.quantity if existing else 0)
            if combined > product.stock:
                raise InsufficientStockError(product.name, product.stock, combined)

            if existing:
                existing.quantity = combined
            else:
                cart.items.append(CartItem(product_id=product_id, quantity=quantity, added_at=_utc_now()))
            saved = await self.carts.save_cart(cart)

        log.debug("cart_item_added", cart=key.lock_key, product_id=product_id, quantity=combined)
        return await self._with_products(saved)

    async def update_item(self, key: CartKey, product_id: str, quantity: int) -> Cart:
        """
        Overwrite a line's quantity. Zero removes the line.

        Raises:
            ValidationError: If quantity is negative or not an integer.
            CartNotFoundError: If the identity has no cart.
            CartItemNotFoundError: If the product is not in the cart.
            InsufficientStockError: If quantity exceeds current stock.
        """
        _check_key(key)
        validate_id(product_id, "product")
        _check_quantity(quantity, 0)

        async with self.gate.hold(key.lock_key, self.max_wait):
            cart = await self.carts.find_cart(key)
            if cart is None:
                raise CartNotFoundError(key.lock_key)
            item = cart.find_item(product_id)
            if item is None:
                raise CartItemNotFoundError(product_id)

            if quantity == 0:
                cart.items.remove(item)
            else:
                product = await self.products.get_product(product_id)
                if quantity > product.stock:
                    raise InsufficientStockError(product.name, product.stock, quantity)
                item.quantity = quantity
            saved = await self.carts.save_cart(cart)

        return await self._with_products(saved)

    async def remove_item(self, key: CartKey, product_id: str) -> Cart:
        """Drop a product's line. Removing something that isn't there is not an error."""
        _check_key(key)
        validate_id(product_id, "product")

        async with self.gate.hold(key.lock_key, self.max_wait):
            cart = await self.carts.find_cart(key)
            if cart is None:
                return Cart.empty(key)
            item = cart.find_item(product_id)
            if item is None:
                return await self._with_products(cart)
            cart.items.remove(item)
            saved = await self.carts.save_cart(cart)

        return await self._with_products(saved)

    async def clear_cart(self, key: CartKey) -> Cart:
        _check_key(key)
        async with self.gate.hold(key.lock_key, self.max_wait):
            cart = await self.carts.find_cart(key)
            if cart is None:
                return Cart.empty(key)
            cart.items = []
            return await self.carts.save_cart(cart)

    async def merge_carts(self, session_id: str, user_id: str) -> Cart:
        """
        Fold a guest cart into a user's cart after sign-in.

        Quantities of shared products are summed. When the user has no cart the
        guest cart is re-keyed to the user as is. Merged quantities are not
        checked against stock.
        """
        if not session_id:
            raise ValidationError("sessionId is required")
        user_key = _check_key(CartKey(user_id=user_id))
        guest_key = CartKey(session_id=session_id)

        # Always user before guest, so two merges never wait on each other in a cycle.
        async with self.gate.hold(user_key.lock_key, self.max_wait):
            async with self.gate.hold(guest_key.lock_key, self.max_wait):
                guest = await self.carts.find_cart(guest_key)
                user = await self.carts.find_cart(user_key)

                if guest is None or not guest.items:
                    merged = user or Cart.empty(user_key)
                elif user is None:
                    merged = await self.carts.rekey_cart(guest_key, user_key)
                else:
                    for guest_item in guest.items:
                        existing = user.find_item(guest_item.product_id)
                        if existing:
                            existing.quantity += guest_item.quantity
                        else:
                            user.items.append(
                                CartItem(product_id=guest_item.product_id, quantity=guest_item.quantity)
                            )
                    merged = await self.carts.save_cart(user)
                    await self.carts.delete_cart(guest_key)

        log.info("cart_merged", user_id=user_id, session_id=session_id, item_count=merged.item_count)
        return await self._with_products(merged)

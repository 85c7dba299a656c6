"""Custom exceptions for shopfront."""


class ShopError(Exception):
    """Base exception for all shopfront errors."""

    pass


class ValidationError(ShopError):
    """Raised when request data is missing or malformed."""

    def __init__(self, message: str):
        super().__init__(message)


class InvalidIdentifierError(ShopError):
    """Raised when an identifier is not well-formed."""

    def __init__(self, kind: str, value: object):
        self.kind = kind
        self.value = value
        super().__init__(f"Invalid {kind} ID format")


class NotFoundError(ShopError):
    """Base class for missing entities."""

    def __init__(self, message: str):
        super().__init__(message)


class ProductNotFoundError(NotFoundError):
    """Raised when a product ID doesn't exist."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFoundError(NotFoundError):
    """Raised when an order ID doesn't exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class CartNotFoundError(NotFoundError):
    """Raised when an operation needs an existing cart."""

    def __init__(self, key: str):
        self.key = key
        super().__init__("Cart not found")


class CartItemNotFoundError(NotFoundError):
    """Raised when a product is not in the cart."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("Item not found in cart")


class UserNotFoundError(NotFoundError):
    """Raised when a user ID doesn't exist."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class ProductUnavailableError(ShopError):
    """Raised when adding an inactive product to a cart."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("Product is not available")


class InsufficientStockError(ShopError):
    """Raised when a requested quantity exceeds current stock."""

    def __init__(self, product_name: str, available: int, requested: int | None = None):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        if requested is None:
            super().__init__(f"Insufficient stock for {product_name}")
        else:
            super().__init__(f"Only {available} items available in stock")


class InvalidTransitionError(ShopError):
    """Raised when an order status change is not allowed."""

    def __init__(self, field: str, current: str, requested: str):
        self.field = field
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change {field} from '{current}' to '{requested}'")


class DuplicateError(ShopError):
    """Raised when a unique field already exists."""

    def __init__(self, message: str):
        super().__init__(message)


class AuthenticationError(ShopError):
    """Raised when login credentials don't match."""

    def __init__(self):
        super().__init__("Invalid email or password")


class LockTimeoutError(ShopError):
    """Raised when a cart gate cannot be acquired in time."""

    def __init__(self, key: str, max_wait: float):
        self.key = key
        self.max_wait = max_wait
        super().__init__(f"Lock timeout: cart is busy (waited {max_wait:g}s)")


class UnsupportedPaymentMethodError(ShopError):
    """Raised when a payment method has no processor."""

    def __init__(self, method: str | None):
        self.method = method
        super().__init__(f"Unsupported payment method: {method}")


class PaymentProcessorError(ShopError):
    """Raised when an external payment processor call fails."""

    def __init__(self, processor: str, message: str):
        self.processor = processor
        super().__init__(message)


class PaymentNotConfiguredError(ShopError):
    """Raised when a processor is used without credentials."""

    def __init__(self, processor: str):
        self.processor = processor
        super().__init__(f"{processor} is not configured")


class WebhookSignatureError(ShopError):
    """Raised when a webhook signature fails verification."""

    def __init__(self, reason: str):
        super().__init__(f"Webhook Error: {reason}")


class UploadError(ShopError):
    """Raised when an uploaded file is rejected."""

    def __init__(self, filename: str | None, reason: str):
        self.filename = filename
        super().__init__(reason)


class OrderNumberExhaustedError(ShopError):
    """Raised when no free order number was found after several attempts."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not allocate a unique order number after {attempts} attempts")

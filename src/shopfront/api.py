"""FastAPI REST API for the shopfront backend."""

import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Annotated, Any, Optional

from fastapi import (
    APIRouter,
    Body,
    Depends,
    FastAPI,
    File,
    Form,
    Query,
    Request,
    Response,
    UploadFile,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException as StarletteHTTPException

from .cart_service import CartService
from .cart_store import CartStore
from .catalog_store import ProductChanges, ProductStore
from .config import Settings, load_settings
from .db import create_session_factory, create_tables
from .errors import (
    AuthenticationError,
    CartItemNotFoundError,
    CartNotFoundError,
    DuplicateError,
    InsufficientStockError,
    InvalidIdentifierError,
    InvalidTransitionError,
    LockTimeoutError,
    NotFoundError,
    OrderNotFoundError,
    OrderNumberExhaustedError,
    PaymentNotConfiguredError,
    PaymentProcessorError,
    ProductNotFoundError,
    ProductUnavailableError,
    ShopError,
    UnsupportedPaymentMethodError,
    UploadError,
    UserNotFoundError,
    ValidationError,
    WebhookSignatureError,
)
from .locks import InMemoryKeyedGate, KeyedGate
from .logs import get_logger
from .models import (
    Cart,
    CartKey,
    CustomerInfo,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    ShippingAddress,
    User,
)
from .notifications import EmailResult, MailjetNotifier, Notifier
from .order_service import LineRequest, OrderService, PlacementRequest
from .order_store import OrderStore
from .payments import CardGateway, PaymentOrchestrator, PayPalGateway, StripeGateway, WalletGateway
from .uploads import ImageStore
from .user_store import UserStore
from .utils import generate_guest_session_id, to_money, validate_id

log = get_logger("api")


# --- Pydantic Schemas ---

# Amounts are Decimal internally and plain JSON numbers on the wire.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float)]


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductSchema(CamelModel):
    id: str
    name: str
    description: str
    price: Money
    category: str
    stock: int
    images: list[str]
    is_active: bool
    sku: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CartItemSchema(CamelModel):
    product_id: str
    quantity: int
    added_at: Optional[str] = None
    product: Optional[ProductSchema] = None  # None if the product was deleted


class CartSchema(CamelModel):
    id: Optional[str] = None  # None for a cart that has never been stored
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    items: list[CartItemSchema]
    item_count: int


class AddressSchema(CamelModel):
    full_name: str
    street: str = Field(validation_alias=AliasChoices("street", "address"))
    city: str
    state: str = ""
    zip_code: str = ""
    country: str = ""
    phone: Optional[str] = None


class CustomerInfoSchema(CamelModel):
    name: str
    email: str
    phone: Optional[str] = None


class OrderItemSchema(CamelModel):
    product_id: str
    product_name: str
    price: Money
    quantity: int
    subtotal: Money


class OrderSchema(CamelModel):
    id: str
    order_number: str
    customer_id: Optional[str] = None
    customer_info: CustomerInfoSchema
    items: list[OrderItemSchema]
    shipping_address: AddressSchema
    subtotal: Money
    shipping_fee: Money
    tax: Money
    total_amount: Money
    payment_method: str
    payment_status: str
    payment_stage: str
    status: str
    notes: Optional[str] = None
    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    paypal_order_id: Optional[str] = None
    paypal_capture_id: Optional[str] = None
    tracking_number: Optional[str] = None
    paid_at: Optional[str] = None
    shipped_at: Optional[str] = None
    delivered_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class UserSchema(CamelModel):
    id: str
    name: str
    email: str
    role: str
    phone: Optional[str] = None
    address: dict[str, Any] = {}
    created_at: Optional[str] = None


class EmailResultSchema(CamelModel):
    sent: bool
    reason: Optional[str] = None
    message_id: Optional[str] = None


class ProductStatusRequest(CamelModel):
    is_active: Any = None


class ProductPatchRequest(CamelModel):
    """The only product fields that may be patched."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    is_active: Optional[bool] = Field(default=None, strict=True)
    stock: Optional[int] = Field(default=None, strict=True, ge=0)
    price: Optional[Decimal] = Field(default=None, ge=0)


class CartIdentityRequest(CamelModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class CartAddRequest(CartIdentityRequest):
    product_id: str
    quantity: int = Field(default=1, strict=True)


class CartUpdateRequest(CartIdentityRequest):
    product_id: str
    quantity: int = Field(strict=True)


class CartRemoveRequest(CartIdentityRequest):
    product_id: str


class CartMergeRequest(CamelModel):
    user_id: str
    session_id: str


class LineItemRequest(CamelModel):
    product_id: str
    quantity: int = Field(strict=True, ge=1)


class DirectOrderRequest(CamelModel):
    customer_id: Optional[str] = None
    customer_info: Optional[CustomerInfoSchema] = None
    items: list[LineItemRequest] = []
    shipping_address: Optional[AddressSchema] = None
    shipping_fee: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    payment_method: str = PaymentMethod.COD.value
    notes: Optional[str] = None


class PaymentOrderRequest(CamelModel):
    """Checkout body. Client-side subtotal/total are ignored; totals are recomputed."""

    user_id: Optional[str] = None
    items: list[LineItemRequest] = []
    shipping_address: Optional[AddressSchema] = None
    contact_email: Optional[str] = None
    payment_method: Optional[str] = None
    order_notes: Optional[str] = None
    shipping: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)


class OrderUpdateRequest(CamelModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None


class RegisterRequest(CamelModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)
    phone: Optional[str] = None


class LoginRequest(CamelModel):
    email: str
    password: str


# --- Helper Functions ---


def product_to_dict(product: Product) -> dict[str, Any]:
    return ProductSchema.model_validate(product.to_dict()).model_dump(by_alias=True)


def cart_to_dict(cart: Cart) -> dict[str, Any]:
    return CartSchema.model_validate(cart.to_dict()).model_dump(by_alias=True)


def order_to_dict(order: Order) -> dict[str, Any]:
    return OrderSchema.model_validate(order.to_dict()).model_dump(by_alias=True)


def user_to_dict(user: User) -> dict[str, Any]:
    return UserSchema.model_validate(user.to_dict()).model_dump(by_alias=True)


def email_result_to_dict(result: EmailResult) -> dict[str, Any]:
    return EmailResultSchema.model_validate(result.to_dict()).model_dump(by_alias=True, exclude_none=True)


def _address(schema: Optional[AddressSchema]) -> Optional[ShippingAddress]:
    if schema is None:
        return None
    return ShippingAddress(**schema.model_dump())


@dataclass
class Services:
    """Everything a request handler needs, built once per app."""

    settings: Settings
    engine: AsyncEngine
    products: ProductStore
    carts: CartStore
    orders: OrderStore
    users: UserStore
    cart_service: CartService
    order_service: OrderService
    payments: PaymentOrchestrator
    notifier: Notifier
    images: ImageStore


def get_services(request: Request) -> Services:
    return request.app.state.services


def resolve_cart_key(
    request: Request,
    settings: Settings,
    user_id: Optional[str],
    session_id: Optional[str],
    response: Optional[Response] = None,
) -> CartKey:
    """
    Identity for a cart request: an explicit user ID wins, then an explicit or
    cookie guest session. With `response`, a new guest session cookie is issued
    when there is none.
    """
    if user_id:
        return CartKey(user_id=user_id)
    session_id = session_id or request.cookies.get(settings.guest_cookie_name)
    if not session_id and response is not None:
        session_id = generate_guest_session_id()
        response.set_cookie(
            settings.guest_cookie_name,
            session_id,
            max_age=settings.guest_cookie_max_age,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
        )
    if not session_id:
        raise ValidationError("userId or sessionId required")
    return CartKey(session_id=session_id)


ServicesDep = Annotated[Services, Depends(get_services)]

router = APIRouter()


# --- Health ---


@router.get("/")
def health_check():
    """Service liveness."""
    return {"success": True, "status": "ok", "service": "shopfront"}


# --- Product Endpoints ---


@router.get("/products")
async def list_products(
    services: ServicesDep,
    category: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
):
    products = await services.products.list_products(category=category, search=search, is_active=is_active)
    return {"success": True, "count": len(products), "products": [product_to_dict(p) for p in products]}


@router.get("/products/{product_id}")
async def get_product(product_id: str, services: ServicesDep):
    validate_id(product_id, "product")
    product = await services.products.get_product(product_id)
    return {"success": True, "product": product_to_dict(product)}


@router.post("/products", status_code=201)
async def create_product(
    services: ServicesDep,
    name: str = Form(...),
    description: str = Form(""),
    price: str = Form(...),
    category: str = Form(...),
    stock: int = Form(0),
    is_active: bool = Form(False, alias="isActive"),
    sku: Optional[str] = Form(None),
    images: list[UploadFile] = File(default=[]),
):
    """Create a product from a multipart form with up to five images."""
    saved = await services.images.save(images)
    try:
        product = await services.products.create_product(
            name=name,
            description=description,
            price=to_money(price, "price"),
            category=category,
            stock=stock,
            images=saved,
            is_active=is_active,
            sku=sku or None,
        )
    except ShopError:
        services.images.delete(saved)
        raise
    log.info("product_created", product_id=product.id, sku=product.sku)
    return {"success": True, "message": "Product created successfully", "product": product_to_dict(product)}


@router.put("/products/{product_id}")
async def replace_product(
    product_id: str,
    services: ServicesDep,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    stock: Optional[int] = Form(None),
    is_active: Optional[bool] = Form(None, alias="isActive"),
    sku: Optional[str] = Form(None),
    images: list[UploadFile] = File(default=[]),
):
    """
    Update a product. Uploading images replaces the existing ones, whose
    files are then deleted.
    """
    validate_id(product_id, "product")
    existing = await services.products.get_product(product_id)

    saved = await services.images.save(images)
    try:
        changes = ProductChanges(
            name=name,
            description=description,
            price=to_money(price, "price") if price not in (None, "") else None,
            category=category,
            stock=stock,
            is_active=is_active,
            sku=sku or None,
            images=saved or None,
        )
        product = await services.products.update_product(product_id, changes)
    except ShopError:
        services.images.delete(saved)
        raise
    if saved:
        services.images.delete(existing.images)
    return {"success": True, "message": "Product updated successfully", "product": product_to_dict(product)}


@router.patch("/products/{product_id}/status")
async def set_product_status(product_id: str, request: ProductStatusRequest, services: ServicesDep):
    validate_id(product_id, "product")
    if not isinstance(request.is_active, bool):
        raise ValidationError("isActive must be a boolean")
    product = await services.products.update_product(product_id, ProductChanges(is_active=request.is_active))
    state = "activated" if product.is_active else "deactivated"
    return {"success": True, "message": f"Product {state} successfully", "product": product_to_dict(product)}


@router.patch("/products/{product_id}")
async def patch_product(product_id: str, request: ProductPatchRequest, services: ServicesDep):
    """Partial update limited to isActive, stock and price."""
    validate_id(product_id, "product")
    changes = ProductChanges(
        is_active=request.is_active,
        stock=request.stock,
        price=to_money(request.price, "price") if request.price is not None else None,
    )
    if changes.is_empty():
        raise ValidationError("No valid fields to update")
    product = await services.products.update_product(product_id, changes)
    return {"success": True, "message": "Product updated successfully", "product": product_to_dict(product)}


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, services: ServicesDep):
    validate_id(product_id, "product")
    product = await services.products.delete_product(product_id)
    services.images.delete(product.images)
    log.info("product_deleted", product_id=product_id)
    return {"success": True, "message": "Product deleted successfully", "product": product_to_dict(product)}


# --- Cart Endpoints ---


@router.get("/cart")
async def get_cart(
    request: Request,
    response: Response,
    services: ServicesDep,
    user_id: Optional[str] = Query(default=None, alias="userId"),
):
    key = resolve_cart_key(request, services.settings, user_id, None, response)
    cart = await services.cart_service.get_cart(key)
    return {"success": True, "cart": cart_to_dict(cart)}


@router.post("/cart/add")
async def add_to_cart(body: CartAddRequest, request: Request, response: Response, services: ServicesDep):
    key = resolve_cart_key(request, services.settings, body.user_id, body.session_id, response)
    cart = await services.cart_service.add_item(key, body.product_id, body.quantity)
    return {"success": True, "message": "Item added to cart", "cart": cart_to_dict(cart)}


@router.put("/cart/update")
async def update_cart_item(body: CartUpdateRequest, request: Request, response: Response, services: ServicesDep):
    key = resolve_cart_key(request, services.settings, body.user_id, body.session_id, response)
    cart = await services.cart_service.update_item(key, body.product_id, body.quantity)
    message = "Item removed from cart" if body.quantity == 0 else "Cart updated"
    return {"success": True, "message": message, "cart": cart_to_dict(cart)}


@router.delete("/cart/remove")
async def remove_from_cart(body: CartRemoveRequest, request: Request, services: ServicesDep):
    key = resolve_cart_key(request, services.settings, body.user_id, body.session_id)
    cart = await services.cart_service.remove_item(key, body.product_id)
    return {"success": True, "message": "Item removed from cart", "cart": cart_to_dict(cart)}


@router.delete("/cart/clear")
async def clear_cart(request: Request, services: ServicesDep, body: Optional[CartIdentityRequest] = Body(default=None)):
    body = body or CartIdentityRequest()
    key = resolve_cart_key(request, services.settings, body.user_id, body.session_id)
    cart = await services.cart_service.clear_cart(key)
    return {"success": True, "message": "Cart cleared", "cart": cart_to_dict(cart)}


@router.post("/cart/merge")
async def merge_carts(body: CartMergeRequest, services: ServicesDep):
    cart = await services.cart_service.merge_carts(body.session_id, body.user_id)
    return {"success": True, "message": "Carts merged", "cart": cart_to_dict(cart)}


# --- Order Endpoints ---


@router.get("/orders")
async def list_orders(
    services: ServicesDep,
    status: Optional[OrderStatus] = Query(default=None),
    customer_id: Optional[str] = Query(default=None, alias="customerId"),
):
    orders = await services.orders.list_orders(
        status=status.value if status else None,
        customer_id=customer_id,
    )
    return {"success": True, "count": len(orders), "orders": [order_to_dict(o) for o in orders]}


@router.get("/orders/by-id/{order_id}")
async def get_order_by_id(order_id: str, services: ServicesDep):
    validate_id(order_id, "order")
    order = await services.orders.get_order(order_id)
    return {"success": True, "order": order_to_dict(order)}


@router.get("/orders/{order_id}")
async def get_order(order_id: str, services: ServicesDep):
    validate_id(order_id, "order")
    order = await services.orders.get_order(order_id)
    return {"success": True, "order": order_to_dict(order)}


@router.post("/orders", status_code=201)
async def create_order(body: DirectOrderRequest, request: Request, services: ServicesDep):
    """Place an order settled outside any processor; stock is taken immediately."""
    placement = PlacementRequest(
        items=[LineRequest(i.product_id, i.quantity) for i in body.items],
        shipping_address=_address(body.shipping_address),
        customer_info=CustomerInfo(**body.customer_info.model_dump()) if body.customer_info else None,
        payment_method=body.payment_method,
        shipping_fee=body.shipping_fee,
        tax=body.tax,
        notes=body.notes,
        customer_id=body.customer_id,
        session_id=request.cookies.get(services.settings.guest_cookie_name),
    )
    placed = await services.order_service.place_direct_order(placement)
    return {
        "success": True,
        "message": "Order created successfully",
        "order": order_to_dict(placed.order),
        "emailStatus": {
            name: email_result_to_dict(result) for name, result in placed.email_status.items()
        },
    }


@router.post("/orders/create-payment")
async def create_payment(body: PaymentOrderRequest, request: Request, services: ServicesDep):
    """
    Store a pending order and open a processor payment page for it.

    If opening the page fails the order stays pending/unpaid.
    """
    address = _address(body.shipping_address)
    customer_info = None
    if body.contact_email:
        customer_info = CustomerInfo(
            name=address.full_name if address else "",
            email=body.contact_email,
            phone=address.phone if address else None,
        )
    placement = PlacementRequest(
        items=[LineRequest(i.product_id, i.quantity) for i in body.items],
        shipping_address=address,
        customer_info=customer_info,
        payment_method=body.payment_method,
        shipping_fee=body.shipping,
        tax=body.tax,
        notes=body.order_notes,
        customer_id=body.user_id,
        session_id=request.cookies.get(services.settings.guest_cookie_name),
    )
    order = await services.order_service.place_pending_order(placement)
    session = await services.payments.open_session(order)

    if session.processor == PaymentMethod.STRIPE.value:
        return {
            "success": True,
            "stripeUrl": session.redirect_url,
            "orderId": order.id,
            "sessionId": session.reference,
        }
    return {
        "success": True,
        "paypalUrl": session.redirect_url,
        "orderId": order.id,
        "paypalOrderId": session.reference,
    }


@router.put("/orders/{order_id}")
async def update_order(order_id: str, body: OrderUpdateRequest, services: ServicesDep):
    validate_id(order_id, "order")
    order = await services.orders.update_order(
        order_id,
        status=body.status,
        payment_status=body.payment_status,
        tracking_number=body.tracking_number,
    )
    return {"success": True, "message": "Order updated successfully", "order": order_to_dict(order)}


# --- Payment Callbacks ---


@router.post("/payment/stripe-webhook")
async def stripe_webhook(request: Request, services: ServicesDep):
    """Raw body in, signature checked before anything is parsed."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    return await services.payments.handle_stripe_webhook(payload, signature)


@router.get("/payment/paypal-success")
async def paypal_success(
    services: ServicesDep,
    order_id: Optional[str] = Query(default=None, alias="orderId"),
    token: Optional[str] = Query(default=None),
):
    url = await services.payments.handle_paypal_return(order_id, token)
    return RedirectResponse(url, status_code=302)


# --- User Endpoints ---


@router.post("/register", status_code=201)
async def register(body: RegisterRequest, services: ServicesDep):
    user = await services.users.create_user(
        name=body.name,
        email=body.email,
        password=body.password,
        phone=body.phone,
    )
    log.info("user_registered", user_id=user.id)
    return {"success": True, "message": "User registered successfully", "user": user_to_dict(user)}


@router.post("/login")
async def login(body: LoginRequest, services: ServicesDep):
    user = await services.users.authenticate(body.email, body.password)
    # Opaque token; sessions are not tracked server-side.
    return {
        "success": True,
        "message": "Login successful",
        "token": secrets.token_hex(32),
        "user": user_to_dict(user),
    }


@router.get("/users")
async def list_users(services: ServicesDep):
    users = await services.users.list_users()
    return {"success": True, "count": len(users), "users": [user_to_dict(u) for u in users]}


@router.get("/users/{user_id}")
async def get_user(user_id: str, services: ServicesDep):
    validate_id(user_id, "user")
    user = await services.users.get_user(user_id)
    return {"success": True, "user": user_to_dict(user)}


# --- Admin Endpoints ---


@router.get("/stats")
async def get_stats(services: ServicesDep):
    revenue = await services.orders.paid_revenue()
    return {
        "success": True,
        "stats": {
            "totalOrders": await services.orders.count_orders(),
            "pendingOrders": await services.orders.count_orders(status=OrderStatus.PENDING.value),
            "totalProducts": await services.products.count_products(),
            "totalCustomers": await services.users.count_users(role="customer"),
            "totalRevenue": float(revenue),
        },
    }


@router.get("/test-email")
async def test_email(services: ServicesDep, email: Optional[str] = Query(default=None)):
    to = email or services.settings.admin_email
    if not to:
        raise ValidationError("email is required")
    result = await services.notifier.send_test_email(to)
    if not result.sent:
        return JSONResponse(status_code=500, content={"success": False, "message": result.reason})
    return {"success": True, "message": f"Test email sent to {to}", "result": email_result_to_dict(result)}


# --- Exception Handlers ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    InvalidIdentifierError: 400,
    ProductUnavailableError: 400,
    InsufficientStockError: 400,
    UnsupportedPaymentMethodError: 400,
    WebhookSignatureError: 400,
    UploadError: 400,
    AuthenticationError: 401,
    NotFoundError: 404,
    ProductNotFoundError: 404,
    OrderNotFoundError: 404,
    CartNotFoundError: 404,
    CartItemNotFoundError: 404,
    UserNotFoundError: 404,
    DuplicateError: 409,
    InvalidTransitionError: 409,
    LockTimeoutError: 500,
    PaymentProcessorError: 500,
    PaymentNotConfiguredError: 500,
    OrderNumberExhaustedError: 500,
}


def _error(status_code: int, message: str, error_type: Optional[str] = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message}
    if error_type:
        content["error_type"] = error_type
    return JSONResponse(status_code=status_code, content=content)


async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    """Map ShopError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        log.error("request_failed", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
    return _error(status_code, str(exc), type(exc).__name__)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if not errors:
        return _error(400, "Invalid request", "ValidationError")
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return _error(400, message, "ValidationError")


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return _error(404, "Endpoint not found")
    return _error(exc.status_code, str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("unhandled_error", path=request.url.path)
    return _error(500, "Internal server error")


# --- App Factory ---


def create_app(
    settings: Optional[Settings] = None,
    *,
    stripe_gateway: Optional[CardGateway] = None,
    paypal_gateway: Optional[WalletGateway] = None,
    notifier: Optional[Notifier] = None,
    gate: Optional[KeyedGate] = None,
) -> FastAPI:
    """
    Build the application.

    Processor and mail clients are constructed here from `settings` unless
    supplied, and shared by every request through `app.state.services`.
    """
    settings = settings or load_settings()
    session_factory, engine = create_session_factory(settings.database_url)
    owned_clients = []

    if stripe_gateway is None:
        stripe_gateway = StripeGateway(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            frontend_url=settings.frontend_url,
            currency=settings.currency,
        )
    if paypal_gateway is None:
        paypal_gateway = PayPalGateway(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            backend_url=settings.backend_url,
            frontend_url=settings.frontend_url,
            mode=settings.paypal_mode,
            brand_name=settings.paypal_brand_name,
            currency=settings.currency,
        )
        owned_clients.append(paypal_gateway)
    if notifier is None:
        notifier = MailjetNotifier(
            api_key=settings.mailjet_api_key,
            secret_key=settings.mailjet_secret_key,
            from_email=settings.mailjet_from_email,
            from_name=settings.mailjet_from_name,
            admin_email=settings.admin_email,
        )
        owned_clients.append(notifier)
    if gate is None:
        gate = InMemoryKeyedGate(
            poll_interval=settings.cart_lock_poll_interval,
            default_max_wait=settings.cart_lock_max_wait,
        )

    products = ProductStore(session_factory)
    carts = CartStore(session_factory)
    orders = OrderStore(session_factory)
    users = UserStore(session_factory)
    images = ImageStore(
        settings.product_uploads_dir,
        max_bytes=settings.max_image_bytes,
        max_files=settings.max_images,
    )
    images.ensure_directory()

    services = Services(
        settings=settings,
        engine=engine,
        products=products,
        carts=carts,
        orders=orders,
        users=users,
        cart_service=CartService(carts, products, gate, max_wait=settings.cart_lock_max_wait),
        order_service=OrderService(orders, products, notifier),
        payments=PaymentOrchestrator(
            session_factory,
            orders,
            notifier,
            frontend_url=settings.frontend_url,
            stripe_gateway=stripe_gateway,
            paypal_gateway=paypal_gateway,
        ),
        notifier=notifier,
        images=images,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await create_tables(engine)
        if settings.admin_seed_email and settings.admin_seed_password:
            await seed_admin(users, settings.admin_seed_email, settings.admin_seed_password)
        log.info("startup", database=engine.url.render_as_string(hide_password=True))
        yield
        for owned in owned_clients:
            await owned.aclose()
        await engine.dispose()

    app = FastAPI(
        title="shopfront API",
        description="Catalog, carts, orders and payment reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router)
    app.mount("/uploads", StaticFiles(directory=settings.uploads_dir, check_dir=False), name="uploads")
    return app


async def seed_admin(users: UserStore, email: str, password: str) -> Optional[User]:
    """Create the admin account unless that email is already registered."""
    if await users.find_by_email(email):
        return None
    user = await users.create_user(name="Admin", email=email, password=password, role="admin")
    log.info("admin_seeded", user_id=user.id)
    return user

"""
Checkout: turn a cart and shipping details into a persisted order.

Validation is fail-fast and happens entirely before the first write.
After the order is stored, the address-book update and the emails are
best-effort: their failures are logged and the checkout still succeeds.
"""
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from numbers import Real
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from database import now_utc
from errors import DuplicateOrderId, InvalidCart, InvalidPricing, MissingShippingField, Unauthorized, UserNotFound, ValidationError
from order_ids import ORDER_ID_MAX_ATTEMPTS, generate_order_id
from order_status import PAYMENT_METHODS
from schemas import Address, CartItem, CheckoutRequest, CustomerSnapshot, Order, OrderItem, Pricing, ShippingInfo

logger = structlog.get_logger(__name__)

REQUIRED_SHIPPING_FIELDS = ["fullName", "phone", "address", "city", "state", "zipCode", "country"]
CURRENCY = "INR"
ESTIMATED_DELIVERY_DAYS = 7
CENTS = Decimal("0.01")
# Client totals are rounded from binary floats, so ties may land a cent either way
TOLERANCE = Decimal("0.01")


@dataclass
class Identity:
    """Authenticated caller, as carried by the bearer token."""
    user_id: str
    email: str


@dataclass
class CheckoutResult:
    order_id: str
    internal_id: str
    total_amount: float
    order: Dict[str, Any]

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Order placed successfully",
            "order": {"order_id": self.order_id, "_id": self.internal_id, "total_amount": self.total_amount},
        }


def _decimal(value: Any) -> Decimal:
    return Decimal(str(value))


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def unit_price(price: float, discount: Optional[float]) -> Decimal:
    """Discounted unit price, unrounded."""
    price = _decimal(price)
    if not discount:
        return price
    return price - price * _decimal(discount) / 100


def final_unit_price(price: float, discount: Optional[float]) -> float:
    return float(to_cents(unit_price(price, discount)))


def cart_subtotal(items: List[OrderItem]) -> Decimal:
    """Sum of unrounded line values, rounded once half-up like the storefront cart."""
    raw = sum((unit_price(i.price, i.discount) * i.quantity for i in items), Decimal(0))
    return to_cents(raw)


def _parse_cart(cart_items: Any) -> List[CartItem]:
    if not isinstance(cart_items, list) or not cart_items:
        raise InvalidCart("Cart items are required")
    parsed = []
    for index, raw in enumerate(cart_items):
        try:
            parsed.append(CartItem.model_validate(raw))
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            where = ".".join(str(p) for p in first["loc"])
            raise InvalidCart(f"Invalid cart item {index}: {where} {first['msg']}") from exc
    return parsed


def _shipping_text(details: Dict[str, Any], field: str) -> str:
    value = details.get(field)
    return value.strip() if isinstance(value, str) else ""


def _check_shipping(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not details:
        raise ValidationError("Shipping details are required")
    for field in REQUIRED_SHIPPING_FIELDS:
        if not _shipping_text(details, field):
            raise MissingShippingField(field)
    return details


def _amount(value: Any, name: str, default: Decimal = Decimal(0)) -> Decimal:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidPricing(f"Invalid {name}")
    if value < 0:
        raise InvalidPricing(f"Invalid {name}")
    return _decimal(value)


def build_line_items(cart: List[CartItem]) -> List[OrderItem]:
    items = []
    for entry in cart:
        product = entry.product
        unit = unit_price(product.price, product.discount)
        items.append(
            OrderItem(
                product_id=product.id,
                product_name=product.name,
                product_slug=product.slug_text(),
                quantity=entry.quantity,
                price=product.price,
                discount=product.discount or 0,
                final_price=float(to_cents(unit)),
                line_total=float(to_cents(unit * entry.quantity)),
            )
        )
    return items


def _price_order(payload: CheckoutRequest, items: List[OrderItem]) -> Pricing:
    """
    Reconcile the declared amounts against the cart.

    The subtotal is recomputed here; the declared subtotal (when sent) and
    the declared total must agree with it to within a cent. The declared
    amounts are what gets stored, so the order shows the customer the same
    figures the storefront did.
    """
    total = payload.total_price
    if isinstance(total, bool) or not isinstance(total, Real) or total <= 0:
        raise InvalidPricing("Invalid total price")

    tax = _amount(payload.tax, "tax")
    shipping = _amount(payload.shipping, "shipping")
    discount = _amount(payload.discount, "discount")
    subtotal = cart_subtotal(items)

    if payload.subtotal is not None:
        declared_subtotal = _amount(payload.subtotal, "subtotal")
        if abs(declared_subtotal - subtotal) > TOLERANCE:
            raise InvalidPricing(f"Subtotal {payload.subtotal} does not match cart subtotal {subtotal}")
        subtotal = declared_subtotal

    declared_total = _decimal(total)
    expected = subtotal + tax + shipping - discount
    if abs(declared_total - expected) > TOLERANCE:
        raise InvalidPricing(f"Total price {total} does not match order pricing {to_cents(expected)}")

    return Pricing(
        subtotal=float(subtotal),
        tax=float(tax),
        shipping=float(shipping),
        discount=float(discount),
        total_amount=float(declared_total),
        currency=CURRENCY,
    )


def build_order_document(order_id: str, user: Dict[str, Any], identity: Identity, details: Dict[str, Any], items: List[OrderItem], pricing: Pricing, payment_method: str) -> Dict[str, Any]:
    now = now_utc()
    notes = _shipping_text(details, "notes")
    customer = CustomerSnapshot(
        full_name=_shipping_text(details, "fullName"),
        email=_shipping_text(details, "email") or identity.email,
        phone=_shipping_text(details, "phone"),
        address=_shipping_text(details, "address"),
        city=_shipping_text(details, "city"),
        state=_shipping_text(details, "state"),
        zip_code=_shipping_text(details, "zipCode"),
        country=_shipping_text(details, "country"),
        landmark=_shipping_text(details, "landmark"),
        address_type=_shipping_text(details, "addressType") or "residential",
    )
    order = Order(
        order_id=order_id,
        user_id=str(user["_id"]),
        customer=customer,
        items=items,
        pricing=pricing,
        status="pending",
        payment_method=payment_method,
        payment_status="pending",
        shipping=ShippingInfo(
            method="standard",
            estimated_delivery=now + timedelta(days=ESTIMATED_DELIVERY_DAYS),
            shipping_notes=notes,
        ),
        timeline=[
            {
                "status": "Order Placed",
                "timestamp": now,
                "description": "Order has been placed successfully",
                "location": "Online Store",
            }
        ],
        notes=notes,
        created_at=now,
        updated_at=now,
        version=0,
    )
    return order.model_dump()


def address_from_snapshot(customer: Dict[str, Any]) -> Address:
    return Address(
        label="Home",
        full_name=customer["full_name"],
        phone=customer["phone"],
        street=customer["address"],
        city=customer["city"],
        state=customer["state"],
        zip_code=customer["zip_code"],
        country=customer["country"],
        landmark=customer.get("landmark", ""),
        address_type=customer.get("address_type", "residential"),
    )


def place_order(identity: Optional[Identity], payload: CheckoutRequest, orders, users, notifier) -> CheckoutResult:
    if identity is None or not identity.email:
        raise Unauthorized()

    cart = _parse_cart(payload.cart_items)
    details = _check_shipping(payload.shipping_details)

    payment_method = payload.payment_method or "cod"
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method: {payment_method}")

    items = build_line_items(cart)
    pricing = _price_order(payload, items)

    user = users.get_by_id(identity.user_id)
    if user is None or user.get("email") != identity.email:
        raise UserNotFound(identity.email)

    for attempt in range(1, ORDER_ID_MAX_ATTEMPTS + 1):
        document = build_order_document(generate_order_id(), user, identity, details, items, pricing, payment_method)
        try:
            internal_id, stored = orders.create(document)
            break
        except DuplicateOrderId:
            if attempt == ORDER_ID_MAX_ATTEMPTS:
                raise

    logger.info(
        "order_created",
        order_id=stored["order_id"],
        internal_id=internal_id,
        user_id=str(user["_id"]),
        items=len(items),
        total_amount=pricing.total_amount,
    )

    _remember_address(users, user, stored)
    _send_confirmation(notifier, identity, stored)

    return CheckoutResult(order_id=stored["order_id"], internal_id=internal_id, total_amount=pricing.total_amount, order=stored)


def _remember_address(users, user: Dict[str, Any], order: Dict[str, Any]) -> None:
    try:
        added = users.add_address(user, address_from_snapshot(order["customer"]))
    except Exception:
        logger.exception("address_book_update_failed", order_id=order["order_id"], user_id=str(user["_id"]))
        return
    logger.info("address_book_checked", order_id=order["order_id"], added=added)


def _send_confirmation(notifier, identity: Identity, order: Dict[str, Any]) -> None:
    try:
        result = notifier.send_order_confirmation(identity.email, order["customer"]["full_name"], order)
    except Exception:
        logger.exception("order_confirmation_failed", order_id=order["order_id"])
        return
    if result.success:
        logger.info("order_confirmation_sent", order_id=order["order_id"], message=result.message)
    else:
        logger.warning("order_confirmation_failed", order_id=order["order_id"], message=result.message)

"""
Database Schemas for the Storefront Order Service

Each Pydantic model represents a collection (or an embedded part of one)
in MongoDB. Documents are stored with snake_case field names; the HTTP
API speaks camelCase through the aliases generated here.

We store:
- User (includes the saved address book)
- Order (customer snapshot, line items, pricing, shipping, timeline)
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------

class Address(ApiModel):
    """Saved shipping address (snapshot copied from a checkout)."""
    is_default: bool = Field(False, description="Default address")
    label: str = Field("Home", description="e.g., Home, Office")
    full_name: str
    phone: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str
    landmark: str = ""
    address_type: str = Field("residential", description="residential | commercial")

    def same_place(self, other: "Address") -> bool:
        return (
            self.street == other.street
            and self.city == other.city
            and self.state == other.state
            and self.zip_code == other.zip_code
        )


class User(ApiModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")

    # Auth fields (stored in DB, but not returned in public responses)
    password_hash: Optional[str] = Field(None, description="Hashed password")

    phone: Optional[str] = Field(None, description="Contact phone")
    is_active: bool = Field(True, description="Whether user is active")
    is_admin: bool = Field(False, description="Admin flag")

    addresses: List[Address] = Field(default_factory=list)


# ----------------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------------

class CustomerSnapshot(ApiModel):
    """Shipping contact details frozen at order time."""
    full_name: str
    email: str
    phone: str
    address: str
    city: str
    state: str
    zip_code: str
    country: str
    landmark: str = ""
    address_type: str = "residential"


class OrderItem(ApiModel):
    product_id: str = Field(..., description="Product id as string")
    product_name: str
    product_slug: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Original unit price")
    discount: float = Field(0, ge=0, le=100, description="Discount percentage")
    final_price: float = Field(..., ge=0, description="Unit price after discount")
    line_total: float = Field(..., ge=0, description="final_price x quantity")


class Pricing(ApiModel):
    subtotal: float = Field(..., ge=0)
    tax: float = Field(0, ge=0)
    shipping: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total_amount: float = Field(..., gt=0)
    currency: str = "INR"


class ShippingInfo(ApiModel):
    method: str = Field("standard", description="standard | express | same_day | next_day")
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    shipping_notes: str = ""


class TimelineEntry(ApiModel):
    status: str
    timestamp: datetime
    description: str
    location: Optional[str] = None


class Order(ApiModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    order_id: str = Field(..., description="Human-facing order id, immutable once set")
    user_id: str
    customer: CustomerSnapshot
    items: List[OrderItem]
    pricing: Pricing
    status: str = Field("pending", description="see order_status.ORDER_STATUSES")
    payment_method: str = Field("cod", description="see order_status.PAYMENT_METHODS")
    payment_status: str = Field("pending", description="see order_status.PAYMENT_STATUSES")
    shipping: ShippingInfo = Field(default_factory=ShippingInfo)
    timeline: List[TimelineEntry] = Field(default_factory=list)
    notes: str = ""
    created_at: datetime
    updated_at: datetime
    version: int = Field(0, ge=0, description="Bumped on every status write")


class OrderRecord(Order):
    """An order as read back from the store, with its internal id."""
    id: str = Field(..., alias="_id")

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, ObjectId) else value


# ----------------------------------------------------------------------------
# Request / response bodies
# ----------------------------------------------------------------------------

class CartProduct(ApiModel):
    id: str = Field(..., alias="_id", min_length=1)
    name: str = Field(..., min_length=1)
    slug: Optional[Any] = None
    price: float = Field(..., ge=0)
    discount: Optional[float] = Field(None, ge=0, le=100)

    def slug_text(self) -> str:
        # Slugs arrive either as plain strings or as {"current": "..."}
        if isinstance(self.slug, dict):
            return str(self.slug.get("current") or self.id)
        return str(self.slug) if self.slug else self.id


class CartItem(ApiModel):
    product: CartProduct
    quantity: int = Field(..., ge=1, strict=True)


class CheckoutRequest(ApiModel):
    """Checkout body; every field is checked by the orchestrator, not here."""
    cart_items: Optional[Any] = None
    shipping_details: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None
    total_price: Optional[Any] = None
    subtotal: Optional[Any] = None
    tax: Optional[Any] = None
    shipping: Optional[Any] = None
    discount: Optional[Any] = None


class CheckoutOrderSummary(ApiModel):
    order_id: str
    id: str = Field(..., alias="_id")
    total_amount: float


class CheckoutResponse(ApiModel):
    success: bool = True
    message: str = "Order placed successfully"
    order: CheckoutOrderSummary


class StatusUpdateRequest(ApiModel):
    order_id: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    expected_version: Optional[int] = None


class StatusUpdateResponse(ApiModel):
    success: bool = True
    order_id: str
    status: str
    payment_status: str
    payment_status_changed: bool = False
    updated_at: datetime
    version: int


class OrderListResponse(ApiModel):
    success: bool = True
    orders: List[OrderRecord]
    count: int

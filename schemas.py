"""
Database Schemas for the Storefront

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class Product -> collection "product"

Documents are stored with snake_case field names. Every schema also carries a
camelCase alias, which is what the HTTP layer reads and writes.
"""
from typing import List, Optional, Literal, Tuple
from datetime import datetime, timezone

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator, model_validator
from pydantic.alias_generators import to_camel


ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "returned")
PAYMENT_STATUSES = ("pending", "processing", "completed", "failed", "refunded")
PAYMENT_METHODS = ("stripe", "razorpay", "cod", "bank_transfer")
SHIPPING_METHODS = ("standard", "express", "overnight")

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "returned"]
PaymentStatus = Literal["pending", "processing", "completed", "failed", "refunded"]
PaymentMethod = Literal["stripe", "razorpay", "cod", "bank_transfer"]
ShippingMethod = Literal["standard", "express", "overnight"]
DiscountType = Literal["percentage", "fixed"]


class Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# Core domain models

class Address(Schema):
    type: Literal["home", "work", "other"] = "home"
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "India"
    phone: str


class User(Schema):
    id: Optional[str] = None
    name: str
    email: EmailStr
    hashed_password: str
    is_active: bool = True
    is_admin: bool = False
    addresses: List[Address] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class Category(Schema):
    id: Optional[str] = None
    name: str = Field(..., max_length=50)
    slug: str
    description: Optional[str] = Field(None, max_length=200)
    parent_id: Optional[str] = None
    level: int = 0
    is_active: bool = True
    is_featured: bool = False
    sort_order: int = 0

    @field_validator("slug")
    @classmethod
    def lowercase_slug(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def set_level(self):
        self.level = 1 if self.parent_id else 0
        return self


class Variant(Schema):
    name: str
    value: str
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = None


class VariantChoice(Schema):
    """The variant a shopper picked, as snapshotted on a cart or order line."""
    name: str
    value: str
    price: Optional[float] = Field(None, ge=0)

    def key(self) -> Tuple[str, str]:
        return (self.name, self.value)


class BundleItem(Schema):
    id: Optional[str] = Field(default_factory=lambda: str(ObjectId()))
    category: str
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    price: float = Field(..., ge=0)

    @property
    def identifier(self) -> str:
        return self.id or f"{self.category}-{self.name}"


class Product(Schema):
    id: Optional[str] = None
    name: str = Field(..., max_length=100)
    slug: Optional[str] = None
    description: str = ""
    short_description: Optional[str] = Field(None, max_length=200)
    price: Optional[float] = Field(None, ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    brand: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    sku: Optional[str] = None
    variants: List[Variant] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    stock: int = Field(0, ge=0)
    sold_count: int = 0
    is_active: bool = True
    is_featured: bool = False
    has_bundle_items: bool = False
    bundle_items: List[BundleItem] = Field(default_factory=list)
    bundle_size: Optional[int] = Field(None, ge=1, le=16)
    bundle_description: Optional[str] = None
    bundle_instructions: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_pricing(self):
        if not self.has_bundle_items and self.price is None:
            raise ValueError("Price is required for products without bundle items")
        if self.has_bundle_items and not self.bundle_size:
            raise ValueError("Bundle size is required for products with bundle items")
        return self

    def find_variant(self, name: str, value: str) -> Optional[Variant]:
        for v in self.variants:
            if v.name == name and v.value == value:
                return v
        return None

    def bundle_item_map(self):
        return {item.identifier: item for item in self.bundle_items}


class CartItem(Schema):
    product_id: str
    quantity: int = Field(1, ge=1)
    variant: Optional[VariantChoice] = None
    price: float = Field(..., ge=0, description="Unit price resolved when the line was added")
    selected_bundle_items: List[str] = Field(default_factory=list)
    added_at: Optional[datetime] = None

    def line_key(self):
        return line_key(self.product_id, self.variant, self.selected_bundle_items)


def line_key(product_id: str, variant: Optional[VariantChoice] = None, selected_bundle_items=None):
    """Identity of a cart line: product, variant and the sorted bundle selection."""
    return (
        str(product_id),
        variant.key() if variant else None,
        tuple(sorted(selected_bundle_items or ())),
    )


class AppliedCoupon(Schema):
    code: str
    discount_amount: float = Field(..., ge=0)
    discount_type: DiscountType = "percentage"


class Cart(Schema):
    id: Optional[str] = None
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    coupon: Optional[AppliedCoupon] = None
    last_updated: Optional[datetime] = None


class CartSummary(Schema):
    item_count: int
    subtotal: float
    discount: float
    total: float


class CouponUsage(Schema):
    user_id: str
    used_at: datetime
    order_id: Optional[str] = None


class Coupon(Schema):
    id: Optional[str] = None
    code: str = Field(..., min_length=3, max_length=20)
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    type: DiscountType
    value: float = Field(..., ge=0)
    max_discount: Optional[float] = Field(None, ge=0)
    min_order_amount: float = Field(0, ge=0)
    max_uses: Optional[int] = Field(None, ge=0)
    used_count: int = 0
    user_limit: Optional[int] = Field(None, ge=1)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    used_by: List[CouponUsage] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("valid_from", "valid_until")
    @classmethod
    def naive_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode="after")
    def check_rules(self):
        if self.valid_from >= self.valid_until:
            raise ValueError("Valid from date must be before valid until date")
        if self.type == "percentage" and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100%")
        return self


class OrderItem(Schema):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    variant: Optional[VariantChoice] = None
    selected_bundle_items: List[str] = Field(default_factory=list)
    image: Optional[str] = None
    sku: Optional[str] = None


class StatusEntry(Schema):
    status: OrderStatus
    timestamp: datetime
    note: str = ""
    updated_by: Optional[str] = None


class OrderCoupon(Schema):
    code: str
    discount_amount: float


class Order(Schema):
    id: Optional[str] = None
    order_number: str
    user_id: str
    items: List[OrderItem]
    shipping_address: Address
    billing_address: Address
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    order_status: OrderStatus = "pending"
    status_history: List[StatusEntry] = Field(default_factory=list)
    subtotal: float
    tax: float = 0
    shipping_cost: float = 0
    discount: float = 0
    coupon: Optional[OrderCoupon] = None
    total: float
    currency: str = "INR"
    shipping_method: ShippingMethod = "standard"
    notes: Optional[str] = None
    is_gift: bool = False
    gift_message: Optional[str] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderStats(Schema):
    total_orders: int = 0
    total_revenue: float = 0
    average_order_value: float = 0
    pending_orders: int = 0
    completed_orders: int = 0


class WishlistItem(Schema):
    product_id: str
    added_at: Optional[datetime] = None


class Wishlist(Schema):
    id: Optional[str] = None
    user_id: str
    items: List[WishlistItem] = Field(default_factory=list)
    last_updated: Optional[datetime] = None

    def has_item(self, product_id: str) -> bool:
        return any(it.product_id == product_id for it in self.items)


class Pagination(Schema):
    current_page: int
    total_pages: int
    total: int
    has_next_page: bool
    has_prev_page: bool

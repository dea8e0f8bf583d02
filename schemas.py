from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from enum import Enum


# ─────────────── Enums ───────────────

class DiscountType(str, Enum):
    percentage = "percentage"
    fixed = "fixed"


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    returned = "returned"


def _non_negative(v: Optional[float]) -> Optional[float]:
    if v is not None and v < 0:
        raise ValueError("Must not be negative")
    return v


def _to_utc(v: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes are shifted to UTC; naive ones are taken as UTC already."""
    if v is None or v.tzinfo is None:
        return v
    return v.astimezone(timezone.utc)


# ─────────────── Shipping settings ───────────────

class ShippingSettings(BaseModel):
    """Effective shipping policy, resolved once from the active zone."""
    model_config = ConfigDict(frozen=True)

    free_shipping_threshold: float  # 0 => no threshold-based free shipping
    distance_free_radius: float     # km
    per_km_rate: float              # ₹ per km beyond the free radius
    base_rate: float                # ₹ flat charge below the threshold
    max_shipping_distance: Optional[float] = None  # km, distances above are clamped


# ─────────────── Shipping zone Request / Response ───────────────

class ShippingZoneCreate(BaseModel):
    name: str
    base_rate: Optional[float] = None
    per_km_rate: Optional[float] = None
    free_shipping_threshold: Optional[float] = None
    distance_free_radius: Optional[float] = None
    max_shipping_distance: Optional[float] = None
    is_active: bool = False

    @field_validator(
        "base_rate", "per_km_rate", "free_shipping_threshold",
        "distance_free_radius", "max_shipping_distance",
    )
    @classmethod
    def must_not_be_negative(cls, v: Optional[float]) -> Optional[float]:
        return _non_negative(v)


class ShippingZoneUpdate(BaseModel):
    name: Optional[str] = None
    base_rate: Optional[float] = None
    per_km_rate: Optional[float] = None
    free_shipping_threshold: Optional[float] = None
    distance_free_radius: Optional[float] = None
    max_shipping_distance: Optional[float] = None
    is_active: Optional[bool] = None

    @field_validator(
        "base_rate", "per_km_rate", "free_shipping_threshold",
        "distance_free_radius", "max_shipping_distance",
    )
    @classmethod
    def must_not_be_negative(cls, v: Optional[float]) -> Optional[float]:
        return _non_negative(v)


class ShippingZoneResponse(BaseModel):
    id: int
    name: str
    base_rate: Optional[float] = None
    per_km_rate: Optional[float] = None
    free_shipping_threshold: Optional[float] = None
    distance_free_radius: Optional[float] = None
    max_shipping_distance: Optional[float] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ─────────────── Shipping calculation ───────────────

class ShippingBreakdown(BaseModel):
    """Itemized shipping computation, snapshotted onto the order."""
    base_rate: float
    base_rate_applied: bool
    distance_km: float
    distance_free_radius: float
    distance_charged: float
    per_km_rate: float
    distance_charge: float
    is_free_shipping: bool
    order_value: float
    free_shipping_threshold: float
    total_shipping_charge: float


class ShippingResult(BaseModel):
    amount: float
    breakdown: ShippingBreakdown


class ShippingQuoteRequest(BaseModel):
    cart_total: float
    distance_km: float = 0


# ─────────────── Coupon Request / Response ───────────────

class CouponCreate(BaseModel):
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float
    minimum_order_amount: Optional[float] = None
    maximum_discount: Optional[float] = None
    usage_limit: Optional[int] = None
    per_user_limit: Optional[int] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Coupon code cannot be empty")
        return v

    @field_validator("discount_value")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Must be a positive number")
        return v

    @field_validator("usage_limit", "per_user_limit")
    @classmethod
    def limit_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("Limit must be positive")
        return v

    @field_validator("minimum_order_amount", "maximum_discount")
    @classmethod
    def amount_not_negative(cls, v: Optional[float]) -> Optional[float]:
        return _non_negative(v)

    @field_validator("starts_at", "expires_at")
    @classmethod
    def window_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(v)

    @model_validator(mode="after")
    def percentage_max_100(self) -> "CouponCreate":
        if self.discount_type == DiscountType.percentage and self.discount_value > 100:
            raise ValueError("Discount percentage cannot exceed 100")
        return self


class CouponUpdate(BaseModel):
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = None
    minimum_order_amount: Optional[float] = None
    maximum_discount: Optional[float] = None
    usage_limit: Optional[int] = None
    per_user_limit: Optional[int] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None

    @field_validator("discount_value")
    @classmethod
    def must_be_positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("Must be a positive number")
        return v

    @field_validator("usage_limit", "per_user_limit")
    @classmethod
    def limit_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("Limit must be positive")
        return v

    @field_validator("minimum_order_amount", "maximum_discount")
    @classmethod
    def amount_not_negative(cls, v: Optional[float]) -> Optional[float]:
        return _non_negative(v)

    @field_validator("starts_at", "expires_at")
    @classmethod
    def window_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(v)


class CouponResponse(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float
    minimum_order_amount: Optional[float] = None
    maximum_discount: Optional[float] = None
    usage_limit: Optional[int] = None
    used_count: int
    per_user_limit: Optional[int] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CouponValidateRequest(BaseModel):
    code: str
    order_subtotal: float
    user_id: Optional[str] = None


class CouponValidation(BaseModel):
    valid: bool
    discount_amount: float = 0.0
    message: str


# ─────────────── Product schemas ───────────────

class ProductCreate(BaseModel):
    name: str
    sku: Optional[str] = None
    price: float  # GST-inclusive
    stock_quantity: int = 0
    is_active: bool = True

    @field_validator("price")
    @classmethod
    def price_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Price must be positive")
        return v

    @field_validator("stock_quantity")
    @classmethod
    def stock_not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Stock cannot be negative")
        return v


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[float] = None
    stock_quantity: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("price")
    @classmethod
    def price_positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("Price must be positive")
        return v


class ProductResponse(BaseModel):
    id: int
    name: str
    sku: Optional[str] = None
    price: float
    stock_quantity: int
    is_active: bool

    model_config = {"from_attributes": True}


# ─────────────── Cart / checkout schemas ───────────────

class CartItem(BaseModel):
    product_id: int
    quantity: int

    @field_validator("quantity")
    @classmethod
    def qty_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be positive")
        return v


class ShippingAddress(BaseModel):
    full_name: str
    phone: str
    address_line_1: str
    address_line_2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str = "India"


class CheckoutQuoteRequest(BaseModel):
    items: List[CartItem]
    delivery_distance: float = 0
    coupon_code: Optional[str] = None
    user_id: Optional[str] = None

    @field_validator("items")
    @classmethod
    def not_empty(cls, v: list) -> list:
        if not v:
            raise ValueError("Cart cannot be empty")
        return v


class OrderItemSnapshot(BaseModel):
    product_id: Optional[int] = None
    product_name: str
    product_sku: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float


class OrderSnapshot(BaseModel):
    """Everything persisted with an order so later renders need no re-derivation."""
    subtotal: float
    tax_amount: float
    shipping_amount: float
    discount_amount: float
    total_amount: float
    coupon_code: Optional[str] = None
    shipping_breakdown: ShippingBreakdown


class AssembledOrder(BaseModel):
    total_amount: float
    snapshot: OrderSnapshot


class CheckoutQuote(BaseModel):
    items: List[OrderItemSnapshot]
    subtotal: float
    tax_amount: float
    gst_percentage: float
    shipping_amount: float
    discount_amount: float
    total_amount: float
    shipping_breakdown: ShippingBreakdown
    coupon: Optional[CouponValidation] = None
    display_total: str


# ─────────────── Order schemas ───────────────

class OrderCreate(BaseModel):
    items: List[CartItem]
    shipping_address: ShippingAddress
    delivery_distance: float = 0
    discount_amount: float = 0
    coupon_code: Optional[str] = None
    customer_gst_number: Optional[str] = None
    guest_email: Optional[str] = None
    user_id: Optional[str] = None

    @field_validator("items")
    @classmethod
    def not_empty(cls, v: list) -> list:
        if not v:
            raise ValueError("Order must contain at least one item")
        return v

    @field_validator("customer_gst_number")
    @classmethod
    def normalize_gst_number(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None

    @model_validator(mode="after")
    def requires_customer(self) -> "OrderCreate":
        if not self.user_id and not (self.guest_email and self.guest_email.strip()):
            raise ValueError("Either user_id or guest_email is required")
        return self


class OrderItemResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    product_name: str
    product_sku: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    status: OrderStatus
    payment_status: str
    subtotal: float
    tax_amount: float
    shipping_amount: float
    discount_amount: float
    total_amount: float
    coupon_code: Optional[str] = None
    customer_gst_number: Optional[str] = None
    delivery_distance: float
    shipping_address: Dict[str, Any]
    shipping_breakdown: Optional[Dict[str, Any]] = None
    tracking_number: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    model_config = {"from_attributes": True}


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None

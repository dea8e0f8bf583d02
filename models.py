from sqlalchemy import Column, Integer, String, JSON, DateTime, Boolean, Float, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class ShippingZone(Base):
    """
    Admin-configured shipping policy. At most one zone is active at a time;
    the active zone governs every shipping calculation.

    Nullable pricing fields fall back to the default shipping settings.
    free_shipping_threshold = 0 means no threshold-based free shipping.
    """
    __tablename__ = "shipping_zones"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    base_rate = Column(Float, nullable=True)
    per_km_rate = Column(Float, nullable=True)
    free_shipping_threshold = Column(Float, nullable=True)
    distance_free_radius = Column(Float, nullable=True)
    max_shipping_distance = Column(Float, nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Coupon(Base):
    """
    Database model for coupons.

    discount_type: 'percentage' | 'fixed'
    discount_value: percent for 'percentage', rupees for 'fixed'
    maximum_discount: cap applied to percentage discounts
    usage_limit / per_user_limit: null means unlimited
    """
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    code = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)
    discount_type = Column(String, nullable=False)
    discount_value = Column(Float, nullable=False)
    minimum_order_amount = Column(Float, nullable=True)
    maximum_discount = Column(Float, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)
    per_user_limit = Column(Integer, nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    usages = relationship("CouponUsage", back_populates="coupon", cascade="all, delete-orphan")


class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, index=True, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    used_at = Column(DateTime(timezone=True), server_default=func.now())

    coupon = relationship("Coupon", back_populates="usages")


class Product(Base):
    """Catalogue entry. price is GST-inclusive."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=True, index=True)
    price = Column(Float, nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Order(Base):
    """
    Immutable pricing snapshot taken at checkout.

    total_amount = subtotal + shipping_amount - discount_amount (floored at 0).
    tax_amount is the GST already contained in subtotal; it is informational
    and never added to the total.
    shipping_breakdown: JSON copy of the ShippingBreakdown used at checkout.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(String, index=True, nullable=True)
    guest_email = Column(String, nullable=True)
    status = Column(String, default="pending", nullable=False)
    payment_status = Column(String, default="pending", nullable=False)
    subtotal = Column(Float, nullable=False)
    tax_amount = Column(Float, default=0, nullable=False)
    shipping_amount = Column(Float, default=0, nullable=False)
    discount_amount = Column(Float, default=0, nullable=False)
    total_amount = Column(Float, nullable=False)
    coupon_code = Column(String, nullable=True)
    customer_gst_number = Column(String, nullable=True)
    delivery_distance = Column(Float, default=0, nullable=False)
    shipping_address = Column(JSON, nullable=False)
    shipping_breakdown = Column(JSON, nullable=True)
    idempotency_key = Column(String, unique=True, index=True, nullable=True)
    tracking_number = Column(String, nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    """Line captured at order time, decoupled from later product edits."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    product_name = Column(String, nullable=False)
    product_sku = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")

"""
main.py
=======
FastAPI application entry point.

Endpoints:
  POST   /shipping-zones            - Create a shipping zone
  GET    /shipping-zones            - List shipping zones
  GET    /shipping-zones/{id}       - Get shipping zone by ID
  PUT    /shipping-zones/{id}       - Update shipping zone
  DELETE /shipping-zones/{id}       - Delete shipping zone
  POST   /shipping/quote            - Shipping charge and breakdown for a cart total and distance

  POST   /coupons                   - Create a coupon
  GET    /coupons                   - List all coupons
  GET    /coupons/{id}              - Get coupon by ID
  PUT    /coupons/{id}              - Update coupon
  DELETE /coupons/{id}              - Delete coupon
  POST   /coupons/validate          - Validate a coupon code against a subtotal

  POST   /products                  - Create a product
  GET    /products                  - List products
  GET    /products/{id}             - Get product by ID
  PUT    /products/{id}             - Update product

  POST   /checkout/quote            - Price a cart without placing an order
  POST   /orders                    - Place an order
  GET    /orders                    - List orders
  GET    /orders/{id}               - Get order by ID
  PATCH  /orders/{id}/status        - Update order status
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, Header, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
import schemas
import coupon_engine
import order_engine
import shipping_engine
from config import get_settings
from database import engine, get_db
from logger import log

settings = get_settings()

# Create DB tables on startup
models.Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=settings.app_name,
    description="Shipping, coupon and order-total pricing for a furniture storefront. "
                "Prices are GST-inclusive; shipping is distance-based with a free-shipping threshold.",
    version="1.0.0",
)


def _load_zones(db: Session) -> List[models.ShippingZone]:
    return db.query(models.ShippingZone).order_by(models.ShippingZone.id).all()


def _default_shipping() -> schemas.ShippingSettings:
    return shipping_engine.settings_from_config(get_settings())


def _get_or_404(db: Session, model, object_id: int, label: str):
    obj = db.query(model).filter(model.id == object_id).first()
    if not obj:
        raise HTTPException(status_code=404, detail=f"{label} with id={object_id} not found")
    return obj


# ═══════════════════════════════════════════════════
#  SHIPPING ZONES
# ═══════════════════════════════════════════════════

def _ensure_no_other_active_zone(db: Session, zone_id: Optional[int] = None) -> None:
    query = db.query(models.ShippingZone).filter(models.ShippingZone.is_active == True)
    if zone_id is not None:
        query = query.filter(models.ShippingZone.id != zone_id)
    other = query.first()
    if other:
        raise HTTPException(
            status_code=409,
            detail=f"Shipping zone '{other.name}' (id={other.id}) is already active; deactivate it first",
        )


@app.post(
    "/shipping-zones",
    response_model=schemas.ShippingZoneResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Shipping"],
    summary="Create a shipping zone",
)
def create_shipping_zone(zone: schemas.ShippingZoneCreate, db: Session = Depends(get_db)):
    """
    Create a shipping zone. Only one zone may be active at a time;
    activating a second zone is rejected with 409.
    """
    if zone.is_active:
        _ensure_no_other_active_zone(db)
    db_zone = models.ShippingZone(**zone.model_dump())
    db.add(db_zone)
    db.commit()
    db.refresh(db_zone)
    return db_zone


@app.get(
    "/shipping-zones",
    response_model=List[schemas.ShippingZoneResponse],
    tags=["Shipping"],
    summary="Get all shipping zones",
)
def get_all_shipping_zones(db: Session = Depends(get_db)):
    return _load_zones(db)


@app.get(
    "/shipping-zones/{zone_id}",
    response_model=schemas.ShippingZoneResponse,
    tags=["Shipping"],
    summary="Get a shipping zone by ID",
)
def get_shipping_zone(zone_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, models.ShippingZone, zone_id, "Shipping zone")


@app.put(
    "/shipping-zones/{zone_id}",
    response_model=schemas.ShippingZoneResponse,
    tags=["Shipping"],
    summary="Update a shipping zone",
)
def update_shipping_zone(zone_id: int, update_data: schemas.ShippingZoneUpdate, db: Session = Depends(get_db)):
    """
    Update a shipping zone. Only provided fields are changed; an explicit null
    clears a pricing field so the default applies again.
    """
    zone = _get_or_404(db, models.ShippingZone, zone_id, "Shipping zone")
    changes = update_data.model_dump(exclude_unset=True)

    if changes.get("is_active"):
        _ensure_no_other_active_zone(db, zone_id)
    if "name" in changes and changes["name"] is None:
        del changes["name"]
    if "is_active" in changes and changes["is_active"] is None:
        del changes["is_active"]

    for field, value in changes.items():
        setattr(zone, field, value)

    db.commit()
    db.refresh(zone)
    return zone


@app.delete(
    "/shipping-zones/{zone_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Shipping"],
    summary="Delete a shipping zone",
)
def delete_shipping_zone(zone_id: int, db: Session = Depends(get_db)):
    zone = _get_or_404(db, models.ShippingZone, zone_id, "Shipping zone")
    db.delete(zone)
    db.commit()
    return None


@app.post(
    "/shipping/quote",
    response_model=schemas.ShippingResult,
    tags=["Shipping"],
    summary="Calculate the shipping charge for a cart total and distance",
)
def quote_shipping(request: schemas.ShippingQuoteRequest, db: Session = Depends(get_db)):
    """
    Uses the active shipping zone, or the default policy when none is active.
    Negative distances or totals are treated as 0.
    """
    return shipping_engine.calculate_shipping_amount(
        request.cart_total,
        request.distance_km,
        _load_zones(db),
        _default_shipping(),
    )


# ═══════════════════════════════════════════════════
#  COUPONS
# ═══════════════════════════════════════════════════

@app.post(
    "/coupons",
    response_model=schemas.CouponResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Coupons"],
    summary="Create a new coupon",
)
def create_coupon(coupon: schemas.CouponCreate, db: Session = Depends(get_db)):
    """
    Create a coupon. Supports two discount types:
    - **percentage**: percent of the subtotal, optionally capped by maximum_discount.
    - **fixed**: flat rupee amount, never more than the subtotal.
    """
    if coupon_engine.find_coupon(db, coupon.code):
        raise HTTPException(status_code=409, detail=f"Coupon code {coupon.code} already exists")

    data = coupon.model_dump()
    data["discount_type"] = coupon.discount_type.value
    db_coupon = models.Coupon(**data)
    db.add(db_coupon)
    db.commit()
    db.refresh(db_coupon)
    return db_coupon


@app.get(
    "/coupons",
    response_model=List[schemas.CouponResponse],
    tags=["Coupons"],
    summary="Get all coupons",
)
def get_all_coupons(db: Session = Depends(get_db)):
    """Retrieve all coupons (both active and inactive)."""
    return db.query(models.Coupon).order_by(models.Coupon.id).all()


@app.post(
    "/coupons/validate",
    response_model=schemas.CouponValidation,
    tags=["Coupons"],
    summary="Validate a coupon code for an order subtotal",
)
def validate_coupon(request: schemas.CouponValidateRequest, db: Session = Depends(get_db)):
    """
    Always answers 200; a rejected coupon comes back with valid=false and
    a message meant to be shown to the customer as is.
    """
    return coupon_engine.validate_coupon(db, request.code, request.order_subtotal, request.user_id)


@app.get(
    "/coupons/{coupon_id}",
    response_model=schemas.CouponResponse,
    tags=["Coupons"],
    summary="Get a coupon by ID",
)
def get_coupon(coupon_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, models.Coupon, coupon_id, "Coupon")


@app.put(
    "/coupons/{coupon_id}",
    response_model=schemas.CouponResponse,
    tags=["Coupons"],
    summary="Update a coupon",
)
def update_coupon(coupon_id: int, update_data: schemas.CouponUpdate, db: Session = Depends(get_db)):
    """
    Update a specific coupon. All fields are optional; only provided fields are updated.
    """
    coupon = _get_or_404(db, models.Coupon, coupon_id, "Coupon")

    for field, value in update_data.model_dump(exclude_unset=True).items():
        if field in ("discount_type", "discount_value", "is_active") and value is None:
            continue
        if field == "discount_type":
            value = value.value
        setattr(coupon, field, value)

    if coupon.discount_type == schemas.DiscountType.percentage.value and coupon.discount_value > 100:
        db.rollback()
        raise HTTPException(status_code=422, detail="Discount percentage cannot exceed 100")

    db.commit()
    db.refresh(coupon)
    return coupon


@app.delete(
    "/coupons/{coupon_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Coupons"],
    summary="Delete a coupon",
)
def delete_coupon(coupon_id: int, db: Session = Depends(get_db)):
    coupon = _get_or_404(db, models.Coupon, coupon_id, "Coupon")
    db.delete(coupon)
    db.commit()
    return None


# ═══════════════════════════════════════════════════
#  PRODUCTS
# ═══════════════════════════════════════════════════

@app.post(
    "/products",
    response_model=schemas.ProductResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Products"],
    summary="Create a product",
)
def create_product(product: schemas.ProductCreate, db: Session = Depends(get_db)):
    db_product = models.Product(**product.model_dump())
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


@app.get(
    "/products",
    response_model=List[schemas.ProductResponse],
    tags=["Products"],
    summary="Get all products",
)
def get_all_products(db: Session = Depends(get_db)):
    return db.query(models.Product).order_by(models.Product.id).all()


@app.get(
    "/products/{product_id}",
    response_model=schemas.ProductResponse,
    tags=["Products"],
    summary="Get a product by ID",
)
def get_product(product_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, models.Product, product_id, "Product")


@app.put(
    "/products/{product_id}",
    response_model=schemas.ProductResponse,
    tags=["Products"],
    summary="Update a product",
)
def update_product(product_id: int, update_data: schemas.ProductUpdate, db: Session = Depends(get_db)):
    """Price changes never touch existing orders; their lines are snapshots."""
    product = _get_or_404(db, models.Product, product_id, "Product")
    for field, value in update_data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(product, field, value)
    db.commit()
    db.refresh(product)
    return product


# ═══════════════════════════════════════════════════
#  CHECKOUT
# ═══════════════════════════════════════════════════

def _price_cart(db: Session, items: List[schemas.CartItem]) -> List[Tuple[models.Product, int]]:
    """
    Merge duplicate lines and load each product.
    Raises 400 for unknown, inactive or understocked products.
    """
    quantities = {}
    for item in items:
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

    lines = []
    for product_id, quantity in quantities.items():
        product = db.query(models.Product).filter(models.Product.id == product_id).first()
        if product is None:
            raise HTTPException(status_code=400, detail=f"Product not found: {product_id}")
        if not product.is_active:
            raise HTTPException(status_code=400, detail=f"Product {product.name} is no longer available")
        if product.stock_quantity < quantity:
            raise HTTPException(
                status_code=400,
                detail=f"Insufficient stock for product {product.name}. "
                       f"Available: {product.stock_quantity}, Requested: {quantity}",
            )
        lines.append((product, quantity))
    return lines


@app.post(
    "/checkout/quote",
    response_model=schemas.CheckoutQuote,
    tags=["Checkout"],
    summary="Price a cart: subtotal, shipping, coupon and payable total",
)
def quote_checkout(request: schemas.CheckoutQuoteRequest, db: Session = Depends(get_db)):
    """
    Nothing is persisted. An invalid coupon does not fail the quote; it is
    reported under `coupon` and contributes no discount.
    """
    snapshots = order_engine.build_item_snapshots(_price_cart(db, request.items))
    subtotal = order_engine.cart_subtotal(snapshots)
    shipping = shipping_engine.calculate_shipping_amount(
        subtotal, request.delivery_distance, _load_zones(db), _default_shipping()
    )

    validation = None
    if request.coupon_code:
        validation = coupon_engine.validate_coupon(db, request.coupon_code, subtotal, request.user_id)
    discount = coupon_engine.discount_from_validation(validation)

    gst = order_engine.get_gst_percentage(settings.gst_rate)
    assembled = order_engine.assemble_order_total(
        subtotal, shipping, discount, request.coupon_code, gst
    )
    snapshot = assembled.snapshot
    return schemas.CheckoutQuote(
        items=snapshots,
        subtotal=snapshot.subtotal,
        tax_amount=snapshot.tax_amount,
        gst_percentage=gst,
        shipping_amount=snapshot.shipping_amount,
        discount_amount=snapshot.discount_amount,
        total_amount=assembled.total_amount,
        shipping_breakdown=snapshot.shipping_breakdown,
        coupon=validation,
        display_total=order_engine.format_price_with_gst(assembled.total_amount, gst),
    )


# ═══════════════════════════════════════════════════
#  ORDERS
# ═══════════════════════════════════════════════════

def _new_order_number() -> str:
    return f"ORD-{datetime.now(timezone.utc):%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


@app.post(
    "/orders",
    response_model=schemas.OrderResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Orders"],
    summary="Place an order",
)
def create_order(
    order: schemas.OrderCreate,
    response: Response,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
):
    """
    Prices the items from the catalogue, recomputes shipping from the active
    zone and revalidates the coupon, then stores the whole pricing snapshot.

    A repeated Idempotency-Key returns the order created the first time (200)
    instead of placing a duplicate.
    """
    if idempotency_key:
        existing = db.query(models.Order).filter(models.Order.idempotency_key == idempotency_key).first()
        if existing:
            log.info(f"Replaying order {existing.order_number} for idempotency key {idempotency_key}")
            response.status_code = status.HTTP_200_OK
            return schemas.OrderResponse.model_validate(existing)

    lines = _price_cart(db, order.items)
    snapshots = order_engine.build_item_snapshots(lines)
    subtotal = order_engine.cart_subtotal(snapshots)
    shipping = shipping_engine.calculate_shipping_amount(
        subtotal, order.delivery_distance, _load_zones(db), _default_shipping()
    )

    coupon = None
    discount = 0.0
    if order.coupon_code:
        validation = coupon_engine.validate_coupon(db, order.coupon_code, subtotal, order.user_id)
        if not validation.valid:
            raise HTTPException(status_code=400, detail=validation.message)
        discount = coupon_engine.discount_from_validation(validation)
        if order.discount_amount and abs(order.discount_amount - discount) > 0.01:
            log.warning(
                f"Client discount {order.discount_amount} differs from validated {discount} "
                f"for coupon {order.coupon_code}; using validated amount"
            )
        coupon = coupon_engine.find_coupon(db, order.coupon_code)
    elif order.discount_amount:
        log.warning(f"Ignoring discount {order.discount_amount} sent without a coupon code")

    assembled = order_engine.assemble_order_total(
        subtotal, shipping, discount, order.coupon_code, settings.gst_rate
    )
    snapshot = assembled.snapshot

    db_order = models.Order(
        order_number=_new_order_number(),
        user_id=order.user_id,
        guest_email=None if order.user_id else order.guest_email,
        subtotal=snapshot.subtotal,
        tax_amount=snapshot.tax_amount,
        shipping_amount=snapshot.shipping_amount,
        discount_amount=snapshot.discount_amount,
        total_amount=snapshot.total_amount,
        coupon_code=snapshot.coupon_code,
        customer_gst_number=order.customer_gst_number,
        delivery_distance=snapshot.shipping_breakdown.distance_km,
        shipping_address=order.shipping_address.model_dump(),
        shipping_breakdown=snapshot.shipping_breakdown.model_dump(),
        idempotency_key=idempotency_key,
    )

    try:
        db.add(db_order)
        db.flush()

        for (product, _), item in zip(lines, snapshots):
            product.stock_quantity -= item.quantity
            db_order.items.append(models.OrderItem(**item.model_dump()))

        if coupon is not None and snapshot.discount_amount > 0:
            coupon_engine.record_coupon_usage(db, coupon, order.user_id, db_order.id)

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error(f"Order creation failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to create order")

    db.refresh(db_order)
    log.info(
        f"Order {db_order.order_number} created: subtotal={db_order.subtotal} "
        f"shipping={db_order.shipping_amount} discount={db_order.discount_amount} "
        f"total={db_order.total_amount}"
    )
    return schemas.OrderResponse.model_validate(db_order)


@app.get(
    "/orders",
    response_model=List[schemas.OrderResponse],
    tags=["Orders"],
    summary="Get orders, newest first",
)
def get_all_orders(user_id: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(models.Order)
    if user_id:
        query = query.filter(models.Order.user_id == user_id)
    return [schemas.OrderResponse.model_validate(o) for o in query.order_by(models.Order.id.desc()).all()]


@app.get(
    "/orders/{order_id}",
    response_model=schemas.OrderResponse,
    tags=["Orders"],
    summary="Get an order by ID",
)
def get_order(order_id: int, db: Session = Depends(get_db)):
    return schemas.OrderResponse.model_validate(_get_or_404(db, models.Order, order_id, "Order"))


@app.patch(
    "/orders/{order_id}/status",
    response_model=schemas.OrderResponse,
    tags=["Orders"],
    summary="Update an order's status",
)
def update_order_status(order_id: int, update_data: schemas.OrderStatusUpdate, db: Session = Depends(get_db)):
    """Only status and tracking details change; pricing fields are never touched."""
    order = _get_or_404(db, models.Order, order_id, "Order")

    order.status = update_data.status.value
    if update_data.tracking_number:
        order.tracking_number = update_data.tracking_number
    if update_data.status == schemas.OrderStatus.shipped:
        order.shipped_at = datetime.now(timezone.utc)
    if update_data.status == schemas.OrderStatus.delivered:
        order.delivered_at = datetime.now(timezone.utc)

    db.commit()
    db.refresh(order)
    return schemas.OrderResponse.model_validate(order)


# ═══════════════════════════════════════════════════
#  HEALTH CHECK
# ═══════════════════════════════════════════════════

@app.get("/", tags=["Health"], summary="Health check")
def root():
    return {"status": "ok", "message": f"{settings.app_name} is running"}


def run():
    """Serve the API with uvicorn using the configured host and port."""
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()

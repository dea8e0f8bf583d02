"""
coupon_engine.py
================
Coupon validation against the coupons / coupon_usages tables.

Checks, in order (the first failure wins and its message is returned):
-----------------------------------------------------------------------
1. A code was entered.
2. The order subtotal is positive.
3. The code (case-insensitive, trimmed) names an active coupon whose
   validity window contains "now".
4. The global usage limit has not been reached.
5. The per-user limit has not been reached (only when a user is known).
6. The subtotal meets the coupon's minimum order amount.

Discount:
---------
- percentage: subtotal x value / 100, rounded to paise, capped by maximum_discount.
- fixed:      value, never more than the subtotal.

Callers outside this module only consume the CouponValidation result; they
never recompute eligibility. An invalid result contributes no discount.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
from logger import log
from order_engine import format_price
from schemas import CouponValidation, DiscountType


def _as_utc(moment: datetime) -> datetime:
    # SQLite hands back naive values; they were stored in UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# ─────────────────────────── Validity window ───────────────────────────

def is_coupon_expired(expires_at) -> bool:
    if expires_at is None:
        return False
    return _as_utc(expires_at) <= datetime.now(timezone.utc)


def is_coupon_started(starts_at) -> bool:
    if starts_at is None:
        return True
    return _as_utc(starts_at) <= datetime.now(timezone.utc)


# ─────────────────────────── Lookup ───────────────────────────

def find_coupon(db: Session, code: str) -> Optional[models.Coupon]:
    return (
        db.query(models.Coupon)
        .filter(func.upper(models.Coupon.code) == code.strip().upper())
        .first()
    )


def user_usage_count(db: Session, coupon_id: int, user_id: str) -> int:
    return (
        db.query(models.CouponUsage)
        .filter(models.CouponUsage.coupon_id == coupon_id, models.CouponUsage.user_id == user_id)
        .count()
    )


# ─────────────────────────── Discount ───────────────────────────

def compute_discount(coupon: models.Coupon, order_subtotal: float) -> float:
    if coupon.discount_type == DiscountType.percentage.value:
        discount = round(order_subtotal * coupon.discount_value / 100, 2)
        if coupon.maximum_discount is not None:
            discount = min(discount, coupon.maximum_discount)
        return discount
    return round(min(coupon.discount_value, order_subtotal), 2)


# ─────────────────────────── Validation ───────────────────────────

def validate_coupon(
    db: Session,
    code: Optional[str],
    order_subtotal: Optional[float],
    user_id: Optional[str] = None,
) -> CouponValidation:
    if code is None or not code.strip():
        return CouponValidation(valid=False, message="Please enter a coupon code")

    if order_subtotal is None or order_subtotal <= 0:
        return CouponValidation(valid=False, message="Invalid order amount")

    coupon = find_coupon(db, code)
    if (
        coupon is None
        or not coupon.is_active
        or not is_coupon_started(coupon.starts_at)
        or is_coupon_expired(coupon.expires_at)
    ):
        log.info(f"Coupon {code.strip().upper()!r} rejected: not found, inactive or outside its window")
        return CouponValidation(valid=False, message="Invalid or expired coupon code")

    if coupon.usage_limit is not None and (coupon.used_count or 0) >= coupon.usage_limit:
        return CouponValidation(valid=False, message="Coupon usage limit reached")

    if coupon.per_user_limit is not None and user_id:
        if user_usage_count(db, coupon.id, user_id) >= coupon.per_user_limit:
            return CouponValidation(
                valid=False,
                message=f"You have already used this coupon {coupon.per_user_limit} time(s)",
            )

    if coupon.minimum_order_amount is not None and order_subtotal < coupon.minimum_order_amount:
        return CouponValidation(
            valid=False,
            message=f"Minimum order amount of {format_price(coupon.minimum_order_amount)} required",
        )

    return CouponValidation(
        valid=True,
        discount_amount=compute_discount(coupon, order_subtotal),
        message="Coupon applied successfully!",
    )


def discount_from_validation(result: Optional[CouponValidation]) -> float:
    """Discount the checkout may apply: nothing unless the coupon was accepted."""
    if result is None or not result.valid:
        return 0.0
    return max(0.0, result.discount_amount)


# ─────────────────────────── Usage ───────────────────────────

def record_coupon_usage(
    db: Session,
    coupon: models.Coupon,
    user_id: Optional[str],
    order_id: Optional[int],
) -> None:
    """Counts one use of the coupon. Caller commits."""
    coupon.used_count = (coupon.used_count or 0) + 1
    if user_id:
        db.add(models.CouponUsage(coupon_id=coupon.id, user_id=user_id, order_id=order_id))

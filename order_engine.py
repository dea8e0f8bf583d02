"""
order_engine.py
===============
Order total assembly and GST-inclusive price display.

Pricing model:
--------------
- Product prices already include GST, so the cart subtotal is the payable
  merchandise amount. No tax is added on top.
- total_amount = subtotal + shipping - discount, floored at 0.
- tax_amount is the GST contained in the subtotal, kept on the order for
  invoices only:  subtotal - subtotal / (1 + rate / 100).

The assembled snapshot (line items, shipping breakdown, coupon code, amounts)
is stored with the order so receipts and admin views never re-derive shipping
from zone configuration that may have changed since.
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional

from schemas import AssembledOrder, OrderItemSnapshot, OrderSnapshot, ShippingResult

DEFAULT_GST_PERCENTAGE = 18.0


def _safe_amount(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


# ─────────────────────────── Line items ───────────────────────────

def cart_subtotal(items: Iterable[Any]) -> float:
    """Sum of unit_price x quantity over snapshots or (unit_price, quantity) objects."""
    return round(sum(item.unit_price * item.quantity for item in items), 2)


def build_item_snapshot(product: Any, quantity: int) -> OrderItemSnapshot:
    """Freeze a product's name, sku and current price for an order line."""
    return OrderItemSnapshot(
        product_id=product.id,
        product_name=product.name,
        product_sku=product.sku,
        quantity=quantity,
        unit_price=product.price,
        total_price=round(product.price * quantity, 2),
    )


def build_item_snapshots(lines: Iterable[tuple]) -> List[OrderItemSnapshot]:
    return [build_item_snapshot(product, quantity) for product, quantity in lines]


# ─────────────────────────── GST ───────────────────────────

def get_gst_percentage(raw_rate: Any = None) -> float:
    """GST percentage from an admin setting; 18 when missing or unparseable."""
    if raw_rate is None or raw_rate == "":
        return DEFAULT_GST_PERCENTAGE
    try:
        rate = float(raw_rate)
    except (TypeError, ValueError):
        return DEFAULT_GST_PERCENTAGE
    if math.isnan(rate) or rate < 0:
        return DEFAULT_GST_PERCENTAGE
    return rate


def extract_gst_amount(inclusive_amount: Any, gst_percentage: Any = DEFAULT_GST_PERCENTAGE) -> float:
    amount = _safe_amount(inclusive_amount)
    rate = get_gst_percentage(gst_percentage)
    base = amount / (1 + rate / 100)
    return round(amount - base, 2)


# ─────────────────────────── Display ───────────────────────────

def format_price(amount: Any) -> str:
    """
    Rupee amount without decimals, grouped the Indian way.
    Example: 1234567 -> "₹12,34,567"
    """
    try:
        value = Decimal(str(float(amount)))
    except (TypeError, ValueError):
        value = Decimal(0)
    if not value.is_finite():
        value = Decimal(0)

    rupees = int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    sign = "-" if rupees < 0 else ""
    digits = str(abs(rupees))

    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    grouped = ",".join(groups + [tail]) if groups else tail
    return f"{sign}₹{grouped}"


def format_price_with_gst(amount: Any, gst_percentage: Any = None) -> str:
    """Example: "₹5,000 (includes 18% GST)" """
    rate = get_gst_percentage(gst_percentage)
    return f"{format_price(amount)} (includes {rate:g}% GST)"


# ─────────────────────────── Assembly ───────────────────────────

def assemble_order_total(
    subtotal: Any,
    shipping: ShippingResult,
    discount: Any = 0,
    coupon_code: Optional[str] = None,
    gst_percentage: Any = DEFAULT_GST_PERCENTAGE,
) -> AssembledOrder:
    merchandise = round(_safe_amount(subtotal), 2)
    discount_amount = round(_safe_amount(discount), 2)
    shipping_amount = round(_safe_amount(shipping.amount), 2)

    total = max(0.0, round(merchandise + shipping_amount - discount_amount, 2))

    snapshot = OrderSnapshot(
        subtotal=merchandise,
        tax_amount=extract_gst_amount(merchandise, gst_percentage),
        shipping_amount=shipping_amount,
        discount_amount=discount_amount,
        total_amount=total,
        coupon_code=coupon_code.strip().upper() if coupon_code and discount_amount > 0 else None,
        shipping_breakdown=shipping.breakdown,
    )
    return AssembledOrder(total_amount=total, snapshot=snapshot)

"""
shipping_engine.py
==================
Core business logic for computing shipping charges.

Zone resolution:
----------------
- Exactly one admin-configured shipping zone is expected to be active.
- The active zone's fields override the default settings one by one;
  a null zone field keeps the default.
- With no active zone the defaults apply unchanged.

Shipping amount:
----------------
1. Order value >= free_shipping_threshold (threshold configured, i.e. > 0):
   - Distance <= distance_free_radius: free shipping.
   - Distance > distance_free_radius: (distance - radius) x per_km_rate,
     no base rate.
2. Order value < threshold, or no threshold configured:
   - base_rate, plus (distance - radius) x per_km_rate beyond the radius.

Distances above max_shipping_distance are clamped to it first.
Invalid numbers (NaN, infinities, negatives) are treated as 0; nothing here raises.
"""

import math
from collections.abc import Mapping
from typing import Any, Iterable, Optional

from config import Settings
from logger import log
from schemas import ShippingBreakdown, ShippingResult, ShippingSettings


DEFAULT_SHIPPING_SETTINGS = ShippingSettings(
    free_shipping_threshold=10000,
    distance_free_radius=5,
    per_km_rate=50,
    base_rate=500,
    max_shipping_distance=None,
)


def settings_from_config(config: Settings) -> ShippingSettings:
    """Build the fallback shipping policy from application settings."""
    return ShippingSettings(
        free_shipping_threshold=config.default_free_shipping_threshold,
        distance_free_radius=config.default_distance_free_radius,
        per_km_rate=config.default_per_km_rate,
        base_rate=config.default_base_rate,
        max_shipping_distance=config.default_max_shipping_distance,
    )


def _safe_amount(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def _zone_value(zone: Any, name: str) -> Optional[float]:
    if isinstance(zone, Mapping):
        raw = zone.get(name)
    else:
        raw = getattr(zone, name, None)
    if raw is None:
        return None
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number) or number < 0:
        return None
    return number


def _is_active(zone: Any) -> bool:
    if isinstance(zone, Mapping):
        return bool(zone.get("is_active"))
    return bool(getattr(zone, "is_active", False))


# ─────────────────────────── Zone resolver ───────────────────────────

def find_active_zone(zones: Optional[Iterable[Any]]) -> Optional[Any]:
    """
    Returns the first zone flagged active, or None.
    More than one active zone is a data problem; it is logged, not raised.
    """
    active = [zone for zone in (zones or []) if _is_active(zone)]
    if not active:
        return None
    if len(active) > 1:
        log.warning(f"{len(active)} shipping zones are active; using the first one")
    return active[0]


def resolve_shipping_settings(
    zones: Optional[Iterable[Any]],
    defaults: ShippingSettings = DEFAULT_SHIPPING_SETTINGS,
) -> ShippingSettings:
    zone = find_active_zone(zones)
    if zone is None:
        return defaults

    overrides = {}
    for field in ShippingSettings.model_fields:
        value = _zone_value(zone, field)
        if value is not None:
            overrides[field] = value
    return defaults.model_copy(update=overrides)


# ─────────────────────────── Shipping amount ───────────────────────────

def calculate_shipping_amount(
    cart_total: Any,
    distance_km: Any = 0,
    zones: Optional[Iterable[Any]] = None,
    defaults: ShippingSettings = DEFAULT_SHIPPING_SETTINGS,
) -> ShippingResult:
    """
    Returns ShippingResult(amount, breakdown) for a cart total in rupees and a
    delivery distance in km, under the active zone of `zones`.
    """
    order_value = _safe_amount(cart_total)
    distance = _safe_amount(distance_km)
    settings = resolve_shipping_settings(zones, defaults)

    threshold = settings.free_shipping_threshold
    radius = settings.distance_free_radius
    per_km_rate = settings.per_km_rate

    if settings.max_shipping_distance and distance > settings.max_shipping_distance:
        log.debug(f"Clamping delivery distance {distance}km to {settings.max_shipping_distance}km")
        distance = settings.max_shipping_distance

    distance_charged = max(0.0, distance - radius)
    beyond_radius = distance > radius
    distance_charge = distance_charged * per_km_rate if beyond_radius else 0.0

    threshold_met = threshold > 0 and order_value >= threshold
    base_rate_applied = not threshold_met
    total = distance_charge + (settings.base_rate if base_rate_applied else 0.0)

    breakdown = ShippingBreakdown(
        base_rate=settings.base_rate,
        base_rate_applied=base_rate_applied,
        distance_km=distance,
        distance_free_radius=radius,
        distance_charged=round(distance_charged, 2),
        per_km_rate=per_km_rate,
        distance_charge=round(distance_charge, 2),
        is_free_shipping=threshold_met and not beyond_radius,
        order_value=order_value,
        free_shipping_threshold=threshold,
        total_shipping_charge=round(total, 2),
    )
    return ShippingResult(amount=round(total, 2), breakdown=breakdown)


def calculate_shipping_amount_legacy(
    cart_total: Any,
    zones: Optional[Iterable[Any]] = None,
    defaults: ShippingSettings = DEFAULT_SHIPPING_SETTINGS,
) -> float:
    """Shipping amount only, at zero distance."""
    return calculate_shipping_amount(cart_total, 0, zones, defaults).amount

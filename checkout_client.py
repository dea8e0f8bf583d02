"""
checkout_client.py
==================
Async client for the checkout sequence a storefront runs against this API:

1. POST /checkout/quote     - price the cart (subtotal, shipping, GST display)
2. POST /coupons/validate   - only when a coupon code was entered
3. POST /orders             - place the order

Calls are awaited one after another. Every request has a timeout. Order
creation carries an Idempotency-Key and is retried once on transport errors
or 5xx answers, so a retry can never create a second order.

A rejected coupon does not stop checkout: the order is placed without a
discount and the validation message is handed back for display.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from config import get_settings
from logger import log
from retry import RetryContext
from schemas import CheckoutQuote, CouponValidation, OrderResponse


class CheckoutError(Exception):
    """Order could not be placed; `message` is safe to show to the customer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class CheckoutResult:
    order: OrderResponse
    quote: CheckoutQuote
    coupon: Optional[CouponValidation] = None


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    if isinstance(detail, str):
        return detail
    if detail:
        return str(detail)
    return f"Request failed with status {response.status_code}"


class CheckoutClient:

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_order_attempts: Optional[int] = None,
        retry_base_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = base_url or settings.checkout_base_url
        self.timeout = timeout if timeout is not None else settings.checkout_timeout_seconds
        self.max_order_attempts = max_order_attempts or settings.order_create_max_attempts
        self.retry_base_delay = retry_base_delay
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=transport)

    async def __aenter__(self) -> "CheckoutClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── individual calls ──

    async def quote(
        self,
        items: List[Dict[str, int]],
        delivery_distance: float,
        coupon_code: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> CheckoutQuote:
        response = await self._client.post("/checkout/quote", json={
            "items": items,
            "delivery_distance": max(0.0, delivery_distance),
            "coupon_code": coupon_code,
            "user_id": user_id,
        })
        if response.is_error:
            raise CheckoutError(_error_detail(response), response.status_code)
        return CheckoutQuote.model_validate(response.json())

    async def validate_coupon(
        self,
        code: str,
        order_subtotal: float,
        user_id: Optional[str] = None,
    ) -> CouponValidation:
        response = await self._client.post("/coupons/validate", json={
            "code": code.strip().upper(),
            "order_subtotal": order_subtotal,
            "user_id": user_id,
        })
        if response.is_error:
            raise CheckoutError(_error_detail(response), response.status_code)
        return CouponValidation.model_validate(response.json())

    async def _post_order(self, payload: Dict[str, Any], idempotency_key: str) -> httpx.Response:
        response = await self._client.post(
            "/orders", json=payload, headers={"Idempotency-Key": idempotency_key}
        )
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def place_order(
        self,
        payload: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> OrderResponse:
        key = idempotency_key or uuid.uuid4().hex
        ctx = RetryContext(max_attempts=self.max_order_attempts, base_delay=self.retry_base_delay)
        try:
            response = await ctx.execute(self._post_order, payload, key)
        except httpx.HTTPStatusError as e:
            log.error(f"Order creation failed after {ctx.stats.attempts} attempt(s): {e}")
            raise CheckoutError(_error_detail(e.response), e.response.status_code) from e
        except httpx.TransportError as e:
            log.error(f"Order creation failed after {ctx.stats.attempts} attempt(s): {e}")
            raise CheckoutError("Could not reach the store, please try again") from e

        if response.is_error:
            raise CheckoutError(_error_detail(response), response.status_code)
        return OrderResponse.model_validate(response.json())

    # ── full flow ──

    async def checkout(
        self,
        items: List[Dict[str, int]],
        shipping_address: Dict[str, Any],
        delivery_distance: float,
        coupon_code: Optional[str] = None,
        user_id: Optional[str] = None,
        guest_email: Optional[str] = None,
        customer_gst_number: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutResult:
        quote = await self.quote(items, delivery_distance, user_id=user_id)

        coupon = None
        discount = 0.0
        if coupon_code and coupon_code.strip():
            coupon = await self.validate_coupon(coupon_code, quote.subtotal, user_id)
            if coupon.valid:
                discount = coupon.discount_amount
            else:
                log.info(f"Coupon {coupon_code!r} not applied: {coupon.message}")

        payload = {
            "items": items,
            "shipping_address": shipping_address,
            "delivery_distance": max(0.0, delivery_distance),
            "discount_amount": discount,
            "coupon_code": coupon_code.strip().upper() if coupon and coupon.valid else None,
            "customer_gst_number": customer_gst_number,
            "guest_email": None if user_id else guest_email,
            "user_id": user_id,
        }
        order = await self.place_order(payload, idempotency_key)
        return CheckoutResult(order=order, quote=quote, coupon=coupon)

"""
test_checkout_client.py
=======================
Tests for the async checkout client against a mocked transport.

Covers:
- quote -> validate coupon -> place order sequencing
- invalid coupons are dropped, not fatal
- order creation: one retry with the same Idempotency-Key, no retry on 4xx
"""

import asyncio
import json

import httpx
import pytest

from checkout_client import CheckoutClient, CheckoutError
from retry import RetryContext, is_retryable_error

ITEMS = [{"product_id": 1, "quantity": 2}]
ADDRESS = {
    "full_name": "Asha Verma",
    "phone": "+91 9876543210",
    "address_line_1": "12 MG Road",
    "city": "Indore",
    "state": "Madhya Pradesh",
    "postal_code": "452001",
}

BREAKDOWN = {
    "base_rate": 500,
    "base_rate_applied": False,
    "distance_km": 3,
    "distance_free_radius": 5,
    "distance_charged": 0,
    "per_km_rate": 50,
    "distance_charge": 0,
    "is_free_shipping": True,
    "order_value": 12000,
    "free_shipping_threshold": 10000,
    "total_shipping_charge": 0,
}

QUOTE = {
    "items": [{
        "product_id": 1, "product_name": "Sheesham Bed", "product_sku": "BED-01",
        "quantity": 2, "unit_price": 6000, "total_price": 12000,
    }],
    "subtotal": 12000,
    "tax_amount": 1830.51,
    "gst_percentage": 18,
    "shipping_amount": 0,
    "discount_amount": 0,
    "total_amount": 12000,
    "shipping_breakdown": BREAKDOWN,
    "coupon": None,
    "display_total": "₹12,000 (includes 18% GST)",
}


def order_json(discount=0, coupon_code=None):
    return {
        "id": 7,
        "order_number": "ORD-20260101-ABCDEF12",
        "user_id": "user-1",
        "guest_email": None,
        "status": "pending",
        "payment_status": "pending",
        "subtotal": 12000,
        "tax_amount": 1830.51,
        "shipping_amount": 0,
        "discount_amount": discount,
        "total_amount": 12000 - discount,
        "coupon_code": coupon_code,
        "customer_gst_number": None,
        "delivery_distance": 3,
        "shipping_address": ADDRESS,
        "shipping_breakdown": BREAKDOWN,
        "items": [],
    }


class FakeStore:
    """Records requests and answers from scripted order responses."""

    def __init__(self, coupon=None, order_responses=None):
        self.coupon = coupon
        self.order_responses = list(order_responses or [])
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/checkout/quote":
            return httpx.Response(200, json=QUOTE)
        if path == "/coupons/validate":
            return httpx.Response(200, json=self.coupon)
        if path == "/orders":
            answer = self.order_responses.pop(0)
            if isinstance(answer, Exception):
                raise answer
            return answer
        return httpx.Response(404, json={"detail": "Not Found"})

    def paths(self):
        return [r.url.path for r in self.requests]

    def order_requests(self):
        return [r for r in self.requests if r.url.path == "/orders"]


def run_checkout(store, **kwargs):
    async def go():
        async with CheckoutClient(
            base_url="http://store.test",
            timeout=2.0,
            max_order_attempts=2,
            retry_base_delay=0,
            transport=httpx.MockTransport(store),
        ) as client:
            return await client.checkout(
                ITEMS, ADDRESS, delivery_distance=kwargs.pop("distance", 3), user_id="user-1", **kwargs
            )
    return asyncio.run(go())


# ══════════════════════════════════════════════
#  Flow
# ══════════════════════════════════════════════

class TestCheckoutFlow:

    def test_without_coupon_skips_validation(self):
        store = FakeStore(order_responses=[httpx.Response(201, json=order_json())])
        result = run_checkout(store)
        assert store.paths() == ["/checkout/quote", "/orders"]
        assert result.order.id == 7
        assert result.coupon is None
        assert result.quote.total_amount == 12000

    def test_valid_coupon_sent_with_order(self):
        store = FakeStore(
            coupon={"valid": True, "discount_amount": 1200, "message": "Coupon applied successfully!"},
            order_responses=[httpx.Response(201, json=order_json(1200, "SAVE10"))],
        )
        result = run_checkout(store, coupon_code="save10")
        assert store.paths() == ["/checkout/quote", "/coupons/validate", "/orders"]

        validate_body = json.loads(store.requests[1].content)
        assert validate_body["code"] == "SAVE10"
        assert validate_body["order_subtotal"] == 12000

        order_body = json.loads(store.order_requests()[0].content)
        assert order_body["coupon_code"] == "SAVE10"
        assert order_body["discount_amount"] == 1200
        assert result.coupon.valid is True

    def test_invalid_coupon_does_not_block_checkout(self):
        store = FakeStore(
            coupon={"valid": False, "discount_amount": 0, "message": "Coupon usage limit reached"},
            order_responses=[httpx.Response(201, json=order_json())],
        )
        result = run_checkout(store, coupon_code="SAVE10")
        order_body = json.loads(store.order_requests()[0].content)
        assert order_body["coupon_code"] is None
        assert order_body["discount_amount"] == 0
        assert result.coupon.message == "Coupon usage limit reached"

    def test_negative_distance_sent_as_zero(self):
        store = FakeStore(order_responses=[httpx.Response(201, json=order_json())])
        run_checkout(store, distance=-4)
        quote_body = json.loads(store.requests[0].content)
        assert quote_body["delivery_distance"] == 0


# ══════════════════════════════════════════════
#  Order creation retry
# ══════════════════════════════════════════════

class TestOrderRetry:

    def test_retries_once_on_server_error_with_same_key(self):
        store = FakeStore(order_responses=[
            httpx.Response(503, json={"detail": "Service Unavailable"}),
            httpx.Response(201, json=order_json()),
        ])
        result = run_checkout(store, idempotency_key="key-1")
        orders = store.order_requests()
        assert len(orders) == 2
        assert {r.headers["Idempotency-Key"] for r in orders} == {"key-1"}
        assert result.order.id == 7

    def test_retries_once_on_timeout(self):
        store = FakeStore(order_responses=[
            httpx.ReadTimeout("timed out"),
            httpx.Response(200, json=order_json()),
        ])
        result = run_checkout(store)
        orders = store.order_requests()
        assert len(orders) == 2
        assert orders[0].headers["Idempotency-Key"] == orders[1].headers["Idempotency-Key"]
        assert result.order.order_number == "ORD-20260101-ABCDEF12"

    def test_gives_up_after_second_failure(self):
        store = FakeStore(order_responses=[
            httpx.ConnectError("refused"),
            httpx.ConnectError("refused"),
        ])
        with pytest.raises(CheckoutError) as exc:
            run_checkout(store)
        assert len(store.order_requests()) == 2
        assert "try again" in exc.value.message

    def test_business_error_is_not_retried(self):
        store = FakeStore(order_responses=[
            httpx.Response(400, json={"detail": "Insufficient stock for product Sheesham Bed. Available: 1, Requested: 2"}),
        ])
        with pytest.raises(CheckoutError) as exc:
            run_checkout(store)
        assert len(store.order_requests()) == 1
        assert exc.value.status_code == 400
        assert exc.value.message.startswith("Insufficient stock")

    def test_persistent_server_error_surfaces_detail(self):
        store = FakeStore(order_responses=[
            httpx.Response(500, json={"detail": "Failed to create order"}),
            httpx.Response(500, json={"detail": "Failed to create order"}),
        ])
        with pytest.raises(CheckoutError) as exc:
            run_checkout(store)
        assert exc.value.message == "Failed to create order"
        assert exc.value.status_code == 500


class TestRetryHelpers:

    def test_retryable_errors(self):
        request = httpx.Request("POST", "http://store.test/orders")
        assert is_retryable_error(httpx.ConnectError("refused", request=request))
        server = httpx.HTTPStatusError("boom", request=request, response=httpx.Response(502, request=request))
        assert is_retryable_error(server)
        client = httpx.HTTPStatusError("bad", request=request, response=httpx.Response(409, request=request))
        assert not is_retryable_error(client)
        assert not is_retryable_error(ValueError("nope"))

    def test_context_counts_attempts(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ConnectError("refused")
            return "ok"

        ctx = RetryContext(max_attempts=2, base_delay=0)
        assert asyncio.run(ctx.execute(flaky)) == "ok"
        assert ctx.stats.attempts == 2
        assert ctx.stats.success is True
        assert ctx.stats.last_error.startswith("ConnectError")

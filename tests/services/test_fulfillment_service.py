"""
FulfillmentService tests.

Verifies request dispatch, history reads through GetOrderHistory, and that
only ContentionError is retried.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment_kernel.domain.actor import Actor
from fulfillment_kernel.domain.dtos import (
    CancelOrder,
    CancelOrderResult,
    CompleteOrder,
    GetOrderHistory,
    PlaceOrder,
    PlaceOrderResult,
)
from fulfillment_kernel.exceptions import (
    ContentionError,
    InsufficientStockError,
    OrderNotFoundError,
)
from fulfillment_kernel.services.fulfillment_service import FulfillmentService


class TestHandle:

    def test_place_cancel_history(self, service, user_id, product_id, stock_of):
        placed = service.handle(PlaceOrder(user_id, [(product_id, 2)]))
        assert isinstance(placed, PlaceOrderResult)
        assert placed.total_amount == Decimal("20.00")

        cancelled = service.handle(
            CancelOrder(placed.order_id, "changed mind", Actor.user(user_id))
        )
        assert cancelled == CancelOrderResult(placed.order_id, "cancelled")
        assert stock_of(product_id) == 5

        history = service.handle(GetOrderHistory(placed.order_id))
        assert [(e.from_status, e.to_status) for e in history] == [
            (None, "pending"),
            ("pending", "cancelled"),
        ]

    def test_complete(self, service, user_id, product_id):
        placed = service.handle(PlaceOrder(user_id, [(product_id, 1)]))
        result = service.handle(CompleteOrder(placed.order_id))
        assert result.status == "completed"

    def test_history_of_unknown_order(self, service):
        with pytest.raises(OrderNotFoundError):
            service.handle(GetOrderHistory(uuid4()))

    def test_unsupported_request(self, service):
        with pytest.raises(TypeError):
            service.handle(object())

    def test_correlation_id_logged(self, service, user_id, product_id, captured_logs):
        service.handle(PlaceOrder(user_id, [(product_id, 1)]))

        placed = [r for r in captured_logs() if r["event"] == "order_placed"]
        assert placed[0]["request_type"] == "PlaceOrder"
        assert placed[0]["correlation_id"]

    def test_invalid_retry_attempts(self, store):
        with pytest.raises(ValueError):
            FulfillmentService(store, retry_attempts=0)


class TestContentionRetry:

    def test_contention_retried_then_succeeds(
        self, service, user_id, product_id, monkeypatch, captured_logs
    ):
        real = service.engine.place_order
        calls = {"n": 0}

        def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ContentionError("product:x", 0.1)
            return real(*args, **kwargs)

        monkeypatch.setattr(service.engine, "place_order", flaky)

        result = service.handle(PlaceOrder(user_id, [(product_id, 1)]))

        assert calls["n"] == 2
        assert result.total_amount == Decimal("10.00")
        assert any(r["event"] == "contention_retry" for r in captured_logs())

    def test_contention_exhausted(self, service, user_id, product_id, monkeypatch):
        def always(*args, **kwargs):
            raise ContentionError("product:x", 0.1)

        monkeypatch.setattr(service.engine, "place_order", always)

        with pytest.raises(ContentionError):
            service.handle(PlaceOrder(user_id, [(product_id, 1)]))

    def test_other_errors_not_retried(self, service, user_id, product_id, monkeypatch):
        real = service.engine.place_order
        calls = {"n": 0}

        def counting(*args, **kwargs):
            calls["n"] += 1
            return real(*args, **kwargs)

        monkeypatch.setattr(service.engine, "place_order", counting)

        with pytest.raises(InsufficientStockError):
            service.handle(PlaceOrder(user_id, [(product_id, 50)]))
        assert calls["n"] == 1

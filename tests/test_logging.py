"""
Structured logging tests.

Verifies:
- Every line of one request shares a correlation id and request type
- order_placed and payment_reversed carry the order, amounts and actor
- A failed transaction logs transaction_rolled_back with the error code
- LogContext binding is scoped and only accepts request fields
"""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from fulfillment_kernel.domain.actor import Actor
from fulfillment_kernel.domain.dtos import CancelOrder, PlaceOrder
from fulfillment_kernel.exceptions import InsufficientStockError
from fulfillment_kernel.logging_config import (
    LogContext,
    bind_request,
    configure_logging,
    get_logger,
    reset_logging,
)


def _events(records, name):
    return [r for r in records if r["event"] == name]


class TestRequestEvents:

    def test_order_placed_line(self, service, captured_logs, user_id, product_id):
        placed = service.handle(PlaceOrder(user_id, [(product_id, 2)]))

        (line,) = _events(captured_logs(), "order_placed")
        assert line["level"] == "INFO"
        assert line["logger"] == "fulfillment_kernel.services.order_lifecycle"
        assert line["order_id"] == str(placed.order_id)
        assert line["total_amount"] == "20.00"
        assert line["line_count"] == 1
        assert line["request_type"] == "PlaceOrder"
        assert line["actor_id"] == str(user_id)
        assert line["correlation_id"]

    def test_request_lines_share_correlation_id(
        self, service, captured_logs, user_id, product_id
    ):
        service.handle(PlaceOrder(user_id, [(product_id, 1)]))
        service.handle(PlaceOrder(user_id, [(product_id, 1)]))

        records = captured_logs()
        received = _events(records, "request_received")
        first, second = (r["correlation_id"] for r in received)
        assert first != second

        first_request = [r for r in records if r.get("correlation_id") == first]
        assert {"stock_reserved", "payment_charged", "order_placed"} <= {
            r["event"] for r in first_request
        }

    def test_payment_reversed_line(self, service, captured_logs, user_id, product_id):
        placed = service.handle(PlaceOrder(user_id, [(product_id, 2)]))
        service.handle(
            CancelOrder(placed.order_id, "changed mind", Actor.user(user_id))
        )

        (line,) = _events(captured_logs(), "payment_reversed")
        assert line["order_id"] == str(placed.order_id)
        assert Decimal(line["amount"]) == Decimal("-20.00")
        assert Decimal(line["net_before"]) == Decimal("20.00")
        assert line["refund_policy"] == "full"
        assert line["request_type"] == "CancelOrder"
        assert line["actor_id"] == str(user_id)

    def test_context_unwound_after_request(self, service, user_id, product_id):
        service.handle(PlaceOrder(user_id, [(product_id, 1)]))
        assert LogContext.current() == {}


class TestRollbackLine:

    def test_insufficient_stock_rollback(
        self, service, captured_logs, user_id, product_id
    ):
        with pytest.raises(InsufficientStockError):
            service.handle(PlaceOrder(user_id, [(product_id, 6)]))

        records = captured_logs()
        (line,) = _events(records, "transaction_rolled_back")
        assert line["level"] == "WARNING"
        assert line["request_type"] == "PlaceOrder"
        assert line["error_type"] == "InsufficientStockError"
        assert line["error_code"] == "INSUFFICIENT_STOCK"
        assert line["error_retryable"] is False
        assert line["error_fields"] == {
            "product_id": str(product_id),
            "requested": 6,
            "available": 5,
        }
        assert "Traceback" in line["traceback"]
        assert not _events(records, "order_placed")


class TestLogContext:

    def test_bind_is_scoped(self):
        with LogContext.bind(order_id="o-1", actor_id="user:1"):
            with LogContext.bind(order_id="o-2"):
                assert LogContext.current() == {"order_id": "o-2", "actor_id": "user:1"}
            assert LogContext.current()["order_id"] == "o-1"
        assert LogContext.current() == {}

    def test_none_values_skipped(self):
        with LogContext.bind(order_id=None, request_type="CompleteOrder"):
            assert LogContext.current() == {"request_type": "CompleteOrder"}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            with LogContext.bind(sku="P1"):
                pass

    def test_bind_request_for_placement(self, user_id, product_id):
        with bind_request(PlaceOrder(user_id, [(product_id, 1)])) as fields:
            assert fields["request_type"] == "PlaceOrder"
            assert fields["actor_id"] == str(user_id)
            assert "order_id" not in fields
            assert len(fields["correlation_id"]) == 32


class TestConfigureLogging:

    @pytest.fixture(autouse=True)
    def _fresh_logging(self):
        reset_logging()
        yield
        reset_logging()
        configure_logging(level=logging.DEBUG)

    def test_second_call_is_noop(self):
        first, second = StringIO(), StringIO()
        configure_logging(stream=first)
        configure_logging(stream=second)

        get_logger("test").info("stock_released")

        assert json.loads(first.getvalue())["event"] == "stock_released"
        assert second.getvalue() == ""

    def test_event_fields_override_context(self):
        stream = StringIO()
        configure_logging(stream=stream)

        with LogContext.bind(order_id="from-request"):
            get_logger("test").info("order_cancelled", extra={"order_id": "from-event"})

        line = json.loads(stream.getvalue())
        assert line["order_id"] == "from-event"
        assert "error_code" not in line

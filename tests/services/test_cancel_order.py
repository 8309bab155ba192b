"""
Order cancellation tests.

Verifies:
- Reference scenario: cancelling the 2 x P1 order restores stock, nets the
  payments to zero and appends Pending -> Cancelled
- Re-cancelling is an InvalidTransition with no side effects
- Completed orders can be cancelled; unpaid orders still release stock
- A refused refund leaves the whole cancellation unapplied
- The partial refund policy is explicit and leaves the documented remainder
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment_kernel.domain.actor import Actor
from fulfillment_kernel.domain.gateway import GatewayConfirmation, LedgerOnlyGateway
from fulfillment_kernel.domain.refund_policy import RefundPolicy
from fulfillment_kernel.exceptions import (
    InvalidTransitionError,
    OrderNotFoundError,
    PaymentDeclinedError,
    ValidationError,
)
from fulfillment_kernel.models.audit_entry import AuditEntry
from fulfillment_kernel.models.order import Order, OrderStatus
from fulfillment_kernel.models.payment import Payment, PaymentKind
from fulfillment_kernel.services.order_lifecycle import OrderLifecycleEngine


def _net(order) -> Decimal:
    return sum((p.amount for p in order.payments), Decimal("0"))


class DecliningGateway(LedgerOnlyGateway):
    """Confirms charges, refuses refunds."""

    def confirm_refund(self, order_id, method, amount):
        raise PaymentDeclinedError(str(order_id), str(amount), "refunds disabled")


class ShortRefundGateway(LedgerOnlyGateway):
    """Confirms a smaller refund than requested."""

    def confirm_refund(self, order_id, method, amount):
        return GatewayConfirmation(reference="short", amount=amount - Decimal("1.00"))


class TestCancelOrderScenario:

    def test_cancel_restores_everything(self, engine, store, user_id, product_id, stock_of):
        placed = engine.place_order(user_id, [(product_id, 2)])

        result = engine.cancel_order(placed.order_id, "changed mind", Actor.user(user_id))

        assert result.order_id == placed.order_id
        assert result.status == "cancelled"
        assert stock_of(product_id) == 5

        order = store.read(Order, placed.order_id)
        assert order.status_enum == OrderStatus.CANCELLED
        assert order.cancellation_reason == "changed mind"
        assert order.cancelled_at is not None
        assert all(item.stock_released for item in order.items)

        assert [p.kind_enum for p in order.payments] == [
            PaymentKind.CHARGE,
            PaymentKind.REVERSAL,
        ]
        reversal = order.payments[1]
        assert reversal.amount == Decimal("-20.00")
        assert reversal.refund_policy == "full"
        assert _net(order) == Decimal("0")

        history = list(engine.history(placed.order_id))
        assert [(e.from_status, e.to_status) for e in history] == [
            (None, "pending"),
            ("pending", "cancelled"),
        ]
        assert history[1].reason == "changed mind"
        assert history[1].actor_id == str(user_id)

    def test_recancel_is_invalid_transition_without_side_effects(
        self, engine, store, user_id, product_id, stock_of, count_rows
    ):
        placed = engine.place_order(user_id, [(product_id, 2)])
        engine.cancel_order(placed.order_id, "changed mind", Actor.user(user_id))
        audit_before = count_rows(AuditEntry)
        payments_before = count_rows(Payment)

        with pytest.raises(InvalidTransitionError) as exc_info:
            engine.cancel_order(placed.order_id, "again", Actor.user(user_id))

        assert exc_info.value.from_status == "cancelled"
        assert exc_info.value.to_status == "cancelled"
        assert count_rows(AuditEntry) == audit_before
        assert count_rows(Payment) == payments_before
        assert stock_of(product_id) == 5
        assert store.read(Order, placed.order_id).cancellation_reason == "changed mind"

    def test_cancel_completed_order(self, engine, store, user_id, product_id, stock_of):
        placed = engine.place_order(user_id, [(product_id, 3)])
        engine.complete_order(placed.order_id)

        engine.cancel_order(placed.order_id, "returned", Actor.system("returns-desk"))

        assert stock_of(product_id) == 5
        assert _net(store.read(Order, placed.order_id)) == Decimal("0")
        assert engine.history(placed.order_id).statuses() == [
            "pending",
            "completed",
            "cancelled",
        ]

    def test_cancel_unpaid_order_still_releases_stock(
        self, engine, store, user_id, create_product, stock_of, captured_logs
    ):
        freebie = create_product("0.00", 4)
        placed = engine.place_order(user_id, [(freebie, 4)])
        assert stock_of(freebie) == 0

        engine.cancel_order(placed.order_id, "no longer needed", Actor.system())

        assert stock_of(freebie) == 4
        order = store.read(Order, placed.order_id)
        assert order.status_enum == OrderStatus.CANCELLED
        assert order.payments == []
        assert any(r["event"] == "payment_reversal_skipped" for r in captured_logs())

    def test_multi_product_cancel(self, engine, user_id, create_product, stock_of):
        a = create_product("2.00", 10)
        b = create_product("3.00", 10)
        placed = engine.place_order(user_id, [(a, 4), (b, 6), (a, 1)])
        assert (stock_of(a), stock_of(b)) == (5, 4)

        engine.cancel_order(placed.order_id, "oops", Actor.user(user_id))

        assert (stock_of(a), stock_of(b)) == (10, 10)

    def test_unknown_order(self, engine):
        with pytest.raises(OrderNotFoundError):
            engine.cancel_order(uuid4(), "x", Actor.system())

    def test_reason_must_be_text(self, engine, user_id, product_id):
        placed = engine.place_order(user_id, [(product_id, 1)])
        with pytest.raises(ValidationError):
            engine.cancel_order(placed.order_id, None, Actor.system())


class TestCancelAtomicity:

    def test_declined_refund_leaves_order_untouched(
        self, store, clock, user_id, product_id, stock_of, count_rows
    ):
        engine = OrderLifecycleEngine(store, clock=clock, gateway=DecliningGateway())
        placed = engine.place_order(user_id, [(product_id, 2)])
        audit_before = count_rows(AuditEntry)

        with pytest.raises(PaymentDeclinedError):
            engine.cancel_order(placed.order_id, "changed mind", Actor.system())

        order = store.read(Order, placed.order_id)
        assert order.status_enum == OrderStatus.PENDING
        assert order.cancellation_reason is None
        assert not any(item.stock_released for item in order.items)
        assert stock_of(product_id) == 3
        assert len(order.payments) == 1
        assert count_rows(AuditEntry) == audit_before

    def test_mismatched_refund_confirmation_rejected(
        self, store, clock, user_id, product_id, stock_of
    ):
        engine = OrderLifecycleEngine(store, clock=clock, gateway=ShortRefundGateway())
        placed = engine.place_order(user_id, [(product_id, 2)])

        with pytest.raises(PaymentDeclinedError):
            engine.cancel_order(placed.order_id, "changed mind", Actor.system())

        assert stock_of(product_id) == 3
        assert store.read(Order, placed.order_id).status_enum == OrderStatus.PENDING


class TestPartialRefundPolicy:

    @pytest.fixture
    def partial_engine(self, store, clock):
        return OrderLifecycleEngine(
            store, clock=clock, refund_policy=RefundPolicy.partial("0.5")
        )

    def test_partial_reversal_keeps_documented_remainder(
        self, partial_engine, store, user_id, product_id, stock_of
    ):
        placed = partial_engine.place_order(user_id, [(product_id, 2)])

        partial_engine.cancel_order(placed.order_id, "restocking fee", Actor.system())

        order = store.read(Order, placed.order_id)
        reversal = order.payments[-1]
        assert reversal.amount == Decimal("-10.00")
        assert reversal.refund_policy == "partial:0.5"
        assert _net(order) == Decimal("10.00")
        assert stock_of(product_id) == 5

    def test_partial_rounding(self, store, clock, user_id, create_product):
        engine = OrderLifecycleEngine(
            store, clock=clock, refund_policy=RefundPolicy.partial("0.333")
        )
        product = create_product("10.00", 1)
        placed = engine.place_order(user_id, [(product, 1)])

        engine.cancel_order(placed.order_id, "partial", Actor.system())

        order = store.read(Order, placed.order_id)
        assert order.payments[-1].amount == Decimal("-3.33")
        assert _net(order) == Decimal("6.67")

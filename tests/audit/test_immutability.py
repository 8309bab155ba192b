"""
Immutability enforcement tests.

Verifies that payments, audit entries, order items and orders cannot be
rewritten through the ORM once written.  Each violation raises
ImmutabilityViolationError and the transaction rolls back.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from fulfillment_kernel.domain.actor import Actor
from fulfillment_kernel.exceptions import ImmutabilityViolationError
from fulfillment_kernel.models.audit_entry import AuditEntry
from fulfillment_kernel.models.order import Order, OrderItem, OrderStatus
from fulfillment_kernel.models.payment import Payment


@pytest.fixture
def placed(engine, user_id, product_id):
    return engine.place_order(user_id, [(product_id, 2)])


def _first_entry(txn, order_id) -> AuditEntry:
    return txn.session.execute(
        select(AuditEntry).where(AuditEntry.order_id == order_id)
    ).scalars().first()


class TestPaymentImmutability:

    def test_update_blocked(self, store, placed):
        payment_id = store.read(Order, placed.order_id).payments[0].id

        def _edit(txn):
            txn.require(Payment, payment_id).amount = Decimal("1.00")
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_edit)
        assert store.read(Payment, payment_id).amount == Decimal("20.00")

    def test_delete_blocked(self, store, placed):
        payment_id = store.read(Order, placed.order_id).payments[0].id

        def _delete(txn):
            txn.session.delete(txn.require(Payment, payment_id))
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_delete)


class TestAuditEntryImmutability:

    def test_update_blocked(self, store, placed, captured_logs):
        def _edit(txn):
            _first_entry(txn, placed.order_id).reason = "rewritten"
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_edit)
        assert any(
            r["event"] == "immutability_violation_blocked" for r in captured_logs()
        )

    def test_delete_blocked(self, store, placed):
        def _delete(txn):
            txn.session.delete(_first_entry(txn, placed.order_id))
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_delete)


class TestOrderItemImmutability:

    def test_quantity_frozen(self, store, placed):
        item_id = store.read(Order, placed.order_id).items[0].id

        def _edit(txn):
            txn.require(OrderItem, item_id).quantity = 1
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_edit)
        assert store.read(OrderItem, item_id).quantity == 2

    def test_snapshot_price_frozen(self, store, placed):
        item_id = store.read(Order, placed.order_id).items[0].id

        def _edit(txn):
            txn.require(OrderItem, item_id).price_at_order_time = Decimal("0.01")
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_edit)

    def test_release_marker_cannot_be_cleared(self, engine, store, placed):
        engine.cancel_order(placed.order_id, "x", Actor.system())
        item_id = store.read(Order, placed.order_id).items[0].id

        def _clear(txn):
            item = txn.require(OrderItem, item_id)
            item.stock_released = False
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_clear)
        assert store.read(OrderItem, item_id).stock_released is True


class TestOrderImmutability:

    def test_total_frozen(self, store, placed):
        def _edit(txn):
            txn.require(Order, placed.order_id).total_amount = Decimal("0.00")
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_edit)

    def test_delete_blocked(self, store, placed):
        def _delete(txn):
            txn.session.delete(txn.require(Order, placed.order_id))
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_delete)

    def test_cancelled_order_frozen(self, engine, store, placed):
        engine.cancel_order(placed.order_id, "x", Actor.system())

        def _reopen(txn):
            order = txn.require(Order, placed.order_id)
            order.status = OrderStatus.PENDING.value
            order.cancelled_at = datetime(2024, 2, 1, tzinfo=timezone.utc)
            txn.session.flush()

        with pytest.raises(ImmutabilityViolationError):
            store.write(_reopen)
        assert store.read(Order, placed.order_id).status_enum == OrderStatus.CANCELLED

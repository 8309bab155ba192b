"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The order ledger is only trustworthy if its history cannot be rewritten.
Cancellation never edits the original charge or the original audit entries:
it appends a reversal Payment and a new AuditEntry.  This module makes any
attempt to bypass that rule fail loudly before SQL reaches the database.

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity      | Rule
------------|----------------------------------------------------------------
AuditEntry  | Never updated, never deleted
Payment     | Never updated, never deleted
OrderItem   | Only stock_released (False -> True) and stock_released_at may
            | change; never deleted
Order       | Never deleted; identity, owner, number and total frozen;
            | a CANCELLED order is frozen entirely

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INLINE IMPORTS?
   Models import from db, db imports from models.  Inline imports defer
   resolution until the function runs.

2. WHY CHECK ATTRIBUTE HISTORY?
   The release marker is the single legal mutation on an OrderItem.  The
   attribute history tells us exactly which columns are in the UPDATE.

===============================================================================
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from fulfillment_kernel.exceptions import ImmutabilityViolationError
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

ORDER_ITEM_MUTABLE_FIELDS = frozenset({"stock_released", "stock_released_at"})
ORDER_FROZEN_FIELDS = frozenset(
    {
        "user_id",
        "order_number",
        "total_amount",
        "order_date",
        "idempotency_key",
        "request_hash",
    }
)


def _blocked(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_columns(mapper, target) -> set[str]:
    return {
        attr.key
        for attr in mapper.column_attrs
        if get_history(target, attr.key).has_changes()
    }


def _check_audit_entry_update(mapper, connection, target):
    _blocked("AuditEntry", target, "UPDATE", "Audit entries are immutable")


def _check_audit_entry_delete(mapper, connection, target):
    _blocked("AuditEntry", target, "DELETE", "Audit entries cannot be deleted")


def _check_payment_update(mapper, connection, target):
    _blocked(
        "Payment", target, "UPDATE",
        "Payments are append-only; record a reversal instead",
    )


def _check_payment_delete(mapper, connection, target):
    _blocked("Payment", target, "DELETE", "Payments cannot be deleted")


def _check_order_item_update(mapper, connection, target):
    """
    Allow only the one-way stock release marker to change.

    Logic:
        1. Any change outside ORDER_ITEM_MUTABLE_FIELDS: block.
        2. stock_released going True -> False: block (would re-enable a
           second release and double-credit stock).
    """
    changed = _changed_columns(mapper, target)
    frozen = changed - ORDER_ITEM_MUTABLE_FIELDS
    if frozen:
        _blocked(
            "OrderItem", target, "UPDATE",
            f"Order items are read-only after creation (attempted: {sorted(frozen)})",
        )

    released = get_history(target, "stock_released")
    if released.deleted and released.deleted[0] and not target.stock_released:
        _blocked(
            "OrderItem", target, "UPDATE",
            "Stock release marker cannot be cleared",
        )


def _check_order_item_delete(mapper, connection, target):
    _blocked("OrderItem", target, "DELETE", "Order items cannot be deleted")


def _check_order_update(mapper, connection, target):
    from fulfillment_kernel.models.order import OrderStatus

    changed = _changed_columns(mapper, target) - {"updated_at"}
    frozen = changed & ORDER_FROZEN_FIELDS
    if frozen:
        _blocked(
            "Order", target, "UPDATE",
            f"Order fields are frozen after placement (attempted: {sorted(frozen)})",
        )

    status_history = get_history(target, "status")
    previous = (
        status_history.deleted[0]
        if status_history.deleted
        else (status_history.unchanged[0] if status_history.unchanged else None)
    )
    if previous is not None and OrderStatus(previous) == OrderStatus.CANCELLED and changed:
        _blocked("Order", target, "UPDATE", "Cancelled orders are frozen")


def _check_order_delete(mapper, connection, target):
    _blocked("Order", target, "DELETE", "Orders cannot be deleted")


def _listeners():
    from fulfillment_kernel.models.audit_entry import AuditEntry
    from fulfillment_kernel.models.order import Order, OrderItem
    from fulfillment_kernel.models.payment import Payment

    return [
        (AuditEntry, "before_update", _check_audit_entry_update),
        (AuditEntry, "before_delete", _check_audit_entry_delete),
        (Payment, "before_update", _check_payment_update),
        (Payment, "before_delete", _check_payment_delete),
        (OrderItem, "before_update", _check_order_item_update),
        (OrderItem, "before_delete", _check_order_item_delete),
        (Order, "before_update", _check_order_update),
        (Order, "before_delete", _check_order_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: a listener already registered is not added twice.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)

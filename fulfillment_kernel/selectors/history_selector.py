"""
Module: fulfillment_kernel.selectors.history_selector
Responsibility: Read path of the order audit trail.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Entries are returned in (occurred_at, seq) order; seq breaks ties
      between entries recorded at the same instant.
    - AuditHistory is lazy, finite, and restartable: nothing is read until
      iteration starts, and each new iteration opens a fresh read-only
      session, so a second pass sees entries committed since the first.

Failure modes:
    - OrderNotFoundError when iteration starts for an unknown order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator
from uuid import UUID

from sqlalchemy import select

from fulfillment_kernel.domain.dtos import AuditEntryView
from fulfillment_kernel.exceptions import OrderNotFoundError
from fulfillment_kernel.models.audit_entry import AuditEntry
from fulfillment_kernel.models.order import Order
from fulfillment_kernel.selectors.base import BaseSelector

if TYPE_CHECKING:
    from fulfillment_kernel.db.store import LedgerStore


class HistorySelector(BaseSelector):
    """Audit entries of one order as AuditEntryView DTOs."""

    def entries(self, order_id: UUID) -> list[AuditEntryView]:
        if self.session.get(Order, order_id) is None:
            raise OrderNotFoundError(str(order_id))
        rows = self.session.execute(
            select(AuditEntry)
            .where(AuditEntry.order_id == order_id)
            .order_by(AuditEntry.occurred_at, AuditEntry.seq)
        ).scalars()
        return [AuditEntryView.from_model(row) for row in rows]


class AuditHistory:
    """
    Restartable view of an order's status history.

    Usage:
        history = AuditHistory(store, order_id)
        path = [(e.from_status, e.to_status) for e in history]
    """

    def __init__(self, store: LedgerStore, order_id: UUID):
        self._store = store
        self.order_id = order_id

    def __iter__(self) -> Iterator[AuditEntryView]:
        with self._store.session_scope(read_only=True) as session:
            entries = HistorySelector(session).entries(self.order_id)
        yield from entries

    def __repr__(self) -> str:
        return f"<AuditHistory order={self.order_id}>"

    def statuses(self) -> list[str]:
        """Reconstructed status path, e.g. ['pending', 'cancelled']."""
        return [entry.to_status for entry in self]

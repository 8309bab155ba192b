"""
Module: fulfillment_kernel.models.audit_entry
Responsibility: ORM persistence for the append-only order status history.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only; no UPDATE or DELETE (ORM listeners in db/immutability.py).
    - Exactly one entry per order status transition, written in the same
      transaction as the status change (AuditLogger).
    - seq numbers an order's entries 1, 2, 3, ...  (order_id, seq) is
      unique; seq breaks ties between entries sharing a timestamp.
    - Per-order hash chain: hash = H(order_id | from | to | payload_hash |
      prev_hash), prev_hash = hash of the order's previous entry.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when AuditLogger.verify_chain detects a mismatch.

Audit relevance:
    Reading an order's entries in (occurred_at, seq) order reconstructs the
    full status path, from the creation entry (from_status=None) onwards.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, UUIDString


class AuditEntry(Base):
    """
    One recorded status transition of an order.

    Contract:
        AuditEntry rows are append-only.  from_status is None only for the
        creation entry of an order.
    """

    __tablename__ = "order_audit_entries"

    __table_args__ = (
        Index("idx_audit_order", "order_id", "occurred_at", "seq"),
        UniqueConstraint("order_id", "seq", name="uq_audit_order_seq"),
    )

    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    from_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    to_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # "user" or "system" (see domain/actor.py)
    actor_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )

    # User id, or a system component name; None for the anonymous system actor
    actor_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    reason: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    payload: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    payload_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    prev_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEntry order={self.order_id} "
            f"{self.from_status} -> {self.to_status}>"
        )

    @property
    def is_genesis(self) -> bool:
        """True for the first entry of an order's chain."""
        return self.prev_hash is None

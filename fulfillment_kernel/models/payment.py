"""
Module: fulfillment_kernel.models.payment
Responsibility: ORM persistence for the per-order payment reconciliation chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: payments are never updated or deleted (ORM listeners in
      db/immutability.py).  A refund is a new REVERSAL row with a negative
      amount, never an edit of the original CHARGE.
    - At most one CHARGE per order (partial unique index
      uq_payment_single_charge).  Any number of REVERSAL rows may follow.
    - seq orders the chain within an order (UNIQUE(order_id, seq)).

Audit relevance:
    The net of an order's payments (sum of all amounts) is the reconciled
    amount held for that order.  A cancelled order under the full-refund
    policy nets to zero.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from fulfillment_kernel.models.order import Order


class PaymentKind(str, Enum):
    """CHARGE is the primary payment; REVERSAL compensates it."""

    CHARGE = "charge"
    REVERSAL = "reversal"


class Payment(Base):
    """
    One record in an order's payment chain.

    Guarantees:
        - CHARGE amounts are > 0; REVERSAL amounts are < 0.
        - gateway_reference is the external confirmation for the amount.
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("order_id", "seq", name="uq_payment_order_seq"),
        Index(
            "uq_payment_single_charge",
            "order_id",
            unique=True,
            sqlite_where=text("kind = 'charge'"),
            postgresql_where=text("kind = 'charge'"),
        ),
        Index("idx_payment_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    # Position within the order's chain, starting at 1
    seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    kind: Mapped[PaymentKind] = mapped_column(
        String(20),
        nullable=False,
    )

    payment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    payment_method: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    gateway_reference: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    # Set for reversals: the policy that produced the amount
    refund_policy: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    order: Mapped["Order"] = relationship(back_populates="payments")

    @property
    def kind_enum(self) -> PaymentKind:
        if isinstance(self.kind, PaymentKind):
            return self.kind
        return PaymentKind(self.kind)

    @property
    def is_reversal(self) -> bool:
        return self.kind_enum == PaymentKind.REVERSAL

    def __repr__(self) -> str:
        return f"<Payment {self.kind_enum.value} {self.amount} order={self.order_id}>"

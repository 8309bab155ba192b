"""
Module: fulfillment_kernel.models.order
Responsibility: ORM persistence for orders and their line items, plus the
    order status state machine.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - total_amount == sum(quantity * price_at_order_time) over the order's
      items.  Computed once by OrderLifecycleEngine at placement; items are
      frozen afterwards, so the equality holds for the order's lifetime.
    - price_at_order_time is a copy taken at item creation and never
      recalculated from Product.price.
    - order_number is unique and increasing (allocated by SequenceService).
    - idempotency_key is unique when present; request_hash fingerprints the
      placement request it was first used with.
    - Status transitions follow VALID_TRANSITIONS.
    - OrderItem rows are immutable except for the stock-release marker
      (ORM listeners in db/immutability.py).

Failure modes:
    - IntegrityError on duplicate order_number or idempotency_key.
    - ImmutabilityViolationError on edits to frozen OrderItem fields.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import Base, TimestampedBase, UUIDString

if TYPE_CHECKING:
    from fulfillment_kernel.models.payment import Payment


class OrderStatus(str, Enum):
    """
    Lifecycle status of an order.

    State machine:
        PENDING -> COMPLETED | CANCELLED
        COMPLETED -> CANCELLED
        CANCELLED: terminal
    """

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Allowed state transitions (from -> set of valid targets)
VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.COMPLETED, OrderStatus.CANCELLED,
    }),
    OrderStatus.COMPLETED: frozenset({
        OrderStatus.CANCELLED,
    }),
    OrderStatus.CANCELLED: frozenset(),
}


class Order(TimestampedBase):
    """
    Order header.

    Contract:
        Owned by exactly one User.  Status changes only through
        OrderLifecycleEngine, which pairs every change with one AuditEntry.

    Guarantees:
        - status starts as PENDING.
        - cancellation_reason and cancelled_at are set together, once.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_order_number"),
        UniqueConstraint("idempotency_key", name="uq_order_idempotency"),
        Index("idx_order_user", "user_id"),
        Index("idx_order_status", "status"),
    )

    order_number: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    order_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    total_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    status: Mapped[OrderStatus] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING.value,
    )

    cancellation_reason: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Caller-supplied key; a replayed PlaceOrder returns the existing order
    idempotency_key: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    # SHA-256 of the keyed request (user, line items, payment method)
    request_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        order_by="OrderItem.line_no",
        lazy="selectin",
    )

    payments: Mapped[list["Payment"]] = relationship(
        back_populates="order",
        order_by="Payment.seq",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Order #{self.order_number} status={self.status_str}>"

    @property
    def status_enum(self) -> OrderStatus:
        """Return status as OrderStatus enum (normalizes raw DB strings)."""
        if isinstance(self.status, OrderStatus):
            return self.status
        return OrderStatus(self.status)

    @property
    def status_str(self) -> str:
        """Return status as a plain string value."""
        return self.status_enum.value

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.status_enum]

    def can_transition_to(self, target: OrderStatus) -> bool:
        return target in VALID_TRANSITIONS[self.status_enum]

    @property
    def items_total(self) -> Decimal:
        """Recompute the total from the line items."""
        return sum(
            (item.line_total for item in self.items),
            Decimal("0.00"),
        )


class OrderItem(Base):
    """
    One line of an order with its snapshot price.

    Contract:
        Read-only after creation, except that stock_released flips from
        False to True exactly once when cancellation returns the quantity
        to stock.  The flag is the per-item guard that makes stock release
        safe against retried cancellations.
    """

    __tablename__ = "order_items"

    __table_args__ = (
        UniqueConstraint("order_id", "line_no", name="uq_order_item_line"),
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
        Index("idx_order_item_order", "order_id"),
        Index("idx_order_item_product", "product_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    # 1-based position within the order
    line_no: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    price_at_order_time: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    stock_released: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    stock_released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    order: Mapped["Order"] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return (
            f"<OrderItem {self.order_id}#{self.line_no} "
            f"{self.quantity} x {self.price_at_order_time}>"
        )

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.price_at_order_time

"""
DTOs -- Immutable request, result, and view objects.

Responsibility:
    Defines the data structures that cross the kernel boundary: the request
    types accepted by FulfillmentService (PlaceOrder, CancelOrder,
    CompleteOrder, GetOrderHistory), their results, the LineItem input, and
    the AuditEntryView returned by history reads.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from services and selectors (never from domain logic).

Invariants enforced:
    - Domain callers receive DTOs, never ORM entities.  Detached ORM
      instances would otherwise leak session state across threads.

Failure modes:
    - None at construction beyond coercion errors.  Quantity, amount and
      emptiness checks are made by OrderLifecycleEngine, which raises the
      typed ValidationError.

Data flow:
    PlaceOrder -> OrderLifecycleEngine.place_order -> PlacedOrder -> PlaceOrderResult
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from fulfillment_kernel.domain.actor import Actor

if TYPE_CHECKING:
    from fulfillment_kernel.models.audit_entry import AuditEntry as AuditEntryModel


def _as_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


@dataclass(frozen=True)
class LineItem:
    """One requested (product, quantity) pair of a placement."""

    product_id: UUID
    quantity: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "product_id", _as_uuid(self.product_id))

    @classmethod
    def of(cls, pair: LineItem | tuple[UUID | str, int]) -> LineItem:
        if isinstance(pair, LineItem):
            return pair
        product_id, quantity = pair
        return cls(product_id, quantity)


@dataclass(frozen=True)
class PlacedOrder:
    """Outcome of OrderLifecycleEngine.place_order."""

    order_id: UUID
    order_number: int
    total_amount: Decimal
    replayed: bool = False


@dataclass(frozen=True)
class AuditEntryView:
    """Read-only view of one recorded status transition."""

    entry_id: UUID
    seq: int
    order_id: UUID
    from_status: str | None
    to_status: str
    occurred_at: datetime
    actor_type: str
    actor_id: str | None
    reason: str | None
    hash: str
    prev_hash: str | None

    @classmethod
    def from_model(cls, entry: AuditEntryModel) -> AuditEntryView:
        return cls(
            entry_id=entry.id,
            seq=entry.seq,
            order_id=entry.order_id,
            from_status=entry.from_status,
            to_status=entry.to_status,
            occurred_at=entry.occurred_at,
            actor_type=entry.actor_type,
            actor_id=entry.actor_id,
            reason=entry.reason,
            hash=entry.hash,
            prev_hash=entry.prev_hash,
        )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlaceOrder:
    user_id: UUID
    line_items: tuple[LineItem, ...]
    payment_method: str | None = None
    idempotency_key: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_id", _as_uuid(self.user_id))
        object.__setattr__(
            self, "line_items", tuple(LineItem.of(item) for item in self.line_items)
        )


@dataclass(frozen=True)
class CancelOrder:
    order_id: UUID
    reason: str
    actor: Actor

    def __post_init__(self) -> None:
        object.__setattr__(self, "order_id", _as_uuid(self.order_id))


@dataclass(frozen=True)
class CompleteOrder:
    order_id: UUID
    actor: Actor | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "order_id", _as_uuid(self.order_id))


@dataclass(frozen=True)
class GetOrderHistory:
    order_id: UUID

    def __post_init__(self) -> None:
        object.__setattr__(self, "order_id", _as_uuid(self.order_id))


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlaceOrderResult:
    order_id: UUID
    total_amount: Decimal
    order_number: int | None = None


@dataclass(frozen=True)
class CancelOrderResult:
    order_id: UUID
    status: str


@dataclass(frozen=True)
class CompleteOrderResult:
    order_id: UUID
    status: str


@dataclass(frozen=True)
class ProductSnapshot:
    """Catalog view of a product returned by CatalogService.get_product."""

    product_id: UUID
    name: str
    description: str | None
    price: Decimal
    stock_quantity: int

"""
Module: fulfillment_kernel.models.product
Responsibility: ORM persistence for catalog products and their stock level.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - stock_quantity >= 0 (CHECK constraint ck_product_stock_non_negative).
      The InventoryManager checks first and raises InsufficientStockError;
      the constraint is the last line if that check is ever bypassed.
    - price is a rounded Decimal >= 0 (validated by CatalogService).

Failure modes:
    - IntegrityError if a write would make stock_quantity negative.

Audit relevance:
    Price and stock change independently of historical orders.  Orders
    never hold a reference to the current price; OrderItem snapshots it.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TimestampedBase


class Product(TimestampedBase):
    """
    A sellable product with a current price and stock level.

    Contract:
        stock_quantity is mutated ONLY by InventoryManager.reserve_stock()
        and InventoryManager.release_stock(), always inside a ledger
        transaction that also writes the matching OrderItem and AuditEntry.
    """

    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint(
            "stock_quantity >= 0",
            name="ck_product_stock_non_negative",
        ),
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        String(4000),
        nullable=True,
    )

    # Current price; snapshotted into OrderItem.price_at_order_time
    price: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    stock_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<Product {self.name} price={self.price} stock={self.stock_quantity}>"

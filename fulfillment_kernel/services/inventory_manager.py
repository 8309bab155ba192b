"""
InventoryManager -- sole mutator of Product.stock_quantity.

Responsibility:
    Decrements stock when an order line is placed and returns it when the
    order is cancelled.  Both operations run inside the caller's ledger
    transaction, which also writes the OrderItem and AuditEntry they belong
    to, so stock and order history never diverge.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by OrderLifecycleEngine only.

Invariants enforced:
    - stock_quantity never goes negative.  The check happens against the
      row read under the product's lock, before any mutation.
    - Each OrderItem returns its quantity at most once.  The
      ``stock_released`` marker flips False -> True in the same flush as the
      increment; the ORM immutability listener forbids clearing it.

Failure modes:
    - InsufficientStockError when a reservation would go below zero.  The
      caller's transaction aborts, so no partial decrement survives.
    - ProductNotFoundError for an unknown product id.
    - ValidationError for a non-positive or non-integer quantity.

Audit relevance:
    ``stock_reserved`` and ``stock_released`` log lines carry the product,
    quantity and resulting level for every mutation.
"""

from uuid import UUID

from sqlalchemy import select

from fulfillment_kernel.exceptions import (
    InsufficientStockError,
    ProductNotFoundError,
    ValidationError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.order import OrderItem
from fulfillment_kernel.models.product import Product
from fulfillment_kernel.services.base import BaseService

logger = get_logger("services.inventory")


def validate_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity", f"must be an integer, got {quantity!r}")
    if quantity <= 0:
        raise ValidationError("quantity", f"must be positive, got {quantity}")


class InventoryManager(BaseService):
    """
    Stock reservation and release inside a ledger transaction.

    Contract:
        The caller holds the product's entity lock (see db/locks.py) for the
        whole transaction.  On PostgreSQL the row is additionally read with
        SELECT ... FOR UPDATE.
    """

    def _load_product(self, product_id: UUID) -> Product:
        product = self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def reserve_stock(self, product_id: UUID, quantity: int) -> Product:
        """
        Decrement a product's stock by ``quantity``.

        Returns:
            The locked Product row, so callers can snapshot its price from
            the same read.

        Raises:
            InsufficientStockError: Stock would become negative.
        """
        validate_quantity(quantity)
        product = self._load_product(product_id)

        if product.stock_quantity < quantity:
            logger.info(
                "stock_insufficient",
                extra={
                    "product_id": str(product_id),
                    "requested": quantity,
                    "available": product.stock_quantity,
                },
            )
            raise InsufficientStockError(
                str(product_id), quantity, product.stock_quantity
            )

        product.stock_quantity -= quantity
        self.session.flush()

        logger.info(
            "stock_reserved",
            extra={
                "product_id": str(product_id),
                "quantity": quantity,
                "stock_after": product.stock_quantity,
            },
        )
        return product

    def release_stock(self, order_item: OrderItem) -> bool:
        """
        Return an order line's quantity to stock, once.

        Returns:
            True if stock was credited, False if this item was already
            released (a retried cancellation).
        """
        if order_item.stock_released:
            logger.info(
                "stock_release_skipped",
                extra={
                    "order_item_id": str(order_item.id),
                    "product_id": str(order_item.product_id),
                },
            )
            return False

        product = self._load_product(order_item.product_id)
        product.stock_quantity += order_item.quantity
        order_item.stock_released = True
        order_item.stock_released_at = self.clock.now()
        self.session.flush()

        logger.info(
            "stock_released",
            extra={
                "product_id": str(order_item.product_id),
                "order_item_id": str(order_item.id),
                "quantity": order_item.quantity,
                "stock_after": product.stock_quantity,
            },
        )
        return True

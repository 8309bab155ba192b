"""
CatalogService -- minimal user directory and product catalog.

Responsibility:
    Seeds the Users and Products that orders refer to, and changes product
    prices.  Stock is set once when a product is added; afterwards only the
    InventoryManager mutates it.

Architecture position:
    Kernel > Services.  Thin glue over LedgerStore; each method is one
    write() or read() call.

Invariants enforced:
    - Prices are rounded Decimals >= 0 (floats rejected).
    - Initial stock is a non-negative integer.
    - Email addresses are unique.
    - A price change never touches existing OrderItems: their
      price_at_order_time is a copy, not a reference.

Failure modes:
    - ValidationError for bad prices, stock, or a duplicate email.
    - ProductNotFoundError from update_price/get_product.
"""

from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import select

from fulfillment_kernel.db.locks import product_key
from fulfillment_kernel.db.store import LedgerStore, LedgerTransaction
from fulfillment_kernel.db.types import ZERO, money
from fulfillment_kernel.domain.dtos import ProductSnapshot
from fulfillment_kernel.exceptions import ValidationError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.product import Product
from fulfillment_kernel.models.user import User

logger = get_logger("services.catalog")


def _price(value) -> Decimal:
    try:
        price = money(value)
    except TypeError as exc:
        raise ValidationError("price", str(exc)) from exc
    except InvalidOperation as exc:
        raise ValidationError("price", f"not a number: {value!r}") from exc
    except ValueError as exc:
        raise ValidationError("price", f"must be finite, got {value!r}") from exc
    if price < ZERO:
        raise ValidationError("price", f"must be >= 0, got {price}")
    return price


class CatalogService:
    """
    User registration and product catalog maintenance.

    Usage:
        catalog = CatalogService(store)
        user_id = catalog.register_user("Ada", "ada@example.com")
        product_id = catalog.add_product("Widget", Decimal("10.00"), stock_quantity=5)
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    def register_user(
        self,
        name: str,
        email: str,
        address: str | None = None,
    ) -> UUID:
        if not name or not name.strip():
            raise ValidationError("name", "is required")
        if not email or "@" not in email:
            raise ValidationError("email", f"not an email address: {email!r}")
        email = email.strip().lower()

        def _register(txn: LedgerTransaction) -> UUID:
            taken = txn.session.execute(
                select(User.id).where(User.email == email)
            ).scalar_one_or_none()
            if taken is not None:
                raise ValidationError("email", f"{email} is already registered")
            user = User(name=name.strip(), email=email, address=address)
            txn.add(user)
            return user.id

        user_id = self.store.write(_register)
        logger.info("user_registered", extra={"user_id": str(user_id)})
        return user_id

    def add_product(
        self,
        name: str,
        price: Decimal | str,
        stock_quantity: int = 0,
        description: str | None = None,
    ) -> UUID:
        if not name or not name.strip():
            raise ValidationError("name", "is required")
        price = _price(price)
        if isinstance(stock_quantity, bool) or not isinstance(stock_quantity, int):
            raise ValidationError("stock_quantity", "must be an integer")
        if stock_quantity < 0:
            raise ValidationError("stock_quantity", f"must be >= 0, got {stock_quantity}")

        def _add(txn: LedgerTransaction) -> UUID:
            product = Product(
                name=name.strip(),
                description=description,
                price=price,
                stock_quantity=stock_quantity,
            )
            txn.add(product)
            return product.id

        product_id = self.store.write(_add)
        logger.info(
            "product_added",
            extra={
                "product_id": str(product_id),
                "price": str(price),
                "stock_quantity": stock_quantity,
            },
        )
        return product_id

    def update_price(self, product_id: UUID, price: Decimal | str) -> Decimal:
        """Set a product's current price; returns the previous price."""
        price = _price(price)

        def _update(txn: LedgerTransaction) -> Decimal:
            product = txn.require(Product, product_id, for_update=True)
            previous = product.price
            product.price = price
            txn.session.flush()
            return previous

        previous = self.store.write(_update, lock_keys=[product_key(product_id)])
        logger.info(
            "product_price_changed",
            extra={
                "product_id": str(product_id),
                "previous_price": str(previous),
                "price": str(price),
            },
        )
        return previous

    def get_product(self, product_id: UUID) -> ProductSnapshot:
        product = self.store.read(Product, product_id)
        return ProductSnapshot(
            product_id=product.id,
            name=product.name,
            description=product.description,
            price=product.price,
            stock_quantity=product.stock_quantity,
        )

    def get_user(self, user_id: UUID) -> User:
        """Detached User row; raises UserNotFoundError."""
        return self.store.read(User, user_id)

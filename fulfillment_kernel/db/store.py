"""
Module: fulfillment_kernel.db.store
Responsibility: The ledger store -- durable keyed storage for users, products,
    orders, order items, payments, and audit entries, with atomic
    multi-record transactions.
Architecture position: Kernel > DB.  Owns the Engine, the session factory,
    and the EntityLockManager.  Services receive a LedgerTransaction and
    only flush; the store alone commits or rolls back.

Invariants enforced:
    - Atomicity: write(fn) commits every change fn made, or none of them.
      Any exception raised inside fn rolls the whole transaction back and
      propagates unchanged.
    - Serialization: write() holds the per-entity locks named by lock_keys
      for the whole transaction.  On PostgreSQL, rows read with
      for_update=True are additionally locked with SELECT ... FOR UPDATE
      under a per-transaction lock_timeout.
    - Bounded waits: entity lock acquisition and PostgreSQL row lock waits
      are bounded by lock_timeout_seconds; the SQLite write lock wait by
      sqlite_busy_timeout_seconds.  Expiry surfaces as ContentionError with
      nothing persisted.
    - Transactions on disjoint entities never share a lock.  On SQLite the
      database write lock still orders them one at a time, so a writer
      queues behind an unrelated one instead of failing.

Failure modes:
    - EntityNotFoundError (or the typed User/Product/Order subclass) from
      read() and LedgerTransaction.require().
    - ContentionError when locks cannot be acquired in time.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, Generator, Iterable, TypeVar
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from fulfillment_kernel.db.base import Base
from fulfillment_kernel.db.engine import (
    SQLITE_BEGIN_MODE,
    create_engine_from_url,
    is_lock_timeout,
    is_postgres,
)
from fulfillment_kernel.db.immutability import register_immutability_listeners
from fulfillment_kernel.db.locks import EntityLockManager
from fulfillment_kernel.exceptions import (
    ContentionError,
    EntityNotFoundError,
    NotFoundError,
    OrderNotFoundError,
    ProductNotFoundError,
    UserNotFoundError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models import (
    AuditEntry,
    Order,
    OrderItem,
    Payment,
    Product,
    User,
)

logger = get_logger("db.store")

T = TypeVar("T")

ENTITY_TYPES: dict[str, type[Base]] = {
    "user": User,
    "product": Product,
    "order": Order,
    "order_item": OrderItem,
    "payment": Payment,
    "audit_entry": AuditEntry,
}

_NOT_FOUND: dict[type[Base], Callable[[str], NotFoundError]] = {
    User: UserNotFoundError,
    Product: ProductNotFoundError,
    Order: OrderNotFoundError,
}


def _resolve_model(entity_type: str | type[Base]) -> type[Base]:
    if isinstance(entity_type, str):
        try:
            return ENTITY_TYPES[entity_type]
        except KeyError:
            raise ValueError(f"Unknown entity type: {entity_type!r}") from None
    return entity_type


def not_found(model: type[Base], entity_id: UUID) -> NotFoundError:
    """Build the typed not-found error for a model."""
    factory = _NOT_FOUND.get(model)
    if factory is not None:
        return factory(str(entity_id))
    return EntityNotFoundError(model.__name__, str(entity_id))


class LedgerTransaction:
    """
    Mutation context handed to a write() callback.

    Contract:
        Valid only inside the write() call that created it.  Callers flush
        through the session; they never commit or roll back.
    """

    def __init__(self, session: Session, postgres: bool):
        self.session = session
        self._postgres = postgres

    def get(
        self,
        entity_type: str | type[T],
        entity_id: UUID,
        *,
        for_update: bool = False,
    ) -> T | None:
        model = _resolve_model(entity_type)
        stmt = select(model).where(model.id == entity_id)
        if for_update and self._postgres:
            stmt = stmt.with_for_update()
        return self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def require(
        self,
        entity_type: str | type[T],
        entity_id: UUID,
        *,
        for_update: bool = False,
    ) -> T:
        """Like get(), but raise the typed NotFoundError on a miss."""
        entity = self.get(entity_type, entity_id, for_update=for_update)
        if entity is None:
            raise not_found(_resolve_model(entity_type), entity_id)
        return entity

    def add(self, entity: Base) -> None:
        self.session.add(entity)
        self.session.flush()


class LedgerStore:
    """
    Durable ledger storage with atomic, lock-scoped transactions.

    Usage:
        store = LedgerStore("sqlite:////tmp/orders.db")
        store.create_tables()

        def _txn(txn: LedgerTransaction) -> UUID:
            product = txn.require(Product, product_id, for_update=True)
            product.stock_quantity -= 1
            return product.id

        store.write(_txn, lock_keys=[product_key(product_id)])
    """

    def __init__(
        self,
        database_url: str,
        *,
        lock_timeout_seconds: float = 5.0,
        sqlite_busy_timeout_seconds: float = 30.0,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 10,
    ):
        self.database_url = database_url
        self.lock_timeout_seconds = lock_timeout_seconds
        self.sqlite_busy_timeout_seconds = sqlite_busy_timeout_seconds
        self.engine = create_engine_from_url(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            busy_timeout_seconds=sqlite_busy_timeout_seconds,
        )
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._postgres = is_postgres(self.engine)
        self.locks = EntityLockManager(lock_timeout_seconds)
        register_immutability_listeners()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def create_tables(self) -> None:
        """Create all tables (idempotent)."""
        # Registers SequenceCounter on Base.metadata
        import fulfillment_kernel.services.sequence_service  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.info("tables_created", extra={"tables": len(Base.metadata.tables)})

    def drop_tables(self) -> None:
        """Drop all tables. Use with caution - primarily for testing."""
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @contextmanager
    def session_scope(self, read_only: bool = False) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        On normal exit the session is committed (read-only scopes are simply
        closed, leaving loaded instances usable) and closed.  On exception it
        is rolled back and closed, and the exception is re-raised to the
        caller.
        """
        session = self._session_factory()
        if read_only:
            # Readers never need the SQLite write lock
            session.connection(execution_options={SQLITE_BEGIN_MODE: "DEFERRED"})
        logger.debug("transaction_started", extra={"read_only": read_only})
        try:
            yield session
            if not read_only:
                session.commit()
                logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def read(self, entity_type: str | type[T], entity_id: UUID) -> T:
        """
        Load one entity by id.

        Returns a detached instance; eager relationships (order items,
        payments) are loaded.

        Raises:
            NotFoundError: No entity of that type with that id.
        """
        model = _resolve_model(entity_type)
        with self.session_scope(read_only=True) as session:
            entity = session.get(model, entity_id)
            if entity is None:
                raise not_found(model, entity_id)
            session.expunge(entity)
            return entity

    def write(
        self,
        fn: Callable[[LedgerTransaction], T],
        lock_keys: Iterable[str] = (),
    ) -> T:
        """
        Run fn inside one atomic transaction and return its result.

        Args:
            fn: Callback receiving the LedgerTransaction.  Everything it
                flushes commits together, or not at all.
            lock_keys: Entity lock keys (see db/locks.py) to hold for the
                whole transaction.

        Raises:
            ContentionError: Locks not acquired within the bounded timeout.
            Any exception raised by fn, unchanged, after rollback.
        """
        try:
            with self.locks.acquire(lock_keys):
                with self.session_scope() as session:
                    if self._postgres:
                        timeout_ms = int(self.lock_timeout_seconds * 1000)
                        session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
                    return fn(LedgerTransaction(session, self._postgres))
        except OperationalError as exc:
            if is_lock_timeout(exc):
                waited = (
                    self.lock_timeout_seconds
                    if self._postgres
                    else self.sqlite_busy_timeout_seconds
                )
                raise ContentionError("database", waited) from exc
            raise


def retry_on_contention(
    fn: Callable[[], T],
    attempts: int = 3,
    backoff_seconds: float = 0.05,
) -> T:
    """
    Call fn, retrying when it raises ContentionError.

    Only ContentionError is retried: it guarantees nothing was persisted, so
    repeating the same input is safe.  The last ContentionError propagates
    once attempts are exhausted.
    """
    for attempt in range(attempts):
        try:
            return fn()
        except ContentionError as exc:
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "contention_retry",
                extra={
                    "attempt": attempt + 1,
                    "max_attempts": attempts,
                    "resource": exc.resource,
                },
            )
            time.sleep(backoff_seconds * (attempt + 1))
    raise ValueError("attempts must be >= 1")

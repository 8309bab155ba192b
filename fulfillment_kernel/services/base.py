"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    service that runs inside a ledger transaction.  Concrete services receive
    the Session of the enclosing LedgerStore.write() call and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    InventoryManager, PaymentReconciler, AuditLogger and SequenceService all
    extend this class.  OrderLifecycleEngine builds them per transaction.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction
      and never commit or roll back themselves.  LedgerStore owns
      commit/rollback, so stock, items, payments and audit entries of one
      operation land together or not at all.

Failure modes:
    - A subclass that calls ``session.commit()`` breaks the atomicity of
      placement and cancellation.
"""

from abc import ABC

from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for transaction-scoped kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide history reads -- those belong in
          ``fulfillment_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source. Defaults to SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()

"""
OrderLifecycleEngine -- placement, completion, and cancellation of orders.

Responsibility:
    Drives the order state machine and coordinates the InventoryManager,
    PaymentReconciler and AuditLogger so that every operation is one atomic
    ledger transaction.

Architecture position:
    Kernel > Services -- orchestration.  Owns the LedgerStore write calls;
    builds the transaction-scoped services from each LedgerTransaction's
    session.  FulfillmentService is its only production caller.

    place_order:
        validate input -> lock products -> check user -> allocate number
        -> reserve stock + snapshot price per line -> insert order and items
        -> record charge -> audit (None -> pending)

    cancel_order:
        read item products -> lock order + products -> check transition
        -> release unreleased items -> reverse payments -> mark cancelled
        -> audit (from -> cancelled)

Invariants enforced:
    - total_amount == sum(quantity * price_at_order_time), computed once from
      the snapshot prices written to the items.
    - price_at_order_time is copied from the product row read under its lock
      and never recomputed.
    - Every status change is paired with exactly one AuditEntry in the same
      transaction.
    - An illegal transition raises before any side effect.
    - Locks are acquired in sorted key order before the transaction opens.

Failure modes:
    - ValidationError: empty line items, malformed product ids, bad
      quantities, non-string reason.
    - UserNotFoundError / ProductNotFoundError / OrderNotFoundError.
    - InsufficientStockError: any line short of stock; nothing persists.
    - InvalidTransitionError: completion from a non-pending order or
      cancellation of a cancelled one; nothing persists.
    - ContentionError: locks not acquired in time; safe to retry.
    - IdempotencyConflictError: a known idempotency_key with a different
      user, line items, or payment method.
    - PaymentDeclinedError: gateway refused a charge or refund.

Audit relevance:
    ``order_placed``, ``order_completed`` and ``order_cancelled`` log lines
    carry order id, number and amounts; the AuditEntry chain records actor
    and reason durably.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fulfillment_kernel.db.locks import order_key, product_key
from fulfillment_kernel.db.store import LedgerStore, LedgerTransaction
from fulfillment_kernel.db.types import ZERO
from fulfillment_kernel.domain.actor import SYSTEM_ACTOR, Actor
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import (
    CancelOrderResult,
    CompleteOrderResult,
    LineItem,
    PlacedOrder,
)
from fulfillment_kernel.domain.gateway import LedgerOnlyGateway, PaymentGateway
from fulfillment_kernel.domain.refund_policy import RefundPolicy
from fulfillment_kernel.exceptions import (
    IdempotencyConflictError,
    InvalidTransitionError,
    NothingToReverseError,
    UserNotFoundError,
    ValidationError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.order import Order, OrderItem, OrderStatus
from fulfillment_kernel.models.user import User
from fulfillment_kernel.selectors.history_selector import AuditHistory
from fulfillment_kernel.services.audit_logger import AuditLogger
from fulfillment_kernel.services.inventory_manager import (
    InventoryManager,
    validate_quantity,
)
from fulfillment_kernel.services.payment_reconciler import (
    DEFAULT_PAYMENT_METHOD,
    PaymentReconciler,
)
from fulfillment_kernel.services.sequence_service import SequenceService
from fulfillment_kernel.utils.hashing import hash_payload

logger = get_logger("services.order_lifecycle")

MAX_REASON_LENGTH = 1000


def _coerce_id(field: str, value: UUID | str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise ValidationError(field, f"not a valid id: {value!r}") from exc


def _normalize_line_items(line_items: Iterable) -> list[LineItem]:
    try:
        items = [LineItem.of(item) for item in line_items]
    except (TypeError, ValueError) as exc:
        raise ValidationError("line_items", str(exc)) from exc
    if not items:
        raise ValidationError("line_items", "an order needs at least one line")
    for item in items:
        validate_quantity(item.quantity)
    return items


def _request_hash(user_id: UUID, items: list[LineItem], method: str) -> str:
    return hash_payload(
        {
            "user_id": str(user_id),
            "line_items": [[str(item.product_id), item.quantity] for item in items],
            "payment_method": method,
        }
    )


class _TransactionServices:
    """Services bound to one LedgerTransaction."""

    def __init__(self, txn: LedgerTransaction, engine: OrderLifecycleEngine):
        session = txn.session
        self.inventory = InventoryManager(session, engine.clock)
        self.payments = PaymentReconciler(
            session,
            engine.clock,
            gateway=engine.gateway,
            refund_policy=engine.refund_policy,
        )
        self.audit = AuditLogger(session, engine.clock)
        self.sequences = SequenceService(session, engine.clock)


class OrderLifecycleEngine:
    """
    Order state machine over a LedgerStore.

    Contract:
        Every public method is one LedgerStore.write() call (plus, for
        cancellation, a read-only pre-read).  Results are DTOs; no ORM
        instance escapes.

    Usage:
        engine = OrderLifecycleEngine(store, clock=SystemClock())
        placed = engine.place_order(user_id, [(product_id, 2)])
        engine.cancel_order(placed.order_id, "changed mind", Actor.user(user_id))
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock | None = None,
        gateway: PaymentGateway | None = None,
        refund_policy: RefundPolicy | None = None,
        default_payment_method: str = DEFAULT_PAYMENT_METHOD,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.gateway = gateway or LedgerOnlyGateway()
        self.refund_policy = refund_policy or RefundPolicy.full()
        self.default_payment_method = default_payment_method

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def _replay(self, order: Order, key: str, request_hash: str) -> PlacedOrder:
        if order.request_hash != request_hash:
            logger.warning(
                "idempotency_conflict",
                extra={"order_id": str(order.id), "idempotency_key": key},
            )
            raise IdempotencyConflictError(key, str(order.id))
        return PlacedOrder(
            order_id=order.id,
            order_number=order.order_number,
            total_amount=order.total_amount,
            replayed=True,
        )

    def _find_by_idempotency_key(
        self, key: str, request_hash: str
    ) -> PlacedOrder | None:
        with self.store.session_scope(read_only=True) as session:
            order = session.execute(
                select(Order).where(Order.idempotency_key == key)
            ).scalar_one_or_none()
            if order is None:
                return None
            return self._replay(order, key, request_hash)

    def place_order(
        self,
        user_id: UUID,
        line_items: Iterable[LineItem | tuple[UUID, int]],
        payment_method: str | None = None,
        idempotency_key: str | None = None,
        actor: Actor | None = None,
    ) -> PlacedOrder:
        """
        Create a pending order with snapshot prices, reserved stock, its
        primary charge and its creation audit entry.

        Postconditions:
            - On success every line's stock is reserved and the order total
              equals the sum of its line totals.
            - On any failure no order, item, payment, audit entry, or stock
              change exists.
            - A repeated idempotency_key with the same user, line items and
              payment method returns the original order with
              ``replayed=True`` and changes nothing.

        Raises:
            IdempotencyConflictError: idempotency_key was already used for a
                different request.  Nothing is written.
        """
        user_id = _coerce_id("user_id", user_id)
        items = _normalize_line_items(line_items)
        method = payment_method or self.default_payment_method
        request_hash = None

        if idempotency_key is not None:
            request_hash = _request_hash(user_id, items, method)
            existing = self._find_by_idempotency_key(idempotency_key, request_hash)
            if existing is not None:
                logger.info(
                    "order_replayed",
                    extra={
                        "order_id": str(existing.order_id),
                        "idempotency_key": idempotency_key,
                    },
                )
                return existing

        actor = actor or Actor.user(user_id)
        lock_keys = [product_key(item.product_id) for item in items]

        def _place(txn: LedgerTransaction) -> PlacedOrder:
            if idempotency_key is not None:
                replay = txn.session.execute(
                    select(Order).where(Order.idempotency_key == idempotency_key)
                ).scalar_one_or_none()
                if replay is not None:
                    return self._replay(replay, idempotency_key, request_hash)

            if txn.get(User, user_id) is None:
                raise UserNotFoundError(str(user_id))

            services = _TransactionServices(txn, self)
            now = self.clock.now()
            order_id = uuid4()

            snapshots: list[tuple[LineItem, Decimal]] = []
            for item in items:
                product = services.inventory.reserve_stock(
                    item.product_id, item.quantity
                )
                snapshots.append((item, product.price))

            total = sum(
                (item.quantity * price for item, price in snapshots), ZERO
            )

            order = Order(
                id=order_id,
                order_number=services.sequences.next_value(
                    SequenceService.ORDER_NUMBER
                ),
                user_id=user_id,
                order_date=now,
                total_amount=total,
                status=OrderStatus.PENDING.value,
                idempotency_key=idempotency_key,
                request_hash=request_hash,
            )
            txn.add(order)

            for line_no, (item, price) in enumerate(snapshots, start=1):
                txn.session.add(
                    OrderItem(
                        order_id=order_id,
                        line_no=line_no,
                        product_id=item.product_id,
                        quantity=item.quantity,
                        price_at_order_time=price,
                        created_at=now,
                    )
                )
            txn.session.flush()

            if total > ZERO:
                services.payments.record_charge(order_id, method, total)

            services.audit.append(
                order_id, None, OrderStatus.PENDING.value, actor
            )
            return PlacedOrder(order_id, order.order_number, total)

        with LogContext.bind(actor_id=actor.actor_id):
            try:
                placed = self.store.write(_place, lock_keys=lock_keys)
            except IntegrityError:
                # Same key committed by another process between our checks
                if idempotency_key is None:
                    raise
                existing = self._find_by_idempotency_key(
                    idempotency_key, request_hash
                )
                if existing is None:
                    raise
                return existing

            if placed.replayed:
                logger.info(
                    "order_replayed",
                    extra={
                        "order_id": str(placed.order_id),
                        "idempotency_key": idempotency_key,
                    },
                )
            else:
                logger.info(
                    "order_placed",
                    extra={
                        "order_id": str(placed.order_id),
                        "order_number": placed.order_number,
                        "total_amount": str(placed.total_amount),
                        "line_count": len(items),
                    },
                )
        return placed

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _check_transition(self, order: Order, target: OrderStatus) -> None:
        if not order.can_transition_to(target):
            logger.info(
                "order_transition_rejected",
                extra={
                    "order_id": str(order.id),
                    "from_status": order.status_str,
                    "to_status": target.value,
                },
            )
            raise InvalidTransitionError(
                str(order.id), order.status_str, target.value
            )

    def complete_order(
        self, order_id: UUID, actor: Actor | None = None
    ) -> CompleteOrderResult:
        """
        Move a pending order to completed.

        Raises:
            OrderNotFoundError: No such order.
            InvalidTransitionError: The order is not pending.
        """
        order_id = _coerce_id("order_id", order_id)
        actor = actor or SYSTEM_ACTOR

        def _complete(txn: LedgerTransaction) -> CompleteOrderResult:
            order = txn.require(Order, order_id, for_update=True)
            self._check_transition(order, OrderStatus.COMPLETED)

            from_status = order.status_str
            order.status = OrderStatus.COMPLETED.value
            txn.session.flush()

            AuditLogger(txn.session, self.clock).append(
                order.id, from_status, OrderStatus.COMPLETED.value, actor
            )
            return CompleteOrderResult(order.id, OrderStatus.COMPLETED.value)

        with LogContext.bind(order_id=str(order_id), actor_id=actor.actor_id):
            result = self.store.write(_complete, lock_keys=[order_key(order_id)])
            logger.info("order_completed", extra={"order_id": str(order_id)})
        return result

    def cancel_order(
        self,
        order_id: UUID,
        reason: str,
        actor: Actor | None = None,
    ) -> CancelOrderResult:
        """
        Cancel a pending or completed order.

        Releases every not-yet-released line, reverses the order's net
        payments under the configured refund policy, and records the reason.
        An order without payments is still cancelled and its stock returned.

        Raises:
            OrderNotFoundError: No such order.
            InvalidTransitionError: The order is already cancelled.  No audit
                entry, stock change, or payment is written.
            ValidationError: reason is not a string or is too long.
        """
        if not isinstance(reason, str):
            raise ValidationError("reason", "must be a string")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(
                "reason", f"must be at most {MAX_REASON_LENGTH} characters"
            )
        order_id = _coerce_id("order_id", order_id)
        actor = actor or SYSTEM_ACTOR

        # Items never change product, so their lock keys can be read first
        snapshot = self.store.read(Order, order_id)
        lock_keys = [order_key(order_id)] + [
            product_key(item.product_id) for item in snapshot.items
        ]

        def _cancel(txn: LedgerTransaction) -> tuple[CancelOrderResult, int, bool]:
            order = txn.require(Order, order_id, for_update=True)
            self._check_transition(order, OrderStatus.CANCELLED)

            services = _TransactionServices(txn, self)
            from_status = order.status_str

            released = sum(
                1 for item in order.items if services.inventory.release_stock(item)
            )

            reversed_payment = True
            try:
                services.payments.reverse(order.id)
            except NothingToReverseError:
                reversed_payment = False
                logger.info(
                    "payment_reversal_skipped",
                    extra={"order_id": str(order.id)},
                )

            order.status = OrderStatus.CANCELLED.value
            order.cancellation_reason = reason
            order.cancelled_at = self.clock.now()
            txn.session.flush()

            services.audit.append(
                order.id, from_status, OrderStatus.CANCELLED.value, actor, reason
            )
            return (
                CancelOrderResult(order.id, OrderStatus.CANCELLED.value),
                released,
                reversed_payment,
            )

        with LogContext.bind(order_id=str(order_id), actor_id=actor.actor_id):
            result, released, reversed_payment = self.store.write(
                _cancel, lock_keys=lock_keys
            )
            logger.info(
                "order_cancelled",
                extra={
                    "order_id": str(order_id),
                    "items_released": released,
                    "payment_reversed": reversed_payment,
                    "refund_policy": self.refund_policy.label,
                },
            )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def history(self, order_id: UUID) -> AuditHistory:
        """Lazy, restartable status history of an order."""
        return AuditHistory(self.store, order_id)

"""
Typed Exception Hierarchy for the Fulfillment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (an API layer, a batch job, a CLI) must react to
failures precisely: retry on contention, show "out of stock" to a shopper,
reject a malformed request.  Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)

    try:
        engine.place_order(user_id, [(product_id, 3)])
    except InsufficientStockError as e:
        api_response(code=e.code, product=e.product_id, available=e.available)
    except ContentionError:
        retry_later()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FulfillmentKernelError (base)
    |
    +-- NotFoundError
    |   +-- EntityNotFoundError
    |   +-- UserNotFoundError
    |   +-- ProductNotFoundError
    |   +-- OrderNotFoundError
    |
    +-- ValidationError
    |   +-- IdempotencyConflictError
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |
    +-- LifecycleError
    |   +-- InvalidTransitionError
    |
    +-- PaymentError
    |   +-- NothingToReverseError
    |   +-- PaymentDeclinedError
    |
    +-- ConcurrencyError
    |   +-- ContentionError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                   | When Raised
----------------|------------------------|-----------------------------------------
Not found       | ENTITY_NOT_FOUND       | Generic ledger read miss
                | USER_NOT_FOUND         | User id does not exist
                | PRODUCT_NOT_FOUND      | Product id does not exist
                | ORDER_NOT_FOUND        | Order id does not exist
----------------|------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR       | Malformed quantity, amount, or request
                | IDEMPOTENCY_CONFLICT   | Key reused with a different request
----------------|------------------------|-----------------------------------------
Inventory       | INSUFFICIENT_STOCK     | Reservation would make stock negative
----------------|------------------------|-----------------------------------------
Lifecycle       | INVALID_TRANSITION     | Status change not in the state machine
----------------|------------------------|-----------------------------------------
Payment         | NOTHING_TO_REVERSE     | Net already zero (idempotent no-op)
                | PAYMENT_DECLINED       | Gateway refused to confirm an amount
----------------|------------------------|-----------------------------------------
Concurrency     | CONTENTION             | Lock not acquired in time (retryable)
----------------|------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION | Modifying an append-only record
----------------|------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN     | Order history hash chain mismatch

===============================================================================
PROPAGATION
===============================================================================

Every error aborts the enclosing ledger transaction with zero partial effect.
ContentionError is the only retryable error (``retryable = True``); all
others are surfaced unchanged.  NothingToReverseError is raised by the
payment reconciler and absorbed by the cancellation workflow.
"""


class FulfillmentKernelError(Exception):
    """
    Base exception for all fulfillment kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FULFILLMENT_KERNEL_ERROR"
    retryable: bool = False


# Not-found exceptions


class NotFoundError(FulfillmentKernelError):
    """Base exception for missing users, products, and orders."""

    code: str = "NOT_FOUND"


class EntityNotFoundError(NotFoundError):
    """A ledger read found no row for the given entity type and id."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class UserNotFoundError(NotFoundError):
    """User with given ID was not found."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class ProductNotFoundError(NotFoundError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFoundError(NotFoundError):
    """Order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


# Validation


class ValidationError(FulfillmentKernelError):
    """Malformed quantities, amounts, or request fields."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class IdempotencyConflictError(ValidationError):
    """
    An idempotency key was reused for a different request.

    A replay must repeat the original user, line items, and payment method.
    Anything else is a client bug; nothing is written.
    """

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_order_id: str):
        self.idempotency_key = idempotency_key
        self.existing_order_id = existing_order_id
        super().__init__(
            "idempotency_key",
            f"{idempotency_key!r} already placed order {existing_order_id} "
            "with a different request",
        )


# Inventory exceptions


class InventoryError(FulfillmentKernelError):
    """Base exception for stock-related errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """Reserving the requested quantity would drive stock negative."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


# Lifecycle exceptions


class LifecycleError(FulfillmentKernelError):
    """Base exception for order state machine errors."""

    code: str = "LIFECYCLE_ERROR"


class InvalidTransitionError(LifecycleError):
    """The requested status change is not allowed from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, order_id: str, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Order {order_id} cannot transition from {from_status} to {to_status}"
        )


# Payment exceptions


class PaymentError(FulfillmentKernelError):
    """Base exception for payment reconciliation errors."""

    code: str = "PAYMENT_ERROR"


class NothingToReverseError(PaymentError):
    """
    The order's payment chain is already reconciled.

    This is an idempotent no-op signal, not a workflow failure: the
    cancellation workflow absorbs it.
    """

    code: str = "NOTHING_TO_REVERSE"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Nothing to reverse for order {order_id}")


class PaymentDeclinedError(PaymentError):
    """The payment gateway refused to confirm an amount."""

    code: str = "PAYMENT_DECLINED"

    def __init__(self, order_id: str, amount: str, reason: str):
        self.order_id = order_id
        self.amount = amount
        self.reason = reason
        super().__init__(
            f"Payment of {amount} for order {order_id} declined: {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(FulfillmentKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ContentionError(ConcurrencyError):
    """
    Required locks were not acquired within the bounded timeout.

    No state was persisted.  The caller may retry with the same input.
    """

    code: str = "CONTENTION"
    retryable: bool = True

    def __init__(self, resource: str, timeout_seconds: float | None = None):
        self.resource = resource
        self.timeout_seconds = timeout_seconds
        detail = f" within {timeout_seconds}s" if timeout_seconds is not None else ""
        super().__init__(f"Could not acquire lock on {resource}{detail}")


# Immutability exceptions


class ImmutabilityError(FulfillmentKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    AuditEntry and Payment rows are append-only; OrderItem rows are frozen
    except for their stock-release marker; Orders are never deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit exceptions


class AuditError(FulfillmentKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """An order's audit history failed hash chain validation."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_entry_id: str, expected_hash: str, actual_hash: str):
        self.audit_entry_id = audit_entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_entry_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )

"""
FulfillmentService -- request entry point of the kernel.

Responsibility:
    Accepts the request DTOs from domain/dtos.py (PlaceOrder, CancelOrder,
    CompleteOrder, GetOrderHistory), dispatches them to the
    OrderLifecycleEngine, and returns result DTOs.  Callers are an API
    layer, a batch job, or a CLI; none of those live in the kernel.

Architecture position:
    Kernel > Services -- outermost kernel seam.

Invariants enforced:
    - Only ContentionError is retried, up to ``retry_attempts`` times with
      the identical request.  A contention failure persisted nothing, so the
      retry cannot double-apply.
    - Every other error reaches the caller unchanged.
    - Each request runs under bind_request(): a fresh correlation id, the
      request type, and the order and actor the envelope names.

Failure modes:
    - Everything OrderLifecycleEngine raises; ContentionError only after the
      last attempt.
    - TypeError for an object that is not a known request type.
"""

from __future__ import annotations

from functools import partial
from fulfillment_kernel.db.store import LedgerStore, retry_on_contention
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.dtos import (
    CancelOrder,
    CancelOrderResult,
    CompleteOrder,
    CompleteOrderResult,
    GetOrderHistory,
    PlaceOrder,
    PlaceOrderResult,
)
from fulfillment_kernel.domain.gateway import PaymentGateway
from fulfillment_kernel.domain.refund_policy import RefundPolicy
from fulfillment_kernel.logging_config import bind_request, get_logger
from fulfillment_kernel.models.order import Order
from fulfillment_kernel.selectors.history_selector import AuditHistory
from fulfillment_kernel.services.order_lifecycle import OrderLifecycleEngine
from fulfillment_kernel.services.payment_reconciler import DEFAULT_PAYMENT_METHOD

logger = get_logger("services.fulfillment")


class FulfillmentService:
    """
    Dispatches kernel requests.

    Usage:
        service = FulfillmentService(store)
        result = service.handle(PlaceOrder(user_id, [(product_id, 2)]))
        history = list(service.handle(GetOrderHistory(result.order_id)))
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock | None = None,
        gateway: PaymentGateway | None = None,
        refund_policy: RefundPolicy | None = None,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.05,
        default_payment_method: str = DEFAULT_PAYMENT_METHOD,
    ):
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        self.engine = OrderLifecycleEngine(
            store,
            clock=clock,
            gateway=gateway,
            refund_policy=refund_policy,
            default_payment_method=default_payment_method,
        )
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds

    def _with_retry(self, fn):
        return retry_on_contention(
            fn,
            attempts=self.retry_attempts,
            backoff_seconds=self.retry_backoff_seconds,
        )

    def place_order(self, request: PlaceOrder) -> PlaceOrderResult:
        placed = self._with_retry(
            partial(
                self.engine.place_order,
                request.user_id,
                request.line_items,
                payment_method=request.payment_method,
                idempotency_key=request.idempotency_key,
            )
        )
        return PlaceOrderResult(
            order_id=placed.order_id,
            total_amount=placed.total_amount,
            order_number=placed.order_number,
        )

    def cancel_order(self, request: CancelOrder) -> CancelOrderResult:
        return self._with_retry(
            partial(
                self.engine.cancel_order,
                request.order_id,
                request.reason,
                request.actor,
            )
        )

    def complete_order(self, request: CompleteOrder) -> CompleteOrderResult:
        return self._with_retry(
            partial(self.engine.complete_order, request.order_id, request.actor)
        )

    def order_history(self, request: GetOrderHistory) -> AuditHistory:
        # Unknown orders fail here rather than on first iteration
        self.engine.store.read(Order, request.order_id)
        return self.engine.history(request.order_id)

    _HANDLERS = {
        PlaceOrder: place_order,
        CancelOrder: cancel_order,
        CompleteOrder: complete_order,
        GetOrderHistory: order_history,
    }

    def handle(
        self, request
    ) -> PlaceOrderResult | CancelOrderResult | CompleteOrderResult | AuditHistory:
        """
        Run one request and return its result.

        GetOrderHistory returns an AuditHistory: iterate it (any number of
        times) for AuditEntryView items in time order.
        """
        handler = self._HANDLERS.get(type(request))
        if handler is None:
            raise TypeError(f"Unsupported request type: {type(request).__name__}")

        with bind_request(request):
            logger.debug("request_received")
            return handler(self, request)

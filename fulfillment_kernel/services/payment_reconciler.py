"""
PaymentReconciler -- the per-order payment chain.

Responsibility:
    Records an order's primary charge and, on cancellation, a compensating
    reversal.  Every amount is confirmed by the PaymentGateway before a
    Payment row is written.  Payments are append-only: a refund is a new
    negative row, never an edit or delete of the charge.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by OrderLifecycleEngine inside the placement and cancellation
    transactions.

Invariants enforced:
    - CHARGE amounts are positive, REVERSAL amounts negative.
    - At most one CHARGE per order (checked here, backed by the partial
      unique index uq_payment_single_charge).
    - Under the full refund policy a reversal is exactly ``-net``, so a
      cancelled order nets to zero.  Under the partial policy it is
      ``-round_money(net * fraction)`` and is recorded at most once.

Failure modes:
    - ValidationError: non-positive charge, or a second charge.
    - NothingToReverseError: net already zero, or a partial reversal already
      recorded.  OrderLifecycleEngine treats this as a no-op.
    - PaymentDeclinedError: the gateway refused, or confirmed a different
      charge amount.  Aborts the enclosing transaction.

Audit relevance:
    ``payment_charged`` and ``payment_reversed`` log lines carry the amount,
    gateway reference, and (for reversals) the refund policy label, which is
    also stored on the reversal row.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from fulfillment_kernel.db.types import ZERO, money
from fulfillment_kernel.domain.gateway import LedgerOnlyGateway, PaymentGateway
from fulfillment_kernel.domain.refund_policy import RefundMode, RefundPolicy
from fulfillment_kernel.exceptions import (
    NothingToReverseError,
    PaymentDeclinedError,
    ValidationError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.payment import Payment, PaymentKind
from fulfillment_kernel.services.base import BaseService

logger = get_logger("services.payments")

DEFAULT_PAYMENT_METHOD = "ledger"


class PaymentReconciler(BaseService):
    """
    Charge and reversal records for orders.

    Contract:
        The caller holds the order's entity lock for the whole transaction;
        seq values are assigned under that lock.
    """

    def __init__(
        self,
        session,
        clock=None,
        gateway: PaymentGateway | None = None,
        refund_policy: RefundPolicy | None = None,
    ):
        super().__init__(session, clock)
        self.gateway = gateway or LedgerOnlyGateway()
        self.refund_policy = refund_policy or RefundPolicy.full()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def payments_for(self, order_id: UUID) -> list[Payment]:
        """All payments of an order in chain order."""
        return list(
            self.session.execute(
                select(Payment)
                .where(Payment.order_id == order_id)
                .order_by(Payment.seq)
            ).scalars()
        )

    def net_amount(self, order_id: UUID) -> Decimal:
        """Sum of all charges and reversals of an order."""
        return sum((p.amount for p in self.payments_for(order_id)), ZERO)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _append(
        self,
        order_id: UUID,
        seq: int,
        kind: PaymentKind,
        method: str,
        amount: Decimal,
        reference: str,
        refund_policy: str | None = None,
    ) -> Payment:
        now = self.clock.now()
        payment = Payment(
            order_id=order_id,
            seq=seq,
            kind=kind.value,
            payment_date=now,
            payment_method=method,
            amount=amount,
            gateway_reference=reference,
            refund_policy=refund_policy,
            created_at=now,
        )
        self.session.add(payment)
        self.session.flush()
        return payment

    def record_charge(
        self,
        order_id: UUID,
        method: str,
        amount: Decimal,
    ) -> Payment:
        """
        Record the order's primary charge.

        Raises:
            ValidationError: amount <= 0, or the order already has a charge.
            PaymentDeclinedError: Gateway refused or confirmed another amount.
        """
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationError("amount", f"charge must be positive, got {amount}")

        existing = self.payments_for(order_id)
        if any(p.kind_enum == PaymentKind.CHARGE for p in existing):
            raise ValidationError("order_id", f"order {order_id} already has a charge")

        confirmation = self.gateway.confirm_charge(order_id, method, amount)
        if money(confirmation.amount) != amount:
            raise PaymentDeclinedError(
                str(order_id),
                str(amount),
                f"gateway confirmed {confirmation.amount}",
            )

        payment = self._append(
            order_id,
            len(existing) + 1,
            PaymentKind.CHARGE,
            method,
            amount,
            confirmation.reference,
        )
        logger.info(
            "payment_charged",
            extra={
                "order_id": str(order_id),
                "amount": str(amount),
                "payment_method": method,
                "gateway_reference": confirmation.reference,
            },
        )
        return payment

    def reverse(self, order_id: UUID) -> Payment:
        """
        Append one reversal that compensates the order's net payments.

        Raises:
            NothingToReverseError: Net is zero, or the partial policy is in
                force and a reversal was already recorded.
            PaymentDeclinedError: Gateway refused the refund.
        """
        existing = self.payments_for(order_id)
        net = sum((p.amount for p in existing), ZERO)

        if net <= ZERO:
            raise NothingToReverseError(str(order_id))
        if self.refund_policy.mode == RefundMode.PARTIAL and any(
            p.is_reversal for p in existing
        ):
            raise NothingToReverseError(str(order_id))

        refund = self.refund_policy.refund_amount(net)
        if refund <= ZERO:
            raise NothingToReverseError(str(order_id))

        method = next(
            (p.payment_method for p in existing if p.kind_enum == PaymentKind.CHARGE),
            DEFAULT_PAYMENT_METHOD,
        )
        confirmation = self.gateway.confirm_refund(order_id, method, refund)
        if money(confirmation.amount) != refund:
            raise PaymentDeclinedError(
                str(order_id),
                str(refund),
                f"gateway confirmed refund of {confirmation.amount}",
            )

        payment = self._append(
            order_id,
            len(existing) + 1,
            PaymentKind.REVERSAL,
            method,
            -refund,
            confirmation.reference,
            refund_policy=self.refund_policy.label,
        )
        logger.info(
            "payment_reversed",
            extra={
                "order_id": str(order_id),
                "amount": str(payment.amount),
                "net_before": str(net),
                "refund_policy": self.refund_policy.label,
                "gateway_reference": confirmation.reference,
            },
        )
        return payment

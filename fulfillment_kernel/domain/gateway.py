"""
PaymentGateway -- boundary to the external payment processor.

Responsibility:
    The PaymentReconciler asks the gateway to confirm every amount before it
    records a Payment row.  The gateway's network protocol is outside the
    kernel; implementations adapt a real processor to this interface.

Failure modes:
    - PaymentDeclinedError from confirm_charge/confirm_refund aborts the
      enclosing ledger transaction.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4


@dataclass(frozen=True)
class GatewayConfirmation:
    """An externally confirmed amount and the processor's reference for it."""

    reference: str
    amount: Decimal


class PaymentGateway(ABC):

    @abstractmethod
    def confirm_charge(
        self, order_id: UUID, method: str, amount: Decimal
    ) -> GatewayConfirmation:
        """Confirm a positive charge for an order."""
        ...

    @abstractmethod
    def confirm_refund(
        self, order_id: UUID, method: str, amount: Decimal
    ) -> GatewayConfirmation:
        """Confirm a refund; ``amount`` is positive (the sum returned)."""
        ...


class LedgerOnlyGateway(PaymentGateway):
    """
    Gateway for deployments where settlement happens outside the kernel.

    Confirms every amount as-is with a locally generated reference.
    """

    def confirm_charge(self, order_id, method, amount):
        return GatewayConfirmation(reference=f"ledger:charge:{uuid4()}", amount=amount)

    def confirm_refund(self, order_id, method, amount):
        return GatewayConfirmation(reference=f"ledger:refund:{uuid4()}", amount=amount)

"""
RefundPolicy -- how much of an order's net payment a cancellation returns.

Responsibility:
    Computes the reversal amount for the PaymentReconciler.  FULL is the
    default.  PARTIAL must be configured explicitly with a fraction; it is
    never inferred.

Invariants enforced:
    - FULL always reverses the whole net, so a cancelled order nets to zero.
    - PARTIAL reverses round_money(net * fraction) with 0 < fraction <= 1,
      leaving net - that amount retained.

Failure modes:
    - ValueError on construction with a fraction outside (0, 1], or a FULL
      policy with a fraction other than 1.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum

from fulfillment_kernel.db.types import round_money


class RefundMode(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


@dataclass(frozen=True)
class RefundPolicy:
    mode: RefundMode = RefundMode.FULL
    fraction: Decimal = field(default=Decimal("1"))

    def __post_init__(self) -> None:
        if not isinstance(self.mode, RefundMode):
            object.__setattr__(self, "mode", RefundMode(self.mode))
        if not isinstance(self.fraction, Decimal):
            try:
                object.__setattr__(self, "fraction", Decimal(str(self.fraction)))
            except (InvalidOperation, ValueError) as e:
                raise ValueError(f"Invalid refund fraction: {self.fraction}") from e

        if not self.fraction.is_finite():
            raise ValueError(f"Refund fraction must be finite, got {self.fraction}")
        if self.mode == RefundMode.FULL and self.fraction != Decimal("1"):
            raise ValueError("A full refund policy cannot carry a fraction")
        if not (Decimal("0") < self.fraction <= Decimal("1")):
            raise ValueError(
                f"Refund fraction must be in (0, 1], got {self.fraction}"
            )

    @classmethod
    def full(cls) -> "RefundPolicy":
        return cls(RefundMode.FULL)

    @classmethod
    def partial(cls, fraction: Decimal | str) -> "RefundPolicy":
        return cls(RefundMode.PARTIAL, Decimal(str(fraction)))

    @property
    def label(self) -> str:
        """Stored on reversal payments, e.g. ``full`` or ``partial:0.5``."""
        if self.mode == RefundMode.FULL:
            return "full"
        return f"partial:{self.fraction.normalize()}"

    def refund_amount(self, net: Decimal) -> Decimal:
        """Amount to return for an order whose payments net to ``net``."""
        if self.mode == RefundMode.FULL:
            return net
        return round_money(net * self.fraction)

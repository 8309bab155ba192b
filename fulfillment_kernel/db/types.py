"""
Module: fulfillment_kernel.db.types
Responsibility: Column types and utility functions for monetary values.
    Centralizes precision and rounding so that every model and service uses
    identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function for monetary
      values.  Prices, totals, and payment amounts are all quantized to
      MONEY_DECIMAL_PLACES.
    - No floats anywhere in the kernel.  MoneyType refuses float binds and
      stores Decimal exactly: NUMERIC(38, 9) on PostgreSQL, canonical text on
      SQLite (which has no exact decimal storage class).
    - Monetary values are finite: money() rejects NaN and Infinity before
      any comparison can raise on them.

Failure modes:
    - TypeError when a float is bound to a MoneyType column.
    - decimal.InvalidOperation on a non-numeric string passed to money().
    - ValueError when money() is given NaN or Infinity.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")


class MoneyType(TypeDecorator):
    """
    Exact decimal column.

    Contract:
        Binds Decimal/int/str values and always returns Decimal.

    Guarantees:
        - PostgreSQL: native NUMERIC(38, 9).
        - Other dialects: String(48) holding ``str(Decimal)`` so that no
          binary float conversion ever happens.
    """

    impl = Numeric(38, 9)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(38, 9, asdecimal=True))
        return dialect.type_descriptor(String(48))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("Monetary values must be Decimal, not float")
        value = Decimal(value)
        if dialect.name == "postgresql":
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


def money(value: Any) -> Decimal:
    """Coerce an int, str, or Decimal to a rounded monetary Decimal."""
    if isinstance(value, float):
        raise TypeError("Monetary values must be Decimal, not float")
    value = Decimal(value)
    if not value.is_finite():
        raise ValueError(f"Monetary values must be finite, got {value}")
    return round_money(value)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the specified decimal places.

    This is the ONLY sanctioned rounding function for monetary values in the
    kernel.  All other code MUST delegate rounding here.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)

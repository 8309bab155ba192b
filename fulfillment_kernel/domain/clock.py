"""
Clock -- the kernel's only source of time.

Responsibility:
    Supplies order_date, OrderItem.created_at, payment_date,
    Order.cancelled_at, stock_released_at and AuditEntry.occurred_at.
    Services receive a Clock from OrderLifecycleEngine; nothing in the
    kernel reads the wall clock elsewhere.  Row bookkeeping columns
    (TimestampedBase created_at/updated_at) are database defaults instead.

Architecture position:
    Kernel > Domain.  SystemClock is the one place the system time is read.

Invariants enforced:
    - Every business timestamp is written as timezone-aware UTC.
    - All timestamps written by one transaction come from the same clock,
      so an order's audit entries are ordered consistently with its
      order_date and cancelled_at.
    - DeterministicClock only moves when a test moves it.  Entries written
      at the same instant are ordered by their per-order seq.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock for tests and replays.

    Starts at ``start`` (default DEFAULT_TEST_TIME) and stays there until
    advance() is called, so orders placed back to back share an order_date
    and their history falls back to seq for ordering.
    """

    def __init__(self, start: datetime | None = None):
        start = start or DEFAULT_TEST_TIME
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._current = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward and return the new time."""
        if seconds < 0:
            raise ValueError("Time cannot move backwards")
        self._current += timedelta(seconds=seconds)
        return self._current

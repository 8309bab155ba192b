"""
Module: fulfillment_kernel.db.locks
Responsibility: Per-entity in-process locks with a bounded wait.
Architecture position: Kernel > DB.  Used by LedgerStore.write() only.

Invariants enforced:
    - Transactions naming the same Order or Product key are serialized;
      transactions with disjoint keys never wait on each other here.
    - Keys are acquired in sorted order, so two transactions can never hold
      each other's keys in opposite order (no lock-order deadlock).
    - Locks are taken BEFORE the database transaction begins, so a failure
      to acquire leaves nothing to roll back.

Failure modes:
    - ContentionError when the keys are not all acquired within the timeout.
      All keys acquired so far are released before the error propagates.
"""

import threading
import time
from contextlib import contextmanager
from typing import Iterable, Iterator
from uuid import UUID

from fulfillment_kernel.exceptions import ContentionError
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.locks")


def order_key(order_id: UUID) -> str:
    return f"order:{order_id}"


def product_key(product_id: UUID) -> str:
    return f"product:{product_id}"


class EntityLockManager:
    """
    Registry of named locks.

    Usage:
        locks = EntityLockManager(timeout_seconds=5.0)
        with locks.acquire([product_key(pid), order_key(oid)]):
            ...  # run the database transaction
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._locks: dict[str, threading.Lock] = {}
        self._registry_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def acquire(
        self,
        keys: Iterable[str],
        timeout_seconds: float | None = None,
    ) -> Iterator[None]:
        """
        Hold every key for the duration of the block.

        The timeout bounds the total wait across all keys, not each key.

        Raises:
            ContentionError: A key could not be acquired in time.
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        ordered = sorted(set(keys))
        deadline = time.monotonic() + timeout
        held: list[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    logger.warning(
                        "entity_lock_timeout",
                        extra={"lock_key": key, "timeout_seconds": timeout},
                    )
                    raise ContentionError(key, timeout)
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()

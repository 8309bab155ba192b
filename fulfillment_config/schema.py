"""
Configuration schema -- frozen dataclasses for fulfillment configuration.

Every runtime setting of the kernel is described here.  The loader turns a
YAML document into these objects; bridges.py turns them into kernel inputs.
Nothing in this module performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StoreConfig:
    """Ledger store connection and locking settings."""

    database_url: str
    lock_timeout_seconds: float = 5.0
    # SQLite only: how long a writer queues for the database write lock
    sqlite_busy_timeout_seconds: float = 30.0
    pool_size: int = 20
    max_overflow: int = 10
    echo: bool = False


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RefundPolicyDef:
    """
    Refund policy applied on cancellation.

    mode is ``full`` (default) or ``partial``.  A partial policy must name
    its fraction explicitly; it is never inferred.
    """

    mode: str = "full"
    fraction: Decimal | None = None


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderingConfig:
    """Request handling defaults."""

    default_payment_method: str = "ledger"
    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.05


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FulfillmentConfig:
    """
    Root configuration object.

    Attributes:
        config_id: Identifier of the configuration document.
        version: Document version.
        checksum: SHA-256 of the canonical serialization of the source
            document (before defaults are applied).
    """

    config_id: str
    version: int
    store: StoreConfig
    refund_policy: RefundPolicyDef = field(default_factory=RefundPolicyDef)
    ordering: OrderingConfig = field(default_factory=OrderingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""

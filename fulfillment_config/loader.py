"""
Configuration Loader (``fulfillment_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the frozen
dataclasses of ``fulfillment_config.schema``.  The single public entry point
for runtime config is ``fulfillment_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields have no silent defaults.
* A partial refund policy must carry a fraction in (0, 1]; a full policy
  must not carry one.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from fulfillment_config.schema import (
    FulfillmentConfig,
    LoggingConfig,
    OrderingConfig,
    RefundPolicyDef,
    StoreConfig,
)

REFUND_MODES = ("full", "partial")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _positive(name: str, value: Any, kind: type = float) -> Any:
    value = kind(value)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def parse_store(data: dict[str, Any]) -> StoreConfig:
    """Parse a StoreConfig from a dict."""
    return StoreConfig(
        database_url=data["database_url"],
        lock_timeout_seconds=_positive(
            "store.lock_timeout_seconds", data.get("lock_timeout_seconds", 5.0)
        ),
        sqlite_busy_timeout_seconds=_positive(
            "store.sqlite_busy_timeout_seconds",
            data.get("sqlite_busy_timeout_seconds", 30.0),
        ),
        pool_size=_positive("store.pool_size", data.get("pool_size", 20), int),
        max_overflow=int(data.get("max_overflow", 10)),
        echo=bool(data.get("echo", False)),
    )


def parse_refund_policy(data: dict[str, Any] | None) -> RefundPolicyDef:
    """
    Parse the refund policy.

    A missing section means the full refund policy.  ``partial`` requires an
    explicit ``fraction``; the fraction is read through ``str`` so that YAML
    floats such as ``0.5`` become exact Decimals.
    """
    if not data:
        return RefundPolicyDef()

    mode = str(data.get("mode", "full")).lower()
    if mode not in REFUND_MODES:
        raise ValueError(f"refund_policy.mode must be one of {REFUND_MODES}, got {mode!r}")

    raw = data.get("fraction")
    if mode == "full":
        if raw is not None and Decimal(str(raw)) != Decimal("1"):
            raise ValueError("refund_policy.fraction is only valid with mode 'partial'")
        return RefundPolicyDef(mode="full")

    if raw is None:
        raise ValueError("refund_policy.fraction is required with mode 'partial'")
    try:
        fraction = Decimal(str(raw))
    except InvalidOperation as e:
        raise ValueError(f"refund_policy.fraction is not a number: {raw!r}") from e
    if not fraction.is_finite():
        raise ValueError(f"refund_policy.fraction must be finite, got {raw!r}")
    if not (Decimal("0") < fraction <= Decimal("1")):
        raise ValueError(f"refund_policy.fraction must be in (0, 1], got {fraction}")
    return RefundPolicyDef(mode="partial", fraction=fraction)


def parse_ordering(data: dict[str, Any] | None) -> OrderingConfig:
    """Parse an OrderingConfig from a dict."""
    data = data or {}
    return OrderingConfig(
        default_payment_method=str(data.get("default_payment_method", "ledger")),
        retry_attempts=_positive(
            "ordering.retry_attempts", data.get("retry_attempts", 3), int
        ),
        retry_backoff_seconds=float(data.get("retry_backoff_seconds", 0.05)),
    )


def parse_logging(data: dict[str, Any] | None) -> LoggingConfig:
    data = data or {}
    level = str(data.get("level", "INFO")).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"logging.level is not a logging level: {level!r}")
    return LoggingConfig(level=level)


def parse_config(data: dict[str, Any]) -> FulfillmentConfig:
    """
    Parse a complete FulfillmentConfig from a dict.

    Postconditions:
        - ``checksum`` is computed from ``data`` as given.
    """
    return FulfillmentConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        store=parse_store(data["store"]),
        refund_policy=parse_refund_policy(data.get("refund_policy")),
        ordering=parse_ordering(data.get("ordering")),
        logging=parse_logging(data.get("logging")),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> FulfillmentConfig:
    """Load and parse a configuration document from disk."""
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

"""
Deterministic hashing utilities.

All hashing in the fulfillment kernel must be deterministic and reproducible.
The audit logger uses these functions to chain each order's history entries.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 20.00 and 20.0 hash identically
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, there is no whitespace, and Decimal/datetime/UUID are
    rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Compute the hex SHA-256 of a payload's canonical JSON form."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_entry(
    order_id: str,
    from_status: str | None,
    to_status: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chain hash for an order audit entry.

    The hash covers the transition itself plus the previous entry's hash for
    the same order, so rewriting any earlier entry breaks every later link.

    Args:
        order_id: Order the entry belongs to.
        from_status: Status before the transition (None on creation).
        to_status: Status after the transition.
        payload_hash: Hash of the entry's actor/reason payload.
        prev_hash: Hash of the order's previous entry (None for the first).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        str(order_id),
        from_status or "NONE",
        to_status,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()

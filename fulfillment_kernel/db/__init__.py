"""Database layer - engine, base classes, types, locks, and the ledger store."""

from fulfillment_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from fulfillment_kernel.db.engine import create_engine_from_url
from fulfillment_kernel.db.locks import EntityLockManager, order_key, product_key
from fulfillment_kernel.db.types import MoneyType, money, round_money

__all__ = [
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "MoneyType",
    "money",
    "round_money",
    "create_engine_from_url",
    "EntityLockManager",
    "order_key",
    "product_key",
]

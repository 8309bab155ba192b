"""
Config -> Kernel Bridges.

Functions that convert a FulfillmentConfig into kernel inputs.  They live in
fulfillment_config (the producer) because the kernel must never import
fulfillment_config.

Usage:
    from fulfillment_config import get_active_config
    from fulfillment_config.bridges import build_fulfillment_service

    config = get_active_config()
    service = build_fulfillment_service(config)
"""

from __future__ import annotations

import logging

from fulfillment_config.schema import FulfillmentConfig, RefundPolicyDef
from fulfillment_kernel.db.store import LedgerStore
from fulfillment_kernel.domain.clock import Clock
from fulfillment_kernel.domain.gateway import PaymentGateway
from fulfillment_kernel.domain.refund_policy import RefundPolicy
from fulfillment_kernel.logging_config import configure_logging
from fulfillment_kernel.services.fulfillment_service import FulfillmentService


def build_refund_policy(definition: RefundPolicyDef) -> RefundPolicy:
    """Translate the configured refund policy into the kernel value."""
    if definition.mode == "partial":
        return RefundPolicy.partial(definition.fraction)
    return RefundPolicy.full()


def build_ledger_store(config: FulfillmentConfig) -> LedgerStore:
    store_config = config.store
    return LedgerStore(
        store_config.database_url,
        lock_timeout_seconds=store_config.lock_timeout_seconds,
        sqlite_busy_timeout_seconds=store_config.sqlite_busy_timeout_seconds,
        echo=store_config.echo,
        pool_size=store_config.pool_size,
        max_overflow=store_config.max_overflow,
    )


def apply_logging(config: FulfillmentConfig) -> None:
    """Configure kernel logging at the configured level (idempotent)."""
    configure_logging(level=logging.getLevelName(config.logging.level))


def build_fulfillment_service(
    config: FulfillmentConfig,
    store: LedgerStore | None = None,
    clock: Clock | None = None,
    gateway: PaymentGateway | None = None,
) -> FulfillmentService:
    """
    Assemble a FulfillmentService from configuration.

    Args:
        config: Active configuration.
        store: Existing store to reuse; built from ``config.store`` if None.
        clock: Time source; SystemClock if None.
        gateway: Payment gateway; LedgerOnlyGateway if None.
    """
    return FulfillmentService(
        store or build_ledger_store(config),
        clock=clock,
        gateway=gateway,
        refund_policy=build_refund_policy(config.refund_policy),
        retry_attempts=config.ordering.retry_attempts,
        retry_backoff_seconds=config.ordering.retry_backoff_seconds,
        default_payment_method=config.ordering.default_payment_method,
    )

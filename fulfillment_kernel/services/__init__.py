"""Services - transaction-scoped kernel operations."""

from fulfillment_kernel.services.audit_logger import AuditLogger
from fulfillment_kernel.services.base import BaseService
from fulfillment_kernel.services.catalog_service import CatalogService
from fulfillment_kernel.services.fulfillment_service import FulfillmentService
from fulfillment_kernel.services.inventory_manager import InventoryManager
from fulfillment_kernel.services.order_lifecycle import OrderLifecycleEngine
from fulfillment_kernel.services.payment_reconciler import PaymentReconciler
from fulfillment_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "AuditLogger",
    "BaseService",
    "CatalogService",
    "FulfillmentService",
    "InventoryManager",
    "OrderLifecycleEngine",
    "PaymentReconciler",
    "SequenceCounter",
    "SequenceService",
]

"""Domain models for the fulfillment kernel."""

from fulfillment_kernel.models.audit_entry import AuditEntry
from fulfillment_kernel.models.order import (
    VALID_TRANSITIONS,
    Order,
    OrderItem,
    OrderStatus,
)
from fulfillment_kernel.models.payment import Payment, PaymentKind
from fulfillment_kernel.models.product import Product
from fulfillment_kernel.models.user import User

__all__ = [
    "AuditEntry",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentKind",
    "Product",
    "User",
    "VALID_TRANSITIONS",
]

"""Domain layer - pure values, DTOs, and external boundaries."""

from fulfillment_kernel.domain.actor import SYSTEM_ACTOR, Actor, ActorType
from fulfillment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fulfillment_kernel.domain.dtos import (
    AuditEntryView,
    CancelOrder,
    CancelOrderResult,
    CompleteOrder,
    CompleteOrderResult,
    GetOrderHistory,
    LineItem,
    PlacedOrder,
    PlaceOrder,
    PlaceOrderResult,
    ProductSnapshot,
)
from fulfillment_kernel.domain.gateway import (
    GatewayConfirmation,
    LedgerOnlyGateway,
    PaymentGateway,
)
from fulfillment_kernel.domain.refund_policy import RefundMode, RefundPolicy

__all__ = [
    "Actor",
    "ActorType",
    "SYSTEM_ACTOR",
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "AuditEntryView",
    "CancelOrder",
    "CancelOrderResult",
    "CompleteOrder",
    "CompleteOrderResult",
    "GetOrderHistory",
    "LineItem",
    "PlacedOrder",
    "PlaceOrder",
    "PlaceOrderResult",
    "ProductSnapshot",
    "GatewayConfirmation",
    "LedgerOnlyGateway",
    "PaymentGateway",
    "RefundMode",
    "RefundPolicy",
]

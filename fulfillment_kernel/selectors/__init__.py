"""Selectors - read-only queries returning DTOs."""

from fulfillment_kernel.selectors.base import BaseSelector
from fulfillment_kernel.selectors.history_selector import AuditHistory, HistorySelector

__all__ = ["BaseSelector", "AuditHistory", "HistorySelector"]

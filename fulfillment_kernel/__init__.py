"""
Fulfillment Kernel

The transactional core of an order-fulfillment engine:
- Atomic order placement with snapshot prices
- Non-negative stock under concurrent reservation and release
- Append-only payment chain with compensating reversals
- Hash-chained, append-only order status history
"""

__version__ = "0.1.0"

"""Order placement and completion."""

from petprint.orders.service import OrderService

__all__ = ["OrderService"]

"""
Database models

Tables are defined with SQLModel and split by concern:
- user.py: customers
- product.py: products and per-size stock
- order.py: orders and line items
- payment_event.py: reconciled payment records
"""
from sqlmodel import SQLModel

from .base import new_uuid, utc_now
from .order import Order, OrderItem
from .payment_event import PaymentEvent
from .product import Product, ProductSize
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "new_uuid",
    "User",
    "Product",
    "ProductSize",
    "Order",
    "OrderItem",
    "PaymentEvent",
]

"""Database package for the checkout service."""
from .connection import close_db, get_session_factory, init_db
from .models import Base, Order, OrderEvent, OrderStatus
from .store import OrderStore

__all__ = [
    "Base",
    "Order",
    "OrderEvent",
    "OrderStatus",
    "OrderStore",
    "close_db",
    "get_session_factory",
    "init_db",
]

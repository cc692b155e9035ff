"""
Database package exports.
"""
from .models import Base, OrderItem, StockLog  # noqa: F401
from .session import get_engine, get_session  # noqa: F401

__all__ = ["Base", "OrderItem", "StockLog", "get_engine", "get_session"]

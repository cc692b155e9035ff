"""
SQLAlchemy ORM models for order items and their stock audit trail.

Designed against SQLite first with column types that also map onto Postgres.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def utcnow() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (Index("ix_order_items_tenant_branch", "tenant_id", "branch_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    branch_id: Mapped[Optional[str]] = mapped_column(String(64))
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    qty: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default="0")
    stock_qty: Mapped[Optional[float]] = mapped_column(Float)
    stock_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    previous_qty: Mapped[Optional[float]] = mapped_column(Float)
    previous_qty_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    stock_logs: Mapped[list["StockLog"]] = relationship(
        back_populates="order_item", cascade="all, delete-orphan"
    )


class StockLog(Base):
    __tablename__ = "stock_logs"
    __table_args__ = (Index("ix_stock_logs_applied_at", "applied_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_item_id: Mapped[str] = mapped_column(
        ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    branch_id: Mapped[Optional[str]] = mapped_column(String(64))
    stock_prev: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    stock_in: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    stock_out: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    sales_since: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    stock_applied: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    order_item: Mapped["OrderItem"] = relationship(back_populates="stock_logs")


__all__ = ["Base", "OrderItem", "StockLog", "utcnow"]

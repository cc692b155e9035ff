"""
SQLAlchemy-backed stock writer, audit sink and order-item loaders.

Every item write runs in its own transaction: a failing item never rolls back
the items written before it.
"""
from __future__ import annotations

import logging
from typing import Callable, ContextManager, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from gestock.db.models import OrderItem, StockLog
from gestock.db.session import get_session
from gestock.stock.reconciler import StockAdjustment, StockLine, UndoEntry
from gestock.utils.dates import from_ms, to_ms

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


class OrderItemNotFound(LookupError):
    pass


def _ms_or_none(value) -> Optional[int]:
    return to_ms(value) if value is not None else None


def _dt_or_none(value: Optional[int]):
    return from_ms(value) if value is not None else None


def order_item_to_line(item: OrderItem) -> StockLine:
    return StockLine(
        id=item.id,
        product_name=(item.display_name or item.product_name or "").strip(),
        stock_prev=float(item.stock_qty or 0),
        qty=None,
        qty_ordered=float(item.qty or 0),
        stock_updated_at=_ms_or_none(item.stock_updated_at),
        previous_qty=item.previous_qty,
        previous_qty_updated_at=_ms_or_none(item.previous_qty_updated_at),
    )


def load_stock_lines(
    tenant_id: str,
    branch_id: Optional[str] = None,
    item_ids: Optional[Sequence[str]] = None,
    session_factory: SessionFactory = get_session,
) -> List[StockLine]:
    stmt = select(OrderItem).where(OrderItem.tenant_id == tenant_id)
    if branch_id is not None:
        stmt = stmt.where(OrderItem.branch_id == branch_id)
    if item_ids is not None:
        stmt = stmt.where(OrderItem.id.in_(list(item_ids)))
    with session_factory() as session:
        items = session.execute(stmt.order_by(OrderItem.id)).scalars().all()
        return [order_item_to_line(item) for item in items]


class SqlStockWriter:
    def __init__(self, tenant_id: str, session_factory: SessionFactory = get_session) -> None:
        self.tenant_id = tenant_id
        self.session_factory = session_factory

    def _get_item(self, session: Session, item_id: str) -> OrderItem:
        item = session.get(OrderItem, item_id)
        if item is None or item.tenant_id != self.tenant_id:
            raise OrderItemNotFound(f"Order item {item_id} not found for tenant {self.tenant_id}")
        return item

    def write_stock(self, line: StockLine, stock_applied: float, applied_at: int) -> None:
        with self.session_factory() as session:
            item = self._get_item(session, line.id)
            item.previous_qty = item.stock_qty
            item.previous_qty_updated_at = item.stock_updated_at
            item.stock_qty = stock_applied
            item.stock_updated_at = from_ms(applied_at)

    def restore_stock(self, entry: UndoEntry) -> None:
        with self.session_factory() as session:
            item = self._get_item(session, entry.item_id)
            item.stock_qty = entry.stock_qty
            item.stock_updated_at = _dt_or_none(entry.stock_updated_at)
            item.previous_qty = entry.previous_qty
            item.previous_qty_updated_at = _dt_or_none(entry.previous_qty_updated_at)


class SqlAuditSink:
    def __init__(
        self,
        tenant_id: str,
        branch_id: Optional[str] = None,
        session_factory: SessionFactory = get_session,
    ) -> None:
        self.tenant_id = tenant_id
        self.branch_id = branch_id
        self.session_factory = session_factory

    def write_adjustments(self, lines: Sequence[StockLine], adjustments: Sequence[StockAdjustment]) -> None:
        with self.session_factory() as session:
            session.add_all(
                StockLog(
                    order_item_id=adj.item_id,
                    tenant_id=self.tenant_id,
                    branch_id=self.branch_id,
                    stock_prev=adj.stock_prev,
                    stock_in=adj.stock_in,
                    stock_out=adj.sales_since,
                    sales_since=adj.sales_since,
                    stock_applied=adj.stock_applied,
                    applied_at=from_ms(adj.applied_at),
                )
                for adj in adjustments
            )
        logger.info("stock audit: %d rows written for tenant %s", len(adjustments), self.tenant_id)


__all__ = [
    "OrderItemNotFound",
    "SqlAuditSink",
    "SqlStockWriter",
    "load_stock_lines",
    "order_item_to_line",
]

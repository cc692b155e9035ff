"""
Stock reconciliation for order items.

    stock_applied = max(0, round2(stock_prev + stock_in - sales_since))

`sales_since` sums the sales of the product between the operator-chosen entry
timestamp and now. An apply is a sequential best-effort batch: the first
failed write stops it, earlier writes stay, and audit rows are written after
the stock values without being able to fail the apply.
"""
from __future__ import annotations

import enum
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from gestock.utils.dates import now_ms
from gestock.utils.normalize import norm_text, parse_decimal_input, round2

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SalesEvent:
    product: str
    qty: float
    date: int
    subtotal: Optional[float] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class StockLine:
    id: str
    product_name: str
    stock_prev: float = 0.0
    qty: Any = None
    qty_ordered: float = 0.0
    stock_updated_at: Optional[int] = None
    previous_qty: Optional[float] = None
    previous_qty_updated_at: Optional[int] = None

    @property
    def raw_input(self) -> str:
        """Operator input, defaulting to the ordered quantity when untouched."""
        if self.qty is None:
            return _format_qty(round2(self.qty_ordered))
        return str(self.qty)


@dataclass(frozen=True)
class StockAdjustment:
    item_id: str
    stock_prev: float
    stock_in: float
    sales_since: float
    stock_applied: float
    applied_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "itemId": self.item_id,
            "stockPrev": self.stock_prev,
            "stockIn": self.stock_in,
            "salesSince": self.sales_since,
            "stockApplied": self.stock_applied,
            "appliedAt": self.applied_at,
        }


@dataclass(frozen=True)
class PreviewRow:
    line: StockLine
    raw: str
    stock_prev: float
    stock_in: float
    sales_since: float
    stock_applied: float
    input_valid: bool

    @property
    def has_change(self) -> bool:
        return self.input_valid and (self.stock_in != 0 or self.sales_since != 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.line.id,
            "product": self.line.product_name,
            "raw": self.raw,
            "stockPrev": self.stock_prev,
            "stockIn": self.stock_in,
            "salesSince": self.sales_since,
            "stockApplied": self.stock_applied,
            "valid": self.input_valid,
        }


@dataclass(frozen=True)
class PreviewTotals:
    stock_prev: float = 0.0
    stock_in: float = 0.0
    sales_since: float = 0.0
    stock_applied: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "stockPrev": self.stock_prev,
            "stockIn": self.stock_in,
            "salesSince": self.sales_since,
            "stockApplied": self.stock_applied,
        }


class ReconcileState(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    APPLYING = "applying"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    REJECTED = "rejected"


@dataclass(frozen=True)
class UndoEntry:
    item_id: str
    stock_qty: Optional[float]
    stock_updated_at: Optional[int]
    previous_qty: Optional[float]
    previous_qty_updated_at: Optional[int]


@dataclass
class UndoSnapshot:
    entries: List[UndoEntry] = field(default_factory=list)
    entry_timestamp: Optional[int] = None


@dataclass
class ApplyResult:
    state: ReconcileState
    applied: int = 0
    error: Optional[str] = None
    failed_item_id: Optional[str] = None
    audit_written: bool = False
    adjustments: List[StockAdjustment] = field(default_factory=list)
    undo: Optional[UndoSnapshot] = None

    @property
    def ok(self) -> bool:
        return self.state is ReconcileState.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "state": self.state.value,
            "applied": self.applied,
            "auditWritten": self.audit_written,
            "items": [adj.to_dict() for adj in self.adjustments],
        }
        if self.error:
            body["error"] = self.error
        if self.failed_item_id:
            body["failedItemId"] = self.failed_item_id
        return body


class StockWriter(Protocol):
    def write_stock(self, line: StockLine, stock_applied: float, applied_at: int) -> None:
        ...

    def restore_stock(self, entry: UndoEntry) -> None:
        ...


class AuditSink(Protocol):
    def write_adjustments(self, lines: Sequence[StockLine], adjustments: Sequence[StockAdjustment]) -> None:
        ...


def _format_qty(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def compute_stock_applied(stock_prev: float, stock_in: float, sales_since: float) -> float:
    return max(0.0, round2(stock_prev + stock_in - sales_since))


class SalesIndex:
    """Sales events grouped by normalized product name."""

    def __init__(self, events: Iterable[SalesEvent] = ()) -> None:
        self._by_product: Dict[str, List[SalesEvent]] = defaultdict(list)
        for event in events:
            self._by_product[norm_text(event.product)].append(event)

    def __len__(self) -> int:
        return sum(len(rows) for rows in self._by_product.values())

    def sales_since(self, product: str, from_ts: Optional[int], now: Optional[int] = None) -> float:
        if from_ts is None:
            return 0.0
        rows = self._by_product.get(norm_text(product))
        if not rows:
            return 0.0
        upper = now if now is not None else now_ms()
        return sum(row.qty or 0 for row in rows if from_ts <= row.date <= upper)


def effective_entry_timestamp(entry_ts: Optional[int], now: int) -> Optional[int]:
    """Entry timestamps in the future are capped at now."""
    if entry_ts is None:
        return None
    return min(int(entry_ts), now)


def preview_line(line: StockLine, sales: SalesIndex, entry_ts: Optional[int], now: int) -> PreviewRow:
    stock_prev = round2(float(line.stock_prev or 0))
    raw = line.raw_input
    parsed = parse_decimal_input(raw.strip())
    valid = not math.isnan(parsed)
    stock_in = round2(parsed) if valid else 0.0
    sales_since = round2(sales.sales_since(line.product_name, entry_ts, now))
    return PreviewRow(
        line=line,
        raw=raw,
        stock_prev=stock_prev,
        stock_in=stock_in,
        sales_since=sales_since,
        stock_applied=compute_stock_applied(stock_prev, stock_in, sales_since),
        input_valid=valid,
    )


def preview(
    lines: Sequence[StockLine],
    sales: SalesIndex,
    entry_ts: Optional[int],
    now: Optional[int] = None,
) -> List[PreviewRow]:
    current = now if now is not None else now_ms()
    effective = effective_entry_timestamp(entry_ts, current)
    return [preview_line(line, sales, effective, current) for line in lines]


def preview_totals(rows: Sequence[PreviewRow]) -> PreviewTotals:
    totals = PreviewTotals()
    for row in rows:
        totals = PreviewTotals(
            stock_prev=round2(totals.stock_prev + row.stock_prev),
            stock_in=round2(totals.stock_in + (row.stock_in if row.input_valid else 0)),
            sales_since=round2(totals.sales_since + row.sales_since),
            stock_applied=round2(
                totals.stock_applied + (row.stock_applied if row.input_valid else row.stock_prev)
            ),
        )
    return totals


def _validate(rows: Sequence[PreviewRow], entry_ts: Optional[int]) -> Optional[str]:
    if not rows:
        return "No items to update."
    if any(not row.input_valid for row in rows):
        return "Invalid quantities: only numbers greater than or equal to 0 are allowed."
    if entry_ts is None:
        return "A valid entry date and time is required to compute sales."
    if not any(row.has_change for row in rows):
        return "No changes to apply."
    return None


def apply_stock(
    lines: Sequence[StockLine],
    sales: SalesIndex,
    entry_ts: Optional[int],
    writer: StockWriter,
    audit: Optional[AuditSink] = None,
    now: Optional[int] = None,
) -> ApplyResult:
    """
    Apply a reconciliation batch sharing one entry timestamp.

    Items without stock-in or sales are not written. Writes run in order and
    stop at the first failure.
    """
    current = now if now is not None else now_ms()
    rows = preview(lines, sales, entry_ts, current)
    error = _validate(rows, entry_ts)
    if error:
        logger.info("stock apply rejected: %s", error)
        return ApplyResult(state=ReconcileState.REJECTED, error=error)

    to_persist = [row for row in rows if row.has_change]
    undo = UndoSnapshot(entry_timestamp=effective_entry_timestamp(entry_ts, current))
    written: List[PreviewRow] = []
    adjustments: List[StockAdjustment] = []

    for row in to_persist:
        line = row.line
        try:
            writer.write_stock(line, row.stock_applied, current)
        except Exception as exc:
            logger.error("stock apply failed on item %s after %d writes: %s", line.id, len(written), exc)
            return ApplyResult(
                state=ReconcileState.PARTIAL_FAILURE,
                applied=len(written),
                error=str(exc) or f"Could not update stock for item {line.id}.",
                failed_item_id=line.id,
                adjustments=adjustments,
                undo=undo,
            )
        undo.entries.append(
            UndoEntry(
                item_id=line.id,
                stock_qty=line.stock_prev,
                stock_updated_at=line.stock_updated_at,
                previous_qty=line.previous_qty,
                previous_qty_updated_at=line.previous_qty_updated_at,
            )
        )
        written.append(row)
        adjustments.append(
            StockAdjustment(
                item_id=line.id,
                stock_prev=row.stock_prev,
                stock_in=row.stock_in,
                sales_since=row.sales_since,
                stock_applied=row.stock_applied,
                applied_at=current,
            )
        )

    audit_written = _write_audit(audit, [row.line for row in written], adjustments)
    logger.info("stock apply: %d items updated (audit written: %s)", len(written), audit_written)
    return ApplyResult(
        state=ReconcileState.SUCCESS,
        applied=len(written),
        audit_written=audit_written,
        adjustments=adjustments,
        undo=undo,
    )


def _write_audit(
    audit: Optional[AuditSink],
    lines: Sequence[StockLine],
    adjustments: Sequence[StockAdjustment],
) -> bool:
    if audit is None or not adjustments:
        return False
    try:
        audit.write_adjustments(lines, adjustments)
    except Exception as exc:
        logger.warning("stock audit insert failed (%d rows): %s", len(adjustments), exc)
        return False
    return True


def undo_stock(snapshot: UndoSnapshot, writer: StockWriter) -> int:
    """Write back the values captured before an apply; returns rows restored."""
    restored = 0
    for entry in snapshot.entries:
        writer.restore_stock(entry)
        restored += 1
    logger.info("stock undo: %d items restored", restored)
    return restored


__all__ = [
    "ApplyResult",
    "AuditSink",
    "PreviewRow",
    "PreviewTotals",
    "ReconcileState",
    "SalesEvent",
    "SalesIndex",
    "StockAdjustment",
    "StockLine",
    "StockWriter",
    "UndoEntry",
    "UndoSnapshot",
    "apply_stock",
    "compute_stock_applied",
    "effective_entry_timestamp",
    "preview",
    "preview_totals",
    "undo_stock",
]

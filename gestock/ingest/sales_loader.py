"""
Sales-history spreadsheet to `SalesEvent`s.

The sales export is a flat sheet with a product column, a date column and a
quantity column; optional subtotal and category columns are carried along.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from gestock.ingest.workbook import Sheet, read_workbook
from gestock.stock.reconciler import SalesEvent
from gestock.utils.dates import parse_sales_date
from gestock.utils.normalize import cell_text, parse_quantity

logger = logging.getLogger(__name__)

SALES_HEADER_MAP: Dict[str, Sequence[str]] = {
    "product": ("artículo", "articulo", "producto", "nombre", "item", "producto/marca"),
    "date": ("hora", "fecha", "date", "día", "dia"),
    "qty": ("cantidad", "qty", "venta", "ventas"),
    "subtotal": ("subtotal", "importe", "total", "monto"),
    "category": ("categoría", "categoria", "rubro", "category"),
}


def _normalize_header(value: Any) -> str:
    return str(value or "").strip().lower()


def _find_column(headers: Iterable[str], field: str) -> Optional[str]:
    normalized = {_normalize_header(header): header for header in headers}
    for alias in SALES_HEADER_MAP[field]:
        if alias in normalized:
            return normalized[alias]
    return None


def parse_sales_rows(headers: Sequence[str], rows: Iterable[Mapping[str, Any]]) -> List[SalesEvent]:
    columns = {field: _find_column(headers, field) for field in SALES_HEADER_MAP}
    if not columns["product"] or not columns["date"]:
        logger.warning("sales sheet has no product/date columns; headers=%s", list(headers))
        return []

    events: List[SalesEvent] = []
    skipped = 0
    for row in rows:
        product = cell_text(row.get(columns["product"]))
        date_ms = parse_sales_date(row.get(columns["date"]))
        if not product or date_ms is None:
            skipped += 1
            continue
        qty = parse_quantity(row.get(columns["qty"])) if columns["qty"] else None
        subtotal = parse_quantity(row.get(columns["subtotal"])) if columns["subtotal"] else None
        category = cell_text(row.get(columns["category"])) if columns["category"] else ""
        events.append(
            SalesEvent(
                product=product,
                qty=qty if qty is not None else 0.0,
                date=date_ms,
                subtotal=subtotal,
                category=category or None,
            )
        )
    if skipped:
        logger.warning("Skipped %d sales rows without product or date", skipped)
    return events


def _pick_sales_sheet(sheets: Mapping[str, Sheet]) -> Optional[Sheet]:
    for sheet in sheets.values():
        if _find_column(sheet.headers, "product") and _find_column(sheet.headers, "date"):
            return sheet
    return next(iter(sheets.values()), None)


def load_sales_events(data: bytes, filename: str = "ventas.xlsx") -> List[SalesEvent]:
    """Read the first sheet that carries product and date columns."""
    sheets = read_workbook(data, filename)
    sheet = _pick_sales_sheet(sheets)
    if sheet is None:
        return []
    events = parse_sales_rows(sheet.headers, sheet.rows)
    logger.info("sales: %d events loaded from sheet '%s'", len(events), sheet.name)
    return events


__all__ = ["SALES_HEADER_MAP", "load_sales_events", "parse_sales_rows"]

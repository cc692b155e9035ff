"""
Price-list ingestion: spreadsheet bytes to normalized, deduplicated records.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from gestock.catalog.models import Catalog, PriceRecord
from gestock.ingest.catalog_reducer import reduce_latest
from gestock.ingest.headers import HeaderMap, SheetSelection, select_best_sheet
from gestock.ingest.workbook import Sheet, WorkbookReadError, read_workbook
from gestock.utils.config import AppConfig
from gestock.utils.dates import MIN_VALID_MS, format_label, now_ms, parse_updated_at
from gestock.utils.normalize import barcode_key, cell_text, norm_barcode, norm_text, parse_price

logger = logging.getLogger(__name__)


class CatalogIngestError(ValueError):
    """Base class for catalog upload failures; nothing is stored when raised."""

    hint: Optional[Any] = None

    def payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": str(self)}
        if self.hint is not None:
            body["hint"] = self.hint
        return body


class CatalogParseError(CatalogIngestError):
    pass


class NoValidHeadersError(CatalogIngestError):
    def __init__(self, detections: Sequence[Mapping[str, Any]]) -> None:
        super().__init__("No valid headers found: a price column and a 'desde' column are required.")
        self.hint = list(detections)


class NoValidRowsError(CatalogIngestError):
    def __init__(self, sheet_name: str, header_map: HeaderMap) -> None:
        super().__init__(f"No valid rows in sheet '{sheet_name}' (no parseable 'desde' dates).")
        self.hint = {"sheet": sheet_name, "map": header_map.as_dict()}


@dataclass(frozen=True)
class IngestSettings:
    min_barcode_digits: int = 8
    min_valid_ms: int = MIN_VALID_MS
    timezone: str = "UTC"

    @classmethod
    def from_config(cls, config: AppConfig) -> "IngestSettings":
        return cls(
            min_barcode_digits=config.catalog.min_barcode_digits,
            min_valid_ms=config.catalog.min_valid_ms,
            timezone=config.app.timezone,
        )


def identity_key(name: str, barcode: Optional[str] = None, code: Optional[str] = None, min_barcode_digits: int = 8) -> str:
    """Barcode key, else normalized code, else normalized name, else the raw name."""
    bar_key = barcode_key(barcode, min_barcode_digits)
    if bar_key:
        return bar_key
    code_key = norm_text(code) if code else ""
    if code_key:
        return code_key
    return norm_text(name) or (name or "").strip()


def _cell(row: Mapping[str, Any], column: Optional[str]) -> Any:
    return row.get(column) if column else None


def parse_row(row: Mapping[str, Any], header_map: HeaderMap, settings: IngestSettings = IngestSettings()) -> Optional[PriceRecord]:
    """Build a record from one row, or None when the row must be skipped."""
    name = cell_text(_cell(row, header_map.name))
    code = cell_text(_cell(row, header_map.code)) or None
    barcode = norm_barcode(_cell(row, header_map.barcode))
    if not (name or code or barcode):
        return None

    raw_updated = _cell(row, header_map.updated)
    updated_at = parse_updated_at(raw_updated, settings.min_valid_ms)
    if not updated_at:
        return None

    if isinstance(raw_updated, str):
        label = raw_updated
    else:
        label = format_label(updated_at, settings.timezone)

    display_name = name or code or barcode or ""
    return PriceRecord(
        identity_key=identity_key(display_name, barcode, code, settings.min_barcode_digits),
        name=display_name,
        code=code,
        barcode=barcode,
        price=parse_price(_cell(row, header_map.price)),
        updated_at=updated_at,
        updated_at_label=label,
    )


def parse_rows(
    rows: Sequence[Mapping[str, Any]],
    header_map: HeaderMap,
    settings: IngestSettings = IngestSettings(),
) -> Tuple[List[PriceRecord], int]:
    """Parse rows in source order; returns (records, skipped)."""
    records: List[PriceRecord] = []
    skipped = 0
    for index, row in enumerate(rows):
        record = parse_row(row, header_map, settings)
        if record is None:
            skipped += 1
            logger.debug("Skipping catalog row %d: no identifier or unparseable 'desde'", index)
            continue
        records.append(record)
    return records, skipped


@dataclass
class IngestResult:
    sheet_name: str
    header_map: HeaderMap
    records: List[PriceRecord]
    items: List[PriceRecord]
    row_count: int
    skipped: int
    detections: List[Dict[str, Any]] = field(default_factory=list)

    def to_catalog(self, imported_at: Optional[int] = None, source_mode: str = "api") -> Catalog:
        return Catalog(
            items=list(self.items),
            row_count=self.row_count,
            imported_at=imported_at if imported_at is not None else now_ms(),
            source_mode=source_mode,
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "imported": len(self.items),
            "inserted": len(self.records),
            "skipped": self.skipped,
        }


def load_sheets(data: bytes, filename: str = "") -> Dict[str, Sheet]:
    try:
        return read_workbook(data, filename)
    except WorkbookReadError as exc:
        raise CatalogParseError(str(exc)) from exc


def inspect_headers(data: bytes, filename: str = "") -> SheetSelection:
    """Per-sheet header detection without parsing rows."""
    sheets = load_sheets(data, filename)
    return select_best_sheet({name: sheet.headers for name, sheet in sheets.items()})


def ingest_catalog(data: bytes, filename: str = "", settings: IngestSettings = IngestSettings()) -> IngestResult:
    """
    Parse an uploaded price list into a reduced catalog.

    Raises `CatalogParseError` for unreadable bytes, `NoValidHeadersError`
    when no sheet has both price and "desde" columns, and `NoValidRowsError`
    when the chosen sheet yields no usable row.
    """
    sheets = load_sheets(data, filename)
    selection = select_best_sheet({name: sheet.headers for name, sheet in sheets.items()})
    if not selection.found:
        logger.warning("catalog upload '%s' rejected: no valid headers %s", filename, selection.detections)
        raise NoValidHeadersError(selection.detections)

    sheet = sheets[selection.sheet_name]
    records, skipped = parse_rows(sheet.rows, selection.header_map, settings)
    if not records:
        raise NoValidRowsError(sheet.name, selection.header_map)

    items = reduce_latest(records)
    logger.info(
        "catalog: parsed %d rows from '%s' (accepted %d, skipped %d, unique %d)",
        len(sheet.rows),
        sheet.name,
        len(records),
        skipped,
        len(items),
    )
    return IngestResult(
        sheet_name=sheet.name,
        header_map=selection.header_map,
        records=records,
        items=items,
        row_count=len(sheet.rows),
        skipped=skipped,
        detections=selection.detections,
    )


__all__ = [
    "CatalogIngestError",
    "CatalogParseError",
    "IngestResult",
    "IngestSettings",
    "NoValidHeadersError",
    "NoValidRowsError",
    "identity_key",
    "ingest_catalog",
    "inspect_headers",
    "parse_row",
    "parse_rows",
]

"""
Header alias detection for price-list spreadsheets.

The alias table is static data; matching works on plain header strings so it
does not depend on how a given reader shapes its rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from gestock.utils.normalize import norm_text

logger = logging.getLogger(__name__)

FIELDS: Tuple[str, ...] = ("name", "code", "barcode", "price", "updated")

# Column claim order: barcode before code so "Codigo Barras" is not taken as a code column.
CLAIM_ORDER: Tuple[str, ...] = ("barcode", "code", "name", "price", "updated")

# "updated" is the start-of-validity column. Expiry columns ("vigencia", "hasta")
# are intentionally absent.
HEADER_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("descripcion", "descripción", "nombre", "detalle", "producto", "articulo", "artículo"),
    "code": ("codigo", "código", "id", "sku", "código interno", "cod interno"),
    "barcode": (
        "codigo barras",
        "código barras",
        "codigo de barras",
        "código de barras",
        "cod barras",
        "cod. barras",
        "barcode",
        "barra",
        "barras",
        "ean",
    ),
    "price": ("precio", "precio venta", "precio final", "pvp", "importe"),
    "updated": ("desde", "fecha desde", "valido desde"),
}

IDENTIFIER_FIELDS: Tuple[str, ...] = ("name", "code", "barcode")


def header_matches(header: str, alias: str) -> bool:
    """
    True when `alias` names `header`.

    Single-word aliases must appear as a whole token of the normalized header;
    multi-word aliases match as a normalized substring.
    """
    normalized_header = norm_text(header)
    normalized_alias = norm_text(alias)
    if not normalized_alias or not normalized_header:
        return False
    if " " in normalized_alias:
        return normalized_alias in normalized_header
    return normalized_alias in normalized_header.split(" ")


@dataclass
class HeaderMap:
    name: Optional[str] = None
    code: Optional[str] = None
    barcode: Optional[str] = None
    price: Optional[str] = None
    updated: Optional[str] = None

    def get(self, field_name: str) -> Optional[str]:
        return getattr(self, field_name)

    @property
    def has_required(self) -> bool:
        return bool(self.price and self.updated)

    @property
    def identifier_score(self) -> int:
        return sum(1 for name in IDENTIFIER_FIELDS if self.get(name))

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {name: self.get(name) for name in FIELDS}


def _claim_field(header: str, aliases: Mapping[str, Sequence[str]]) -> Optional[str]:
    for field_name in CLAIM_ORDER:
        if any(header_matches(header, alias) for alias in aliases[field_name]):
            return field_name
    return None


def pick_headers(
    headers: Iterable[object],
    aliases: Mapping[str, Sequence[str]] = HEADER_ALIASES,
) -> HeaderMap:
    """Map each canonical field to the first header that names it."""
    found = HeaderMap()
    for raw in headers:
        header = str(raw)
        field_name = _claim_field(header, aliases)
        if field_name and found.get(field_name) is None:
            setattr(found, field_name, header)
    return found


@dataclass
class SheetSelection:
    sheet_name: Optional[str]
    header_map: Optional[HeaderMap]
    detections: List[Dict[str, object]] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.sheet_name is not None and self.header_map is not None


def select_best_sheet(sheets: Mapping[str, Sequence[object]]) -> SheetSelection:
    """
    Choose the sheet to import from `{sheet_name: headers}`.

    A sheet qualifies when it has both a price and a "desde" column. The first
    qualifying sheet wins unless a later one maps strictly more identifier
    columns (name, code, barcode).
    """
    selection = SheetSelection(sheet_name=None, header_map=None)
    for sheet_name, headers in sheets.items():
        header_map = pick_headers(headers)
        selection.detections.append({"sheet": sheet_name, "map": header_map.as_dict()})
        if not header_map.has_required:
            logger.debug("Sheet '%s' lacks price/desde headers: %s", sheet_name, header_map.as_dict())
            continue
        if selection.header_map is None or header_map.identifier_score > selection.header_map.identifier_score:
            selection.sheet_name = sheet_name
            selection.header_map = header_map

    if selection.found:
        logger.info(
            "catalog: using sheet '%s'; matched headers: %s",
            selection.sheet_name,
            selection.header_map.as_dict(),
        )
    return selection


__all__ = [
    "FIELDS",
    "HEADER_ALIASES",
    "HeaderMap",
    "SheetSelection",
    "header_matches",
    "pick_headers",
    "select_best_sheet",
]

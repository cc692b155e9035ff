"""
Price catalog records and the persisted catalog blob shape.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from gestock.utils.normalize import cell_text, parse_price

SOURCE_MODES = ("api", "public", "local-upload")


@dataclass(frozen=True)
class PriceRecord:
    identity_key: str
    name: str
    price: float
    updated_at: int = 0
    updated_at_label: str = ""
    code: Optional[str] = None
    barcode: Optional[str] = None

    @property
    def identifier_score(self) -> int:
        return (1 if self.barcode else 0) + (1 if self.code else 0)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.identity_key, "name": self.name}
        if self.code:
            payload["code"] = self.code
        if self.barcode:
            payload["barcode"] = self.barcode
        payload["price"] = self.price
        payload["updatedAt"] = self.updated_at
        payload["updatedAtLabel"] = self.updated_at_label
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PriceRecord":
        name = cell_text(raw.get("name"))
        try:
            updated_at = int(raw.get("updatedAt") or 0)
        except (TypeError, ValueError):
            updated_at = 0
        return cls(
            identity_key=cell_text(raw.get("id")) or name,
            name=name,
            code=cell_text(raw.get("code")) or None,
            barcode=cell_text(raw.get("barcode")) or None,
            price=parse_price(raw.get("price")),
            updated_at=updated_at,
            updated_at_label=cell_text(raw.get("updatedAtLabel")),
        )


@dataclass
class Catalog:
    items: List[PriceRecord] = field(default_factory=list)
    row_count: int = 0
    imported_at: int = 0
    source_mode: str = "api"

    def __post_init__(self) -> None:
        if self.source_mode not in SOURCE_MODES:
            raise ValueError(f"Unknown catalog source mode: {self.source_mode}")

    @property
    def max_updated_at(self) -> int:
        return max((item.updated_at for item in self.items), default=0)

    def etag(self) -> str:
        """Weak validator built from the row count and the newest timestamp."""
        return f'W/"{self.row_count}-{self.max_updated_at}"'

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "rowCount": self.row_count,
            "importedAt": self.imported_at,
            "sourceMode": self.source_mode,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Catalog":
        items_raw = raw.get("items")
        items = [PriceRecord.from_dict(item) for item in items_raw] if isinstance(items_raw, list) else []
        source_mode = raw.get("sourceMode")
        return cls(
            items=items,
            row_count=int(raw.get("rowCount") or len(items)),
            imported_at=int(raw.get("importedAt") or 0),
            source_mode=source_mode if source_mode in SOURCE_MODES else "api",
        )


__all__ = ["Catalog", "PriceRecord", "SOURCE_MODES"]

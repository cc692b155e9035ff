"""
Ingestion helpers for price-list and sales-history spreadsheets.
"""

from .catalog_ingestor import (
    CatalogIngestError,
    CatalogParseError,
    NoValidHeadersError,
    NoValidRowsError,
    ingest_catalog,
    inspect_headers,
)
from .catalog_reducer import reduce_latest

__all__ = [
    "CatalogIngestError",
    "CatalogParseError",
    "NoValidHeadersError",
    "NoValidRowsError",
    "ingest_catalog",
    "inspect_headers",
    "reduce_latest",
]

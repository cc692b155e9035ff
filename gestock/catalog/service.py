"""
Catalog upload and read orchestration.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from gestock.catalog.models import Catalog
from gestock.catalog.store import CatalogCache, CatalogStore
from gestock.ingest.catalog_ingestor import IngestResult, IngestSettings, ingest_catalog
from gestock.ingest.catalog_reducer import reduce_latest

logger = logging.getLogger(__name__)


@dataclass
class CatalogService:
    store: CatalogStore
    settings: IngestSettings = IngestSettings()
    cache: Optional[CatalogCache] = None
    source_mode: str = "api"

    def upload(self, tenant: str, data: bytes, filename: str = "", source_mode: Optional[str] = None) -> IngestResult:
        """
        Parse and store a price list, replacing the tenant's catalog.

        Ingestion errors propagate before anything is written, so a failed
        upload leaves the previous catalog untouched.
        """
        result = ingest_catalog(data, filename, self.settings)
        catalog = result.to_catalog(source_mode=source_mode or self.source_mode)
        self.store.put_catalog(tenant, catalog.to_dict())
        if self.cache is not None:
            self.cache.invalidate(tenant)
        logger.info("tenant %s: catalog replaced with %d items from '%s'", tenant, len(catalog.items), filename)
        return result

    def read(self, tenant: str) -> Catalog:
        """Stored catalog re-reduced on read; empty when nothing was uploaded."""
        version: Optional[int] = None
        if self.cache is not None:
            cached = self.cache.get(tenant)
            if cached is not None:
                return cached
            version = self.cache.version(tenant)

        payload = self.store.get_catalog(tenant)
        if payload is None:
            catalog = Catalog(source_mode=self.source_mode)
        else:
            catalog = Catalog.from_dict(payload)
            catalog.items = reduce_latest(catalog.items)

        if self.cache is not None:
            self.cache.set(tenant, catalog, version=version)
        return catalog


__all__ = ["CatalogService"]

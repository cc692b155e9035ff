"""
Price catalog records and storage.
"""

from .models import Catalog, PriceRecord
from .store import CatalogCache, CatalogStore, CatalogStoreError

__all__ = ["Catalog", "CatalogCache", "CatalogStore", "CatalogStoreError", "PriceRecord"]

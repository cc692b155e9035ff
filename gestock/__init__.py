"""
GeStock back-office core: price-catalog ingestion and stock reconciliation.
"""

__version__ = "0.1.0"

"""
Sales-history providers.

The sales export is read either from the tenant's blob storage or from an
HTTP URL; both end up in `load_sales_events`.
"""
from __future__ import annotations

import logging
import os
from typing import List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from gestock.catalog.store import BlobStore
from gestock.ingest.sales_loader import load_sales_events
from gestock.stock.reconciler import SalesEvent, SalesIndex
from gestock.utils.config import AppConfig

logger = logging.getLogger(__name__)

TIMEOUT = httpx.Timeout(
    connect=float(os.getenv("HTTP_CONNECT_TIMEOUT", "5")),
    read=float(os.getenv("HTTP_READ_TIMEOUT", "30")),
    write=float(os.getenv("HTTP_WRITE_TIMEOUT", "10")),
    pool=float(os.getenv("HTTP_POOL_TIMEOUT", "5")),
)

Retryable = (httpx.ConnectError, httpx.ReadTimeout, httpx.WriteError, httpx.RemoteProtocolError, httpx.PoolTimeout)


def _retry():
    return retry(
        reraise=True,
        retry=retry_if_exception_type(Retryable),
        stop=stop_after_attempt(int(os.getenv("HTTP_RETRY_ATTEMPTS", "3"))),
        wait=wait_exponential_jitter(initial=1, max=8),
    )


@_retry()
def fetch_bytes(client: httpx.Client, url: str) -> bytes:
    r = client.get(url)
    r.raise_for_status()
    return r.content


def sales_from_url(url: str, client: Optional[httpx.Client] = None) -> List[SalesEvent]:
    filename = url.rsplit("/", 1)[-1].split("?", 1)[0] or "ventas.xlsx"
    if client is not None:
        data = fetch_bytes(client, url)
    else:
        with httpx.Client(timeout=TIMEOUT, follow_redirects=True) as own_client:
            data = fetch_bytes(own_client, url)
    return load_sales_events(data, filename)


def sales_from_store(blobs: BlobStore, tenant: str, storage_key: str) -> List[SalesEvent]:
    key = f"{tenant}/{storage_key}"
    data = blobs.get_bytes(key)
    if data is None:
        logger.info("no sales file at %s; sales since entry count as 0", key)
        return []
    return load_sales_events(data, storage_key)


def load_sales_index(config: AppConfig, blobs: BlobStore, tenant: str) -> SalesIndex:
    """Sales from the configured URL when set, else from the tenant's storage."""
    if config.sales.url:
        events = sales_from_url(config.sales.url)
    else:
        events = sales_from_store(blobs, tenant, config.sales.storage_key)
    return SalesIndex(events)


__all__ = ["fetch_bytes", "load_sales_index", "sales_from_store", "sales_from_url"]

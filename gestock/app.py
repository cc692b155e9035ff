#!/usr/bin/env python3
"""
HTTP surface for the price catalog and stock reconciliation.

Tenants are a plain path segment; authentication is handled upstream.
"""
from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, File, Request, Response, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from gestock.catalog.service import CatalogService
from gestock.catalog.store import CatalogCache, CatalogStore, CatalogStoreError, build_blob_store
from gestock.ingest.catalog_ingestor import CatalogIngestError, IngestSettings, inspect_headers
from gestock.stock.reconciler import (
    ReconcileState,
    SalesEvent,
    SalesIndex,
    StockLine,
    UndoEntry,
    UndoSnapshot,
    apply_stock,
    preview,
    preview_totals,
    undo_stock,
)
from gestock.stock.repository import SqlAuditSink, SqlStockWriter
from gestock.stock.sales_source import load_sales_index
from gestock.utils.config import load_config

logger = logging.getLogger(__name__)

app = FastAPI(title="GeStock Back-office")

CATALOG_CACHE_CONTROL = "public, max-age=120, stale-while-revalidate=86400"


class StockItemIn(BaseModel):
    id: str
    productName: str = ""
    stockPrev: float = 0
    qty: Optional[Union[str, float]] = None
    qtyOrdered: float = 0
    stockUpdatedAt: Optional[int] = None
    previousQty: Optional[float] = None
    previousQtyUpdatedAt: Optional[int] = None

    def to_line(self) -> StockLine:
        return StockLine(
            id=self.id,
            product_name=self.productName,
            stock_prev=self.stockPrev,
            qty=self.qty,
            qty_ordered=self.qtyOrdered,
            stock_updated_at=self.stockUpdatedAt,
            previous_qty=self.previousQty,
            previous_qty_updated_at=self.previousQtyUpdatedAt,
        )


class SaleIn(BaseModel):
    product: str
    qty: float = 0
    date: int


class StockRequest(BaseModel):
    items: List[StockItemIn] = Field(default_factory=list)
    entryTimestamp: Optional[int] = None
    branchId: Optional[str] = None
    sales: Optional[List[SaleIn]] = None


class UndoEntryIn(BaseModel):
    itemId: str
    stockQty: Optional[float] = None
    stockUpdatedAt: Optional[int] = None
    previousQty: Optional[float] = None
    previousQtyUpdatedAt: Optional[int] = None


class UndoRequest(BaseModel):
    entries: List[UndoEntryIn] = Field(default_factory=list)


@lru_cache(maxsize=1)
def get_catalog_service() -> CatalogService:
    config = load_config()
    store = CatalogStore(build_blob_store(config))
    return CatalogService(
        store=store,
        settings=IngestSettings.from_config(config),
        cache=CatalogCache(ttl_seconds=config.catalog.cache_ttl_seconds),
        source_mode=config.app.source_mode,
    )


def get_sales_loader() -> Callable[[str], SalesIndex]:
    config = load_config()
    blobs = build_blob_store(config)
    return lambda tenant: load_sales_index(config, blobs, tenant)


def get_stock_writer(tenant: str) -> SqlStockWriter:
    return SqlStockWriter(tenant)


def get_audit_sink(tenant: str) -> SqlAuditSink:
    return SqlAuditSink(tenant)


@app.exception_handler(CatalogIngestError)
async def catalog_ingest_error_handler(request: Request, exc: CatalogIngestError) -> JSONResponse:
    return JSONResponse(status_code=400, content=exc.payload())


@app.exception_handler(CatalogStoreError)
async def catalog_store_error_handler(request: Request, exc: CatalogStoreError) -> JSONResponse:
    logger.error("storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"error": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.get("/health", tags=["health"])
def healthcheck() -> Dict[str, str]:
    """Minimal liveness check."""
    return {"status": "ok"}


@app.get("/t/{tenant}/precios", tags=["catalog"])
def read_catalog(tenant: str, service: CatalogService = Depends(get_catalog_service)) -> Dict[str, Any]:
    return service.read(tenant).to_dict()


@app.head("/t/{tenant}/precios", tags=["catalog"])
def catalog_freshness(tenant: str, service: CatalogService = Depends(get_catalog_service)) -> Response:
    """Lets clients revalidate a cached catalog without downloading it."""
    catalog = service.read(tenant)
    return Response(
        status_code=200,
        headers={
            "ETag": catalog.etag(),
            "X-RowCount": str(catalog.row_count),
            "X-MaxTs": str(catalog.max_updated_at),
            "Cache-Control": CATALOG_CACHE_CONTROL,
        },
    )


@app.post("/t/{tenant}/precios", tags=["catalog"])
async def upload_catalog(
    tenant: str,
    file: UploadFile = File(...),
    debug: Optional[str] = None,
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    data = await file.read()
    filename = file.filename or ""
    if debug == "map":
        selection = await asyncio.to_thread(inspect_headers, data, filename)
        return {
            "sheet": selection.sheet_name,
            "map": selection.header_map.as_dict() if selection.header_map else None,
            "detections": selection.detections,
        }
    result = await asyncio.to_thread(service.upload, tenant, data, filename)
    return result.summary()


def _sales_for(request: StockRequest, tenant: str, loader: Callable[[str], SalesIndex]) -> SalesIndex:
    if request.sales is not None:
        return SalesIndex(SalesEvent(product=s.product, qty=s.qty, date=s.date) for s in request.sales)
    return loader(tenant)


@app.post("/t/{tenant}/stock/preview", tags=["stock"])
def stock_preview(
    tenant: str,
    request: StockRequest,
    sales_loader: Callable[[str], SalesIndex] = Depends(get_sales_loader),
) -> Dict[str, Any]:
    sales = _sales_for(request, tenant, sales_loader)
    rows = preview([item.to_line() for item in request.items], sales, request.entryTimestamp)
    return {
        "rows": [row.to_dict() for row in rows],
        "totals": preview_totals(rows).to_dict(),
    }


def _undo_payload(snapshot: Optional[UndoSnapshot]) -> List[Dict[str, Any]]:
    if snapshot is None:
        return []
    return [
        {
            "itemId": entry.item_id,
            "stockQty": entry.stock_qty,
            "stockUpdatedAt": entry.stock_updated_at,
            "previousQty": entry.previous_qty,
            "previousQtyUpdatedAt": entry.previous_qty_updated_at,
        }
        for entry in snapshot.entries
    ]


@app.post("/t/{tenant}/stock/apply", tags=["stock"])
def stock_apply(
    tenant: str,
    request: StockRequest,
    sales_loader: Callable[[str], SalesIndex] = Depends(get_sales_loader),
    writer: SqlStockWriter = Depends(get_stock_writer),
    audit: SqlAuditSink = Depends(get_audit_sink),
) -> JSONResponse:
    if request.branchId is not None and hasattr(audit, "branch_id"):
        audit.branch_id = request.branchId
    sales = _sales_for(request, tenant, sales_loader)
    result = apply_stock([item.to_line() for item in request.items], sales, request.entryTimestamp, writer, audit)
    body = result.to_dict()
    body["undo"] = _undo_payload(result.undo)
    status = 400 if result.state is ReconcileState.REJECTED else 200
    return JSONResponse(status_code=status, content=body)


@app.post("/t/{tenant}/stock/undo", tags=["stock"])
def stock_undo(
    tenant: str,
    request: UndoRequest,
    writer: SqlStockWriter = Depends(get_stock_writer),
) -> Dict[str, Any]:
    snapshot = UndoSnapshot(
        entries=[
            UndoEntry(
                item_id=entry.itemId,
                stock_qty=entry.stockQty,
                stock_updated_at=entry.stockUpdatedAt,
                previous_qty=entry.previousQty,
                previous_qty_updated_at=entry.previousQtyUpdatedAt,
            )
            for entry in request.entries
        ]
    )
    return {"restored": undo_stock(snapshot, writer)}


__all__ = ["app"]

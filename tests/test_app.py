from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from gestock import app as app_module
from gestock.catalog.service import CatalogService
from gestock.catalog.store import CatalogStore, LocalBlobStore
from gestock.db.models import OrderItem
from gestock.stock.reconciler import SalesEvent, SalesIndex
from gestock.stock.repository import SqlAuditSink, SqlStockWriter
from gestock.utils.dates import now_ms

LECHE_CSV = b"descripcion,precio,desde\nLeche,350,15/01/2024\nLeche,340,15/01/2024\n"
HOUR = 3_600_000


@pytest.fixture()
def client(tmp_path, session_factory, order_items):
    service = CatalogService(store=CatalogStore(LocalBlobStore(tmp_path)))
    stored_sales = SalesIndex([SalesEvent(product="Yerba Mate", qty=2, date=now_ms() - HOUR)])

    def writer_override(tenant: str) -> SqlStockWriter:
        return SqlStockWriter(tenant, session_factory=session_factory)

    def audit_override(tenant: str) -> SqlAuditSink:
        return SqlAuditSink(tenant, session_factory=session_factory)

    app = app_module.app
    app.dependency_overrides[app_module.get_catalog_service] = lambda: service
    app.dependency_overrides[app_module.get_sales_loader] = lambda: (lambda tenant: stored_sales)
    app.dependency_overrides[app_module.get_stock_writer] = writer_override
    app.dependency_overrides[app_module.get_audit_sink] = audit_override
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_catalog_upload_then_read(client):
    assert client.get("/t/t1/precios").json()["items"] == []

    res = client.post("/t/t1/precios", files={"file": ("precios.csv", LECHE_CSV, "text/csv")})
    assert res.status_code == 200
    assert res.json() == {"ok": True, "imported": 1, "inserted": 2, "skipped": 0}

    body = client.get("/t/t1/precios").json()
    assert body["rowCount"] == 2
    assert body["sourceMode"] == "api"
    assert body["items"][0]["name"] == "Leche"
    assert body["items"][0]["price"] == 340
    assert body["items"][0]["updatedAtLabel"] == "15/01/2024"
    assert "barcode" not in body["items"][0]


def test_catalog_upload_without_headers_is_400_with_hint(client):
    res = client.post("/t/t1/precios", files={"file": ("x.csv", b"foo,bar\n1,2\n", "text/csv")})
    assert res.status_code == 400
    body = res.json()
    assert body["error"]
    assert body["hint"][0]["sheet"] == "csv"
    assert client.get("/t/t1/precios").json()["items"] == []


def test_catalog_debug_map_does_not_store(client):
    res = client.post("/t/t1/precios?debug=map", files={"file": ("precios.csv", LECHE_CSV, "text/csv")})
    assert res.status_code == 200
    assert res.json()["map"]["price"] == "precio"
    assert client.get("/t/t1/precios").json()["items"] == []


def test_catalog_head_reports_freshness(client):
    empty = client.head("/t/t1/precios")
    assert empty.status_code == 200
    assert empty.headers["etag"] == 'W/"0-0"'
    assert empty.headers["x-rowcount"] == "0"

    client.post("/t/t1/precios", files={"file": ("precios.csv", LECHE_CSV, "text/csv")})
    newest = client.get("/t/t1/precios").json()["items"][0]["updatedAt"]

    res = client.head("/t/t1/precios")
    assert res.status_code == 200
    assert res.content == b""
    assert res.headers["etag"] == f'W/"2-{newest}"'
    assert res.headers["x-rowcount"] == "2"
    assert res.headers["x-maxts"] == str(newest)
    assert "stale-while-revalidate" in res.headers["cache-control"]


def test_catalog_upload_parses_in_a_worker_thread(client, monkeypatch):
    offloaded = []

    async def fake_to_thread(func, *args):
        offloaded.append(func.__name__)
        return func(*args)

    monkeypatch.setattr(app_module.asyncio, "to_thread", fake_to_thread)
    client.post("/t/t1/precios?debug=map", files={"file": ("precios.csv", LECHE_CSV, "text/csv")})
    res = client.post("/t/t1/precios", files={"file": ("precios.csv", LECHE_CSV, "text/csv")})

    assert res.status_code == 200
    assert offloaded == ["inspect_headers", "upload"]


def test_stock_preview_with_inline_sales(client):
    now = now_ms()
    payload = {
        "items": [{"id": "i1", "productName": "Yerba Mate", "stockPrev": 5, "qty": "0"}],
        "entryTimestamp": now - 2 * HOUR,
        "sales": [{"product": "yerba mate", "qty": 10, "date": now - HOUR}],
    }
    body = client.post("/t/t1/stock/preview", json=payload).json()
    assert body["rows"][0]["stockApplied"] == 0
    assert body["totals"]["salesSince"] == 10


def test_stock_apply_and_undo(client, session_factory):
    payload = {
        "items": [{"id": "i1", "productName": "Yerba Mate", "stockPrev": 5, "qty": "3"}],
        "entryTimestamp": now_ms() - 2 * HOUR,
    }
    res = client.post("/t/t1/stock/apply", json=payload)
    assert res.status_code == 200
    body = res.json()
    assert body["state"] == "success"
    assert body["applied"] == 1
    assert body["auditWritten"] is True
    assert body["items"][0]["stockApplied"] == 6
    with session_factory() as session:
        assert session.get(OrderItem, "i1").stock_qty == 6

    res = client.post("/t/t1/stock/undo", json={"entries": body["undo"]})
    assert res.json() == {"restored": 1}
    with session_factory() as session:
        assert session.get(OrderItem, "i1").stock_qty == 5


def test_stock_apply_rejects_invalid_quantities(client):
    payload = {"items": [{"id": "i1", "productName": "Yerba Mate", "qty": "tres"}], "entryTimestamp": now_ms()}
    res = client.post("/t/t1/stock/apply", json=payload)
    assert res.status_code == 400
    assert res.json()["state"] == "rejected"

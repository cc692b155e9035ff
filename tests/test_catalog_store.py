from __future__ import annotations

import io
import json

import pytest
from botocore.exceptions import ClientError

from gestock.catalog.models import Catalog, PriceRecord
from gestock.catalog.service import CatalogService
from gestock.catalog.store import (
    CatalogCache,
    CatalogStore,
    CatalogStoreError,
    LocalBlobStore,
    S3BlobStore,
    catalog_key,
)
from gestock.ingest.catalog_ingestor import NoValidHeadersError
from gestock.utils.config import StorageSettings

LECHE_CSV = b"descripcion,precio,desde\nLeche,350,15/01/2024\nLeche,340,15/01/2024\n"


class FakeS3Client:
    def __init__(self) -> None:
        self.objects = {}

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = Body


def _s3_settings() -> StorageSettings:
    return StorageSettings(
        backend="s3",
        root_dir="",
        bucket="catalogs",
        endpoint_url="http://minio:9000",
        access_key_id="key",
        secret_access_key="secret",
        region="us-east-1",
        use_ssl=False,
    )


def test_catalog_key_rejects_path_segments():
    assert catalog_key("kiosco-1") == "kiosco-1/prices.json"
    with pytest.raises(ValueError):
        catalog_key("../etc")
    with pytest.raises(ValueError):
        catalog_key("")


def test_local_store_round_trip(tmp_path):
    store = CatalogStore(LocalBlobStore(tmp_path))
    assert store.get_catalog("t1") is None

    store.put_catalog("t1", {"items": [], "rowCount": 0, "importedAt": 1, "sourceMode": "api"})
    assert json.loads((tmp_path / "t1" / "prices.json").read_text("utf-8"))["importedAt"] == 1
    assert store.get_catalog("t1")["importedAt"] == 1
    assert [p.name for p in (tmp_path / "t1").iterdir()] == ["prices.json"]


def test_corrupt_blob_raises_store_error(tmp_path):
    (tmp_path / "t1").mkdir()
    (tmp_path / "t1" / "prices.json").write_bytes(b"{not json")
    with pytest.raises(CatalogStoreError):
        CatalogStore(LocalBlobStore(tmp_path)).get_catalog("t1")


def test_s3_store_uses_bucket_and_treats_missing_key_as_absent():
    client = FakeS3Client()
    blobs = S3BlobStore(_s3_settings(), client=client)

    assert blobs.get_bytes("t1/prices.json") is None
    blobs.put_bytes("t1/prices.json", b"{}", content_type="application/json")
    assert client.objects[("catalogs", "t1/prices.json")] == b"{}"
    assert blobs.get_bytes("t1/prices.json") == b"{}"


def test_cache_expires_and_ignores_stale_versions():
    clock = [0.0]
    cache = CatalogCache(ttl_seconds=10, clock=lambda: clock[0])

    version = cache.version("t1")
    cache.invalidate("t1")
    cache.set("t1", "stale", version=version)
    assert cache.get("t1") is None

    cache.set("t1", "fresh")
    assert cache.get("t1") == "fresh"
    clock[0] = 11
    assert cache.get("t1") is None


def test_service_upload_replaces_and_read_uses_cache(tmp_path):
    service = CatalogService(store=CatalogStore(LocalBlobStore(tmp_path)), cache=CatalogCache())

    assert service.read("t1").items == []
    result = service.upload("t1", LECHE_CSV, "precios.csv", source_mode="local-upload")
    assert result.summary()["imported"] == 1

    catalog = service.read("t1")
    assert catalog.source_mode == "local-upload"
    assert catalog.row_count == 2
    assert [(item.name, item.price) for item in catalog.items] == [("Leche", 340)]
    assert service.read("t1") is catalog


def test_failed_upload_keeps_previous_catalog(tmp_path):
    service = CatalogService(store=CatalogStore(LocalBlobStore(tmp_path)))
    service.upload("t1", LECHE_CSV, "precios.csv")

    with pytest.raises(NoValidHeadersError):
        service.upload("t1", b"foo,bar\n1,2\n", "otra.csv")
    assert service.read("t1").items[0].price == 340


def test_read_re_reduces_stored_duplicates(tmp_path):
    store = CatalogStore(LocalBlobStore(tmp_path))
    catalog = Catalog(
        items=[
            PriceRecord(identity_key="leche", name="Leche", price=350, updated_at=10),
            PriceRecord(identity_key="leche", name="Leche", price=360, updated_at=20),
        ],
        row_count=2,
        imported_at=30,
    )
    store.put_catalog("t1", catalog.to_dict())

    items = CatalogService(store=store).read("t1").items
    assert [(item.price, item.updated_at) for item in items] == [(360, 20)]

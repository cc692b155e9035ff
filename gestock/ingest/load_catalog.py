#!/usr/bin/env python3
"""
CLI to import a price-list spreadsheet into a tenant's catalog, or to inspect
which sheet and columns would be picked.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from gestock.catalog.service import CatalogService
from gestock.catalog.store import CatalogStore, CatalogStoreError, build_blob_store
from gestock.ingest.catalog_ingestor import CatalogIngestError, IngestSettings, inspect_headers
from gestock.utils.config import load_config


def _print_inspection(path: Path) -> None:
    selection = inspect_headers(path.read_bytes(), path.name)
    print(f"Sheets in {path}:")
    for detection in selection.detections:
        print(f"- {detection['sheet']}")
        print(f"  Canonical matches: {detection['map']}")
    print(f"Selected sheet: {selection.sheet_name if selection.found else 'None'}")


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Load a price list (xlsx/xls/csv) into the catalog store.")
    parser.add_argument("path", type=Path, help="Spreadsheet to import")
    parser.add_argument("--tenant", help="Tenant id whose catalog is replaced")
    parser.add_argument(
        "--config",
        type=Path,
        help="Optional path to CONFIG.yaml (defaults to docs/protocol/CONFIG.yaml)",
    )
    parser.add_argument(
        "--source-mode",
        default="local-upload",
        choices=("api", "public", "local-upload"),
        help="Source mode recorded on the stored catalog",
    )
    parser.add_argument("--inspect", action="store_true", help="Print detected headers per sheet and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    if not args.path.exists():
        logging.error("Price list not found at %s", args.path)
        return 1

    try:
        if args.inspect:
            _print_inspection(args.path)
            return 0
        if not args.tenant:
            parser.error("--tenant is required unless --inspect is given")

        config = load_config(args.config) if args.config else load_config()
        service = CatalogService(
            store=CatalogStore(build_blob_store(config)),
            settings=IngestSettings.from_config(config),
            source_mode=args.source_mode,
        )
        result = service.upload(args.tenant, args.path.read_bytes(), args.path.name)
    except CatalogIngestError as exc:
        logging.error("Import failed: %s", exc)
        if exc.hint is not None:
            print(json.dumps(exc.hint, ensure_ascii=False, indent=2))
        return 2
    except CatalogStoreError as exc:
        logging.error("Storage failure: %s", exc)
        return 3

    print(json.dumps(result.summary()))
    return 0


if __name__ == "__main__":
    sys.exit(main())

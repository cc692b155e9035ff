"""
Configuration loader for the gestock package.

Reads `docs/protocol/CONFIG.yaml` (or the file named by `GESTOCK_CONFIG`),
expands environment variables, and exposes typed settings for the catalog
pipeline, the stock reconciler, storage and the database session factory.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = ROOT_DIR / "docs/protocol/CONFIG.yaml"

_UNRESOLVED_RE = re.compile(r"\$\{?[A-Za-z_][A-Za-z0-9_]*\}?")


def load_env() -> None:
    """Load .env then .env.local (local overrides win)."""
    load_dotenv(ROOT_DIR / ".env", override=False)
    load_dotenv(ROOT_DIR / ".env.local", override=True)


def _expand_env(value: Any) -> Any:
    """Recursively expand environment variables; unset variables become empty."""
    if isinstance(value, str):
        return _UNRESOLVED_RE.sub("", os.path.expandvars(value))
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: _expand_env(val) for key, val in value.items()}
    return value


@dataclass(frozen=True)
class AppSettings:
    timezone: str
    source_mode: str


@dataclass(frozen=True)
class DBSettings:
    uri: str


@dataclass(frozen=True)
class StorageSettings:
    backend: str
    root_dir: str
    bucket: str
    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    region: str
    use_ssl: bool


@dataclass(frozen=True)
class CatalogSettings:
    min_barcode_digits: int
    min_valid_date: str
    cache_ttl_seconds: int

    @property
    def min_valid_ms(self) -> int:
        parsed = datetime.strptime(self.min_valid_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)


@dataclass(frozen=True)
class SalesSettings:
    storage_key: str
    url: str


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    db: DBSettings
    storage: StorageSettings
    catalog: CatalogSettings
    sales: SalesSettings


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() not in {"", "0", "false", "no", "off"}


def _resolve_config_path(path: Optional[Union[str, Path]]) -> Path:
    if path:
        return Path(path)
    env_path = (os.getenv("GESTOCK_CONFIG") or "").strip()
    return Path(env_path) if env_path else DEFAULT_CONFIG_PATH


@lru_cache(maxsize=4)
def load_config(path: Optional[Union[str, Path]] = None) -> AppConfig:
    """
    Load the configuration file and convert it into typed objects.

    Parameters
    ----------
    path: Optional path override; defaults to `GESTOCK_CONFIG` or
        docs/protocol/CONFIG.yaml.
    """
    load_env()
    cfg_path = _resolve_config_path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as fh:
        raw_data: Dict[str, Any] = yaml.safe_load(fh) or {}

    expanded = _expand_env(raw_data)

    app_cfg = AppSettings(**expanded["app"])
    db_cfg = DBSettings(**expanded["db"])

    storage_raw = dict(expanded["storage"])
    storage_raw["use_ssl"] = _as_bool(storage_raw.get("use_ssl", True))
    storage_cfg = StorageSettings(**storage_raw)

    catalog_raw = expanded["catalog"]
    catalog_cfg = CatalogSettings(
        min_barcode_digits=int(catalog_raw["min_barcode_digits"]),
        min_valid_date=str(catalog_raw["min_valid_date"]),
        cache_ttl_seconds=int(catalog_raw["cache_ttl_seconds"]),
    )
    sales_cfg = SalesSettings(**expanded["sales"])

    return AppConfig(
        app=app_cfg,
        db=db_cfg,
        storage=storage_cfg,
        catalog=catalog_cfg,
        sales=sales_cfg,
    )


__all__ = [
    "AppConfig",
    "AppSettings",
    "CatalogSettings",
    "DBSettings",
    "SalesSettings",
    "StorageSettings",
    "load_config",
    "load_env",
]

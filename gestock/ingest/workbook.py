"""
Spreadsheet bytes to generic row mappings.

Readers return `{sheet_name: Sheet}` where every row is a plain dict keyed by
the raw header text; blank cells become None.
"""
from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

logger = logging.getLogger(__name__)

CSV_ENCODINGS: Sequence[str] = ("utf-8-sig", "cp1252", "latin-1")
CSV_DELIMITERS = ",;\t|"
# Plain numbers without a leading zero; longer digit runs stay text.
_CSV_NUMBER_RE = re.compile(r"^-?(?:0|[1-9]\d{0,14})(?:\.\d+)?$")
EXCEL_ENGINES = {".xlsx": "openpyxl", ".xlsm": "openpyxl", ".xls": "xlrd"}


class WorkbookReadError(ValueError):
    """Raised when spreadsheet bytes cannot be decoded."""


@dataclass
class Sheet:
    name: str
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)


def _frame_to_sheet(name: str, df: pd.DataFrame) -> Sheet:
    headers = [str(col) for col in df.columns]
    df.columns = headers
    cleaned = df.astype(object).where(pd.notna(df), None)
    return Sheet(name=name, headers=headers, rows=cleaned.to_dict(orient="records"))


def _decode_csv(data: bytes) -> str:
    for encoding in CSV_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise WorkbookReadError("Could not decode CSV bytes with any supported encoding.")


def _sniff_delimiter(text: str) -> str:
    sample = "\n".join(text.splitlines()[:20])
    try:
        return csv.Sniffer().sniff(sample, delimiters=CSV_DELIMITERS).delimiter
    except csv.Error:
        return ","


def _infer_number(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return None
    return float(text) if _CSV_NUMBER_RE.match(text) else text


def read_csv_bytes(data: bytes, sheet_name: str = "csv") -> Dict[str, Sheet]:
    text = _decode_csv(data)
    if not text.strip():
        return {sheet_name: Sheet(name=sheet_name)}
    delimiter = _sniff_delimiter(text)
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            skipinitialspace=True,
            dtype=str,
            keep_default_na=False,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeError) as exc:
        raise WorkbookReadError(f"Malformed CSV file: {exc}") from exc
    for column in df.columns:
        df[column] = df[column].map(_infer_number)
    return {sheet_name: _frame_to_sheet(sheet_name, df)}


def read_excel_bytes(data: bytes, engine: Optional[str] = None) -> Dict[str, Sheet]:
    try:
        frames = pd.read_excel(io.BytesIO(data), sheet_name=None, engine=engine, dtype=object)
    except ImportError:
        raise
    except Exception as exc:  # openpyxl/xlrd raise a wide range of types on corrupt files
        raise WorkbookReadError(f"Malformed spreadsheet: {exc}") from exc
    return {str(name): _frame_to_sheet(str(name), df) for name, df in frames.items()}


def read_workbook(data: bytes, filename: str = "") -> Dict[str, Sheet]:
    """
    Read every sheet of an uploaded spreadsheet.

    The reader is chosen by file extension; unknown extensions are tried as a
    workbook first and as CSV second.
    """
    if not data:
        raise WorkbookReadError("Empty file.")
    suffix = Path(filename or "").suffix.lower()
    if suffix in {".csv", ".txt", ".tsv"}:
        return read_csv_bytes(data)
    if suffix in EXCEL_ENGINES:
        return read_excel_bytes(data, EXCEL_ENGINES[suffix])
    try:
        return read_excel_bytes(data)
    except WorkbookReadError:
        logger.info("'%s' is not a workbook; retrying as CSV", filename or "<upload>")
        return read_csv_bytes(data)


__all__ = ["Sheet", "WorkbookReadError", "read_csv_bytes", "read_excel_bytes", "read_workbook"]

"""
Scalar normalization helpers shared by the catalog and stock pipelines.

Every helper accepts whatever a spreadsheet cell may hold (str, int, float,
NaN, None, pandas NA) and never raises on bad input.
"""
from __future__ import annotations

import math
import re
import unicodedata
from numbers import Real
from typing import Any, Optional

import pandas as pd

INVISIBLE_SPACES_RE = re.compile("[\u00a0\u202f]")
_WHITESPACE_RE = re.compile(r"\s+")
_PRICE_NOISE_RE = re.compile(r"[^0-9.,\-]")
_DECIMAL_INPUT_RE = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)")
_LETTERS_RE = re.compile(r"[A-Za-z]")
_NON_DIGITS_RE = re.compile(r"\D+")


def is_missing(value: Any) -> bool:
    """True for None, NaN, NaT, pandas NA and blank strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def strip_invisibles(text: str) -> str:
    return INVISIBLE_SPACES_RE.sub(" ", text)


def norm_text(value: Any) -> str:
    """Case- and accent-insensitive comparison form of a cell value."""
    if is_missing(value):
        return ""
    decomposed = unicodedata.normalize("NFD", strip_invisibles(str(value)))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WHITESPACE_RE.sub(" ", stripped.lower()).strip()


def cell_text(value: Any) -> str:
    """Render a cell as trimmed display text; integral floats lose their `.0`."""
    if is_missing(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return strip_invisibles(str(value)).strip()


def js_round(value: float) -> int:
    """Round half up, matching spreadsheet/JavaScript rounding."""
    return int(math.floor(value + 0.5))


def round2(value: float) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return math.floor(value * 100 + 0.5) / 100


def _canonical_number(digits: str) -> str:
    has_dot = "." in digits
    has_comma = "," in digits

    if has_dot and has_comma:
        # whichever separator appears last is the decimal one
        decimal_sep = "." if digits.rfind(".") > digits.rfind(",") else ","
        thousands_sep = "," if decimal_sep == "." else "."
        return digits.replace(thousands_sep, "").replace(decimal_sep, ".")

    if has_dot or has_comma:
        sep = "," if has_comma else "."
        parts = digits.split(sep)
        tail = parts[-1]
        if len(parts) == 2 and tail.isdigit() and 2 <= len(tail) <= 3:
            return digits.replace(sep, ".")
        return digits.replace(sep, "")

    return digits


def parse_price(value: Any) -> float:
    """
    Parse a price cell into a float.

    Numbers pass through. Strings drop currency symbols and spaces; when both
    `.` and `,` appear the last one is the decimal separator, when only one
    appears it is decimal only before a 2-3 digit tail. Anything unparseable
    is 0; a leading minus sign is kept.
    """
    if is_missing(value) or isinstance(value, bool):
        return 0.0
    if isinstance(value, Real):
        number = float(value)
        return number if math.isfinite(number) else 0.0

    raw = strip_invisibles(str(value)).strip()
    cleaned = _PRICE_NOISE_RE.sub("", raw)
    if not cleaned:
        return 0.0

    negative = cleaned.startswith("-")
    canonical = _canonical_number(cleaned.replace("-", ""))
    canonical = re.sub(r"[^0-9.]", "", canonical)
    if not canonical or canonical == ".":
        return 0.0
    try:
        number = float(canonical)
    except ValueError:
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return -number if negative else number


def parse_decimal_input(value: Any) -> float:
    """
    Parse an operator-entered quantity: comma is the decimal separator.

    Blank input is 0, negatives clamp to 0 and unparseable text is NaN so the
    caller can reject the whole batch.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, Real):
        number = float(value)
        if math.isnan(number):
            return 0.0
        return max(0.0, number) if math.isfinite(number) else math.nan

    normalized = _WHITESPACE_RE.sub("", strip_invisibles(str(value))).replace(",", ".")
    if not normalized:
        return 0.0
    if not _DECIMAL_INPUT_RE.fullmatch(normalized):
        return math.nan
    return max(0.0, float(normalized))


def parse_quantity(value: Any) -> Optional[float]:
    """
    Parse a sales quantity or amount; a lone comma is the decimal separator.

    With both separators present the last one is decimal, so `3.000,50` is
    3000.5. Unparseable text is None.
    """
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, Real):
        number = float(value)
        return number if math.isfinite(number) else None

    text = _WHITESPACE_RE.sub("", strip_invisibles(str(value)))
    if "." in text and "," in text:
        text = _canonical_number(text)
    else:
        text = text.replace(",", ".")
    if not _DECIMAL_INPUT_RE.fullmatch(text):
        return None
    number = float(text)
    return number if math.isfinite(number) else None


def norm_barcode(value: Any) -> Optional[str]:
    """
    Normalize a barcode cell.

    Numeric cells render as integers without grouping; text containing letters
    keeps its characters with collapsed spacing; other text keeps digits only.
    """
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, Real):
        number = float(value)
        if not math.isfinite(number):
            return None
        text = str(js_round(number)) if isinstance(value, float) else str(int(value))
    else:
        text = strip_invisibles(str(value))

    text = text.strip()
    if not text:
        return None
    compact = _WHITESPACE_RE.sub(" ", text)
    if _LETTERS_RE.search(compact):
        return compact
    digits = _NON_DIGITS_RE.sub("", compact)
    return digits or None


def barcode_key(barcode: Optional[str], min_digits: int = 8) -> str:
    """Identity-key form of a barcode, or "" when it is too short to trust."""
    if not barcode:
        return ""
    trimmed = strip_invisibles(barcode).strip()
    if not trimmed:
        return ""
    if _LETTERS_RE.search(trimmed):
        return norm_text(trimmed)
    digits = _NON_DIGITS_RE.sub("", trimmed)
    return digits if len(digits) >= min_digits else ""


__all__ = [
    "barcode_key",
    "cell_text",
    "is_missing",
    "js_round",
    "norm_barcode",
    "norm_text",
    "parse_decimal_input",
    "parse_price",
    "parse_quantity",
    "round2",
    "strip_invisibles",
]

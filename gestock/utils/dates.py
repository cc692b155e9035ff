"""
Timestamp parsing for spreadsheet cells.

All parsers return epoch milliseconds. Wall-clock values without an explicit
offset are read as UTC.
"""
from __future__ import annotations

import logging
import math
import re
import time
from datetime import date, datetime, timezone
from numbers import Real
from typing import Any, Optional

import pytz
from dateutil import parser as date_parser

from gestock.utils.normalize import is_missing, js_round, strip_invisibles

logger = logging.getLogger(__name__)

DAY_MS = 86_400_000
EXCEL_EPOCH_MS = -2_209_161_600_000  # 1899-12-30T00:00:00Z
MIN_VALID_MS = 1_104_537_600_000  # 2005-01-01T00:00:00Z

_ZERO_DATE_RE = re.compile(r"^0?1/0?1/0{2}(\s+0{2}:0{2}(:0{2})?)?$", re.IGNORECASE)
_DMY_AMPM_RE = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AP]M)$", re.IGNORECASE
)
_DMY_SPANISH_AMPM_RE = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([ap])\s*\.?\s*m\.?$",
    re.IGNORECASE,
)
_DMY_24H_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_DMY_DASH_RE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_DMY_SHORT_YEAR_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})\s+(\d{1,2}):(\d{2})$")
_DAY_FIRST_RE = re.compile(r"^\d{1,2}[/.\-]\d{1,2}[/.\-]")
_SALES_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2,4})$")

# Missing fields in the generic fallback resolve to a pre-floor date.
_FALLBACK_DEFAULT = datetime(2001, 1, 1)


def now_ms() -> int:
    return int(time.time() * 1000)


def to_ms(value: datetime) -> int:
    """Epoch milliseconds of a datetime; naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(round(value.timestamp() * 1000))


def from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def excel_serial_to_ms(serial: float) -> int:
    return EXCEL_EPOCH_MS + js_round(serial * DAY_MS)


def _utc_ms(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> int:
    return to_ms(datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc))


def _floor(ms: int, min_valid_ms: int) -> int:
    return ms if ms >= min_valid_ms else 0


def _to_24h(hour: int, meridiem: str) -> int:
    is_pm = meridiem.lower().startswith("p")
    if is_pm and hour != 12:
        return hour + 12
    if not is_pm and hour == 12:
        return 0
    return hour


def _parse_numeric(number: float, min_valid_ms: int) -> int:
    if not math.isfinite(number):
        return 0
    if number > 1e11:
        return _floor(int(number), min_valid_ms)
    if 1e9 < number < 1e11:
        return _floor(int(number * 1000), min_valid_ms)
    if 20000 < number < 80000:
        return _floor(excel_serial_to_ms(number), min_valid_ms)
    return 0


def _parse_fallback(text: str, min_valid_ms: int) -> int:
    if not re.search(r"[/\-.:A-Za-z]", text):
        return 0
    try:
        parsed = date_parser.parse(
            text,
            dayfirst=bool(_DAY_FIRST_RE.match(text)),
            default=_FALLBACK_DEFAULT,
        )
    except (ValueError, OverflowError):
        return 0
    return _floor(to_ms(parsed), min_valid_ms)


def _parse_text(raw: str, min_valid_ms: int) -> int:
    text = strip_invisibles(raw).strip()
    if not text:
        return 0
    if _ZERO_DATE_RE.match(text):
        return 0
    text = re.sub(r"\s+", " ", text)

    try:
        match = _DMY_AMPM_RE.match(text) or _DMY_SPANISH_AMPM_RE.match(text)
        if match:
            dd, mm, yyyy, hh, mi, ss, meridiem = match.groups()
            hour = _to_24h(int(hh), meridiem)
            return _floor(_utc_ms(int(yyyy), int(mm), int(dd), hour, int(mi), int(ss or 0)), min_valid_ms)

        match = _DMY_24H_RE.match(text) or _DMY_DASH_RE.match(text)
        if match:
            dd, mm, yyyy, hh, mi, ss = match.groups()
            return _floor(
                _utc_ms(int(yyyy), int(mm), int(dd), int(hh), int(mi), int(ss or 0)), min_valid_ms
            )

        match = _DMY_SHORT_YEAR_RE.match(text)
        if match:
            dd, mm, yy, hh, mi = match.groups()
            return _floor(_utc_ms(2000 + int(yy), int(mm), int(dd), int(hh), int(mi)), min_valid_ms)
    except ValueError:
        logger.debug("Out-of-range date components in %r", raw)
        return 0

    return _parse_fallback(text, min_valid_ms)


def parse_updated_at(value: Any, min_valid_ms: int = MIN_VALID_MS) -> int:
    """
    Parse a "valid from" cell into epoch milliseconds, 0 when unknown.

    Accepts datetimes, epoch ms (> 1e11), epoch seconds (1e9..1e11),
    spreadsheet serial days (20000..80000) and day-first text such as
    `15/03/2024 14:30`, `15/03/2024 02:30 PM`, `15/03/2024 2:30 p. m.`,
    `15-03-2024 14:30` or `15/03/24 14:30`. Results before `min_valid_ms`
    are rejected.
    """
    if is_missing(value) or isinstance(value, bool):
        return 0
    if isinstance(value, datetime):
        return _floor(to_ms(value.to_pydatetime() if hasattr(value, "to_pydatetime") else value), min_valid_ms)
    if isinstance(value, date):
        return _floor(_utc_ms(value.year, value.month, value.day), min_valid_ms)
    if isinstance(value, Real):
        return _parse_numeric(float(value), min_valid_ms)
    if isinstance(value, str):
        return _parse_text(value, min_valid_ms)
    return 0


def start_of_day_ms(ms: int) -> int:
    return ms - (ms % DAY_MS)


def parse_sales_date(value: Any) -> Optional[int]:
    """
    Parse a sales-history date cell to the start of its UTC day.

    Numbers below 100000 are spreadsheet serials, larger ones epoch ms; text
    is `d/m/yy[yy]` (a trailing time is ignored) with `.` or `-` accepted
    as separators.
    """
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        ms = to_ms(value.to_pydatetime() if hasattr(value, "to_pydatetime") else value)
    elif isinstance(value, date):
        ms = _utc_ms(value.year, value.month, value.day)
    elif isinstance(value, Real):
        number = float(value)
        if not math.isfinite(number):
            return None
        ms = excel_serial_to_ms(number) if number < 100000 else int(number)
    elif isinstance(value, str):
        text = strip_invisibles(value).strip().split(" ")[0].replace(".", "/").replace("-", "/")
        match = _SALES_DATE_RE.match(text)
        if not match:
            return None
        day, month, year = (int(part) for part in match.groups())
        if year < 100:
            year += 2000
        try:
            ms = _utc_ms(year, month, day)
        except ValueError:
            return None
    else:
        return None
    return start_of_day_ms(ms)


def format_label(ms: int, tz_name: str = "UTC") -> str:
    """Render a timestamp as `d/m/yyyy, HH:MM:SS` in the given timezone."""
    if not ms:
        return ""
    local = from_ms(ms).astimezone(pytz.timezone(tz_name))
    return f"{local.day}/{local.month}/{local.year}, {local:%H:%M:%S}"


__all__ = [
    "DAY_MS",
    "MIN_VALID_MS",
    "excel_serial_to_ms",
    "format_label",
    "from_ms",
    "now_ms",
    "parse_sales_date",
    "parse_updated_at",
    "start_of_day_ms",
    "to_ms",
]

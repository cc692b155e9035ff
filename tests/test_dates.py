from __future__ import annotations

from datetime import date, datetime, timezone

import pandas as pd
import pytest

from gestock.utils.dates import (
    MIN_VALID_MS,
    excel_serial_to_ms,
    format_label,
    parse_sales_date,
    parse_updated_at,
)


def _ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def test_zero_date_literal_is_unknown():
    assert parse_updated_at("01/01/00 00:00") == 0
    assert parse_updated_at("01/01/00") == 0


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("15/03/2024 14:30", _ms(2024, 3, 15, 14, 30)),
        ("15/03/2024 14:30:15", _ms(2024, 3, 15, 14, 30, 15)),
        ("15/03/2024 02:30 PM", _ms(2024, 3, 15, 14, 30)),
        ("15/03/2024 12:05 AM", _ms(2024, 3, 15, 0, 5)),
        ("15/03/2024 2:30 p. m.", _ms(2024, 3, 15, 14, 30)),
        ("15/03/2024 9:00 a.m.", _ms(2024, 3, 15, 9, 0)),
        ("15-03-2024 14:30", _ms(2024, 3, 15, 14, 30)),
        ("15/03/24 14:30", _ms(2024, 3, 15, 14, 30)),
        ("15/01/2024", _ms(2024, 1, 15)),
        ("2024-03-15T10:00:00Z", _ms(2024, 3, 15, 10, 0)),
    ],
)
def test_text_formats(raw, expected):
    assert parse_updated_at(raw) == expected


def test_invalid_components_yield_zero():
    assert parse_updated_at("32/13/2024 10:00") == 0
    assert parse_updated_at("sin fecha") == 0
    assert parse_updated_at("") == 0
    assert parse_updated_at(None) == 0


def test_numeric_inputs():
    ms = _ms(2024, 3, 15, 14, 30)
    assert parse_updated_at(ms) == ms
    assert parse_updated_at(ms // 1000) == ms
    assert parse_updated_at(45366) == excel_serial_to_ms(45366)
    assert excel_serial_to_ms(45366) == _ms(2024, 3, 15)
    assert parse_updated_at(12) == 0


def test_native_datetimes_are_utc():
    assert parse_updated_at(datetime(2024, 3, 15, 14, 30)) == _ms(2024, 3, 15, 14, 30)
    assert parse_updated_at(pd.Timestamp("2024-03-15 14:30")) == _ms(2024, 3, 15, 14, 30)
    assert parse_updated_at(date(2024, 3, 15)) == _ms(2024, 3, 15)


def test_dates_before_floor_are_rejected():
    assert parse_updated_at("31/12/2004 23:59") == 0
    assert parse_updated_at(datetime(1999, 1, 1)) == 0
    assert parse_updated_at("01/01/2005 00:00") == MIN_VALID_MS


def test_parse_sales_date():
    assert parse_sales_date("15/03/2024") == _ms(2024, 3, 15)
    assert parse_sales_date("15.03.24") == _ms(2024, 3, 15)
    assert parse_sales_date("15-03-2024 18:45") == _ms(2024, 3, 15)
    assert parse_sales_date(45366) == _ms(2024, 3, 15)
    assert parse_sales_date(_ms(2024, 3, 15, 18, 45)) == _ms(2024, 3, 15)
    assert parse_sales_date("ayer") is None
    assert parse_sales_date(None) is None


def test_format_label_in_timezone():
    ms = _ms(2024, 3, 15, 14, 30)
    assert format_label(ms, "UTC") == "15/3/2024, 14:30:00"
    assert format_label(ms, "America/Argentina/Buenos_Aires") == "15/3/2024, 11:30:00"
    assert format_label(0) == ""

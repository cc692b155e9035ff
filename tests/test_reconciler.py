from __future__ import annotations

from typing import List

import pytest

from gestock.stock.reconciler import (
    ReconcileState,
    SalesEvent,
    SalesIndex,
    StockLine,
    apply_stock,
    compute_stock_applied,
    preview,
    preview_totals,
    undo_stock,
)

NOW = 1_710_000_000_000
HOUR = 3_600_000


class RecordingWriter:
    def __init__(self, fail_on=None) -> None:
        self.fail_on = fail_on
        self.writes: List[tuple] = []
        self.restored: List[str] = []

    def write_stock(self, line, stock_applied, applied_at) -> None:
        if line.id == self.fail_on:
            raise RuntimeError(f"write refused for {line.id}")
        self.writes.append((line.id, stock_applied, applied_at))

    def restore_stock(self, entry) -> None:
        self.restored.append(entry.item_id)


class RecordingAudit:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.batches = []

    def write_adjustments(self, lines, adjustments) -> None:
        if self.fail:
            raise RuntimeError("audit table unavailable")
        self.batches.append(list(adjustments))


def _sales() -> SalesIndex:
    return SalesIndex(
        [
            SalesEvent(product="Yerba Mate", qty=3, date=NOW - 2 * HOUR),
            SalesEvent(product="yerba  máte", qty=2, date=NOW - HOUR),
            SalesEvent(product="Yerba Mate", qty=50, date=NOW - 48 * HOUR),
            SalesEvent(product="Yerba Mate", qty=7, date=NOW + HOUR),
        ]
    )


def test_stock_never_goes_negative():
    assert compute_stock_applied(5, 0, 10) == 0
    assert compute_stock_applied(5, 2.5, 1.25) == 6.25


def test_sales_since_window_is_inclusive_and_name_normalized():
    sales = _sales()
    assert sales.sales_since("YERBA MATE", NOW - 2 * HOUR, NOW) == 5
    assert sales.sales_since("Yerba Mate", None, NOW) == 0
    assert sales.sales_since("Azucar", NOW - 100 * HOUR, NOW) == 0


def test_preview_defaults_to_ordered_quantity_and_caps_entry_at_now():
    lines = [StockLine(id="1", product_name="Yerba Mate", stock_prev=4, qty=None, qty_ordered=6)]
    rows = preview(lines, _sales(), NOW + 10 * HOUR, now=NOW)

    row = rows[0]
    assert row.raw == "6"
    assert row.stock_in == 6
    assert row.sales_since == 0
    assert row.stock_applied == 10


def test_preview_totals_and_invalid_rows():
    lines = [
        StockLine(id="1", product_name="Yerba Mate", stock_prev=4, qty="2,5"),
        StockLine(id="2", product_name="Azucar", stock_prev=1, qty="abc"),
    ]
    rows = preview(lines, _sales(), NOW - 3 * HOUR, now=NOW)
    assert rows[0].stock_applied == 1.5
    assert not rows[1].input_valid

    totals = preview_totals(rows)
    assert totals.stock_prev == 5
    assert totals.stock_in == 2.5
    assert totals.sales_since == 5
    assert totals.stock_applied == 2.5


def test_apply_writes_changed_items_and_audits():
    lines = [
        StockLine(id="1", product_name="Yerba Mate", stock_prev=5, qty="0"),
        StockLine(id="2", product_name="Azucar", stock_prev=3, qty="0"),
        StockLine(id="3", product_name="Harina", stock_prev=1, qty="4"),
    ]
    writer, audit = RecordingWriter(), RecordingAudit()
    result = apply_stock(lines, _sales(), NOW - 2 * HOUR, writer, audit, now=NOW)

    assert result.state is ReconcileState.SUCCESS
    assert result.applied == 2
    assert writer.writes == [("1", 0.0, NOW), ("3", 5.0, NOW)]
    assert result.audit_written
    assert [adj.item_id for adj in audit.batches[0]] == ["1", "3"]
    assert audit.batches[0][0].sales_since == 5
    assert [entry.item_id for entry in result.undo.entries] == ["1", "3"]


def test_first_failure_stops_batch_and_keeps_earlier_writes():
    lines = [
        StockLine(id="1", product_name="A", qty="1"),
        StockLine(id="2", product_name="B", qty="1"),
        StockLine(id="3", product_name="C", qty="1"),
    ]
    writer, audit = RecordingWriter(fail_on="2"), RecordingAudit()
    result = apply_stock(lines, SalesIndex(), NOW, writer, audit, now=NOW)

    assert result.state is ReconcileState.PARTIAL_FAILURE
    assert result.applied == 1
    assert result.failed_item_id == "2"
    assert "refused" in result.error
    assert [w[0] for w in writer.writes] == ["1"]
    assert audit.batches == []


def test_audit_failure_does_not_fail_apply(caplog):
    lines = [StockLine(id="1", product_name="A", qty="2")]
    result = apply_stock(lines, SalesIndex(), NOW, RecordingWriter(), RecordingAudit(fail=True), now=NOW)

    assert result.ok
    assert result.applied == 1
    assert result.audit_written is False
    assert "audit insert failed" in caplog.text


@pytest.mark.parametrize(
    "lines, entry_ts",
    [
        ([StockLine(id="1", product_name="A", qty="x")], NOW),
        ([StockLine(id="1", product_name="A", qty="1")], None),
        ([StockLine(id="1", product_name="A", qty="0")], NOW),
        ([], NOW),
    ],
)
def test_rejected_batches_write_nothing(lines, entry_ts):
    writer = RecordingWriter()
    result = apply_stock(lines, SalesIndex(), entry_ts, writer, now=NOW)

    assert result.state is ReconcileState.REJECTED
    assert result.error
    assert writer.writes == []


def test_undo_restores_written_items():
    lines = [StockLine(id="1", product_name="A", stock_prev=2, qty="1", stock_updated_at=NOW - HOUR)]
    writer = RecordingWriter()
    result = apply_stock(lines, SalesIndex(), NOW, writer, now=NOW)

    entry = result.undo.entries[0]
    assert entry.stock_qty == 2
    assert entry.stock_updated_at == NOW - HOUR
    assert undo_stock(result.undo, writer) == 1
    assert writer.restored == ["1"]

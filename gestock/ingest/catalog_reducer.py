"""
Latest-wins merge of price records that share an identity key.
"""
from __future__ import annotations

from typing import Dict, Iterable, List

from gestock.catalog.models import PriceRecord


def prefer(current: PriceRecord, incoming: PriceRecord) -> PriceRecord:
    """
    Return the record that should represent the key.

    A strictly newer `updated_at` wins. On equal timestamps the record with
    more identifiers (barcode, code) wins, then the lower price; otherwise
    the current record stays.
    """
    if incoming.updated_at > current.updated_at:
        return incoming
    if incoming.updated_at < current.updated_at:
        return current
    if incoming.identifier_score != current.identifier_score:
        return incoming if incoming.identifier_score > current.identifier_score else current
    if incoming.price < current.price:
        return incoming
    return current


def reduce_latest(records: Iterable[PriceRecord]) -> List[PriceRecord]:
    """Collapse records to one per identity key, newest first."""
    winners: Dict[str, PriceRecord] = {}
    for record in records:
        current = winners.get(record.identity_key)
        winners[record.identity_key] = record if current is None else prefer(current, record)
    return sorted(winners.values(), key=lambda record: record.updated_at, reverse=True)


__all__ = ["prefer", "reduce_latest"]

"""Keyed ledger upsert: one entry per (race_id, stage) on a roster slot."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Iterable

from ..models import LedgerEntry
from ..scoring.counting import normalize_slug
from ..scoring.points import normalize_points


class LedgerOutcome(str, Enum):
    INSERTED = "inserted"
    REPLACED = "replaced"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


def race_id(race_slug: str, year: int) -> str:
    return f"{normalize_slug(race_slug)}_{year}"


def find_entry(ledger: Iterable[LedgerEntry], key: tuple[str, str]) -> int | None:
    for index, entry in enumerate(ledger):
        if entry.key == key:
            return index
    return None


def upsert_entry(
    ledger: list[LedgerEntry], entry: LedgerEntry
) -> tuple[list[LedgerEntry], LedgerOutcome]:
    """Insert the entry if its key is absent, else replace the matching entry.

    Returns a new list; the input is never mutated. A zero total with no
    existing entry leaves the ledger alone, while a zero total over an existing
    entry replaces it so corrections to a stage are honoured.
    """
    index = find_entry(ledger, entry.key)
    if index is None:
        if not entry.total:
            return list(ledger), LedgerOutcome.SKIPPED
        return [*ledger, entry], LedgerOutcome.INSERTED

    current = ledger[index]
    if current.fingerprint == entry.fingerprint and current.total == entry.total:
        return list(ledger), LedgerOutcome.UNCHANGED
    updated = list(ledger)
    updated[index] = entry
    return updated, LedgerOutcome.REPLACED


def ledger_total(ledger: Iterable[LedgerEntry]) -> int | float:
    return normalize_points(sum((Decimal(str(entry.total)) for entry in ledger), Decimal(0)))

"""Canonical JSON for ledger fingerprints and webhook bodies."""

from __future__ import annotations

import hashlib
from typing import Any

import orjson

# Sorted keys so equal scoring breakdowns always hash the same.
_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_STRICT_INTEGER | orjson.OPT_NAIVE_UTC


def canonical_dumps(payload: Any) -> bytes:
    return orjson.dumps(payload, option=_OPTIONS)


def scoring_fingerprint(race_id: str, stage: str, total: Any, breakdown: dict[str, Any]) -> str:
    """SHA-256 over one ledger entry's scoring inputs; ``applied_at`` is left out."""
    body = canonical_dumps({"race_id": race_id, "stage": stage, "total": total, "breakdown": breakdown})
    return hashlib.sha256(body).hexdigest()

"""
Idempotency key derivation for workflow writes.

A retried network call carries the same logical payload, possibly with its
object keys in a different order.  The payload is canonicalised (object keys
sorted recursively, arrays kept in order, compact separators) and hashed
together with the caller's scope string using 32-bit FNV-1a.  The hash runs
over UTF-16 code units so keys match those produced by browser clients for
the same payload.

FNV-1a is deliberate: the key only needs to collapse retries of identical
payloads, it is not a tamper-resistance mechanism.

Usage:
    from bcl_workflow.services.idempotency import derive_key

    derive_key("evidence-submit", {"evidence_id": "ev-1", "version": 2})
    # -> "evidence-submit:1a2b3c4d"
"""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import Enum
from typing import Any

from bcl_workflow.core.exceptions import ValidationError

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193
_MASK_32 = 0xFFFFFFFF


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not serialisable for an idempotency key")


def canonicalize(payload: Any) -> str:
    """Deterministic JSON text: sorted keys at every depth, arrays in order.

    Value types are preserved, so ``"1"`` and ``1`` canonicalise differently.
    """
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=_json_default,
    )


def fnv1a_32(text: str) -> int:
    """32-bit FNV-1a over the UTF-16 code units of ``text``."""
    data = text.encode("utf-16-le")
    h = _FNV_OFFSET_BASIS
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * _FNV_PRIME) & _MASK_32
    return h


def derive_key(scope: str, payload: Any) -> str:
    """Return ``"{scope}:{hash:08x}"`` for the canonical form of ``payload``.

    Raises:
        ValidationError: the payload holds NaN, an infinity or a value with
            no JSON form.
    """
    try:
        canonical = canonicalize(payload)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "Write payload is not representable as JSON", details={"payload": str(exc)},
        ) from exc
    digest = fnv1a_32(f"{scope}:{canonical}")
    return f"{scope}:{digest:08x}"

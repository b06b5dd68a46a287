"""Deterministic request identifiers for caching and duplicate detection.

Two identifiers are derived from an operation and its payload:

* the **cache key** is exact: same resource, same canonical payload;
* the **fingerprint** hashes the operation name, the canonical payload and
  a time bucket, so identical calls issued within one window are treated as
  one operation.
"""

from __future__ import annotations

import hashlib
import json
import math
import time
from collections.abc import Mapping
from typing import Any

from stylesync._constants import FINGERPRINT_EXCLUDED_FIELDS


def normalize_payload(payload: Any) -> Any:
    """Drop transport-only fields and return a key-sorted copy of *payload*.

    Non-mapping payloads are returned unchanged.
    """
    if not isinstance(payload, Mapping):
        return payload
    return {key: payload[key] for key in sorted(payload, key=str) if key not in FINGERPRINT_EXCLUDED_FIELDS}


def canonical_json(payload: Any) -> str:
    """Serialize *payload* so logically equal payloads produce equal text."""
    if payload is None:
        return ""
    return json.dumps(normalize_payload(payload), sort_keys=True, separators=(",", ":"), default=str)


def cache_key(resource: str, payload: Any = None) -> str:
    """Exact cache key, e.g. ``"GET:/settings:"``.

    *resource* is ``"<METHOD>:<path>"`` so invalidation patterns can match
    on the resource path.
    """
    return f"{resource}:{canonical_json(payload)}"


def time_bucket(now: float, window: float) -> int:
    """Index of the *window*-second bucket containing *now*."""
    return math.floor(now / window)


def fingerprint(operation: str, payload: Any = None, *, window: float = 10.0, now: float | None = None) -> str:
    """Duplicate-detection fingerprint for *operation* and *payload*."""
    if now is None:
        now = time.time()
    material = json.dumps(
        {
            "operation": operation,
            "data": canonical_json(payload),
            "bucket": time_bucket(now, window),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()

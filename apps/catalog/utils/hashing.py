"""Stable hashing for cache keys. Same filter always yields the same key, regardless of dict order."""

import hashlib
import json
from typing import Any


def canonical_json(data: Any) -> str:
    """JSON with sorted keys and no whitespace. Non-JSON values (datetimes) are stringified."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def stable_hash(data: Any, length: int = 32) -> str:
    """SHA256 of canonical_json(data), first `length` hex chars."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()[:length]

"""Content fingerprints for artifacts, task ids and result-cache keys."""

from __future__ import annotations

import hashlib
import json


def generate_hash(value: str | bytes) -> str:
    """Hex sha256 of a string (utf-8) or raw bytes."""
    data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    return hashlib.sha256(data).hexdigest()


def stable_json_dumps(payload: object) -> str:
    """Dump JSON with sorted keys so equal content always hashes equal."""
    return json.dumps(
        payload,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def content_hash(content: object) -> str | None:
    if content is None:
        return None
    return generate_hash(stable_json_dumps(content))


__all__ = ["content_hash", "generate_hash", "stable_json_dumps"]

"""Canonical JSON serialization and sha256 helpers."""
from __future__ import annotations

import hashlib
import json
from typing import Any


def to_stable_json_value(value: Any) -> Any:
    """Return a copy of ``value`` with every mapping's keys sorted recursively.

    Sequence order is preserved.
    """
    if isinstance(value, dict):
        return {key: to_stable_json_value(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [to_stable_json_value(item) for item in value]
    return value


def stable_json_stringify(value: Any) -> str:
    return json.dumps(to_stable_json_value(value), indent=2, ensure_ascii=False)


def sha256_hex_from_string(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def sha256_hex_from_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def short_hash(value: Any, length: int = 8) -> str:
    """Stable short hash of a JSON-compatible value."""
    raw = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:length]

"""
Small shared utilities: ids, time, canonical hashing.
"""

from __future__ import annotations

import hashlib
import json
import os
import time
from datetime import datetime, timezone
from typing import Any


GENESIS_HASH = "0" * 64

_CROCKFORD32 = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def _encode_crockford_base32(value: int, length: int) -> str:
    chars: list[str] = []
    for _ in range(length):
        chars.append(_CROCKFORD32[value & 31])
        value >>= 5
    return "".join(reversed(chars))


def new_id(prefix: str = "", *, timestamp_ms: int | None = None) -> str:
    """
    Generate a sortable id: optional prefix + ULID (26 chars, Crockford base32).

    ULID = 48-bit millisecond timestamp + 80-bit randomness.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)

    if not (0 <= timestamp_ms < (1 << 48)):
        raise ValueError("timestamp_ms out of range for ULID")

    randomness = int.from_bytes(os.urandom(10), "big")
    ulid = _encode_crockford_base32((timestamp_ms << 80) | randomness, 26)
    return f"{prefix}_{ulid}" if prefix else ulid


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def canonical_json(value: Any) -> str:
    """Sorted keys, compact separators, no NaN/Infinity."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def sha256_hex(content: bytes | str | dict[str, Any]) -> str:
    """
    Compute the sha256 hex digest of content.

    Dicts are hashed via their canonical JSON form.
    """
    if isinstance(content, dict):
        content = canonical_json(content)
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()

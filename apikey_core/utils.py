"""
apikey_core.utils
-----------------
Lightweight helpers for base62/base64url encoding, UTC timestamping and
canonical JSON serialization.
These functions keep the external key format and persisted records deterministic.
"""

from __future__ import annotations
import base64, json, math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

BASE62_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
_BASE62_INDEX = {c: i for i, c in enumerate(BASE62_ALPHABET)}


def b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64d(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def base62_width(num_bytes: int) -> int:
    """Number of base62 characters needed to hold any ``num_bytes`` value."""
    return math.ceil(num_bytes * 8 / math.log2(62))


def base62_encode(b: bytes) -> str:
    # Fixed width so every key of a given size has the same length
    n = int.from_bytes(b, "big")
    chars = []
    while n:
        n, r = divmod(n, 62)
        chars.append(BASE62_ALPHABET[r])
    return "".join(reversed(chars)).rjust(base62_width(len(b)), BASE62_ALPHABET[0])


def base62_decode(s: str, num_bytes: int) -> bytes:
    """Inverse of base62_encode. Raises ValueError on bad characters or overflow."""
    n = 0
    for c in s:
        idx = _BASE62_INDEX.get(c)
        if idx is None:
            raise ValueError("invalid base62 character")
        n = n * 62 + idx
    if n >> (num_bytes * 8):
        raise ValueError("base62 value out of range")
    return n.to_bytes(num_bytes, "big")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(dt: Optional[datetime]) -> Optional[str]:
    # RFC3339 / ISO 8601 in UTC, microsecond precision
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_ts(s: Optional[str]) -> Optional[datetime]:
    if s is None:
        return None
    dt = datetime.fromisoformat(s[:-1] + "+00:00" if s.endswith("Z") else s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def now_ts() -> str:
    return format_ts(utc_now())


def canonical_json(obj: Dict[str, Any]) -> bytes:
    # Deterministic, minimal JSON for persistence and audit payloads
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")

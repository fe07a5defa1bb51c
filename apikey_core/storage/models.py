# apikey_core/storage/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Optional, Dict, Any, Mapping
from apikey_core.tiers import Tier, parse_tier
from apikey_core.utils import format_ts, parse_ts

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_REVOKED = "revoked"

def is_active(rec: "KeyRecord", now: datetime) -> bool:
    return rec.revoked_at is None and (rec.expires_at is None or rec.expires_at > now)

def key_status(rec: "KeyRecord", now: datetime) -> str:
    if rec.revoked_at is not None:
        return STATUS_REVOKED
    if rec.expires_at is not None and rec.expires_at <= now:
        return STATUS_EXPIRED
    return STATUS_ACTIVE

@dataclass(frozen=True)
class KeyRecord:
    """
    Storage-level representation of an issued API key.

    Immutable: mutations go through ``dataclasses.replace`` so readers only
    ever see a complete record. Status is never stored, it is derived from
    ``expires_at``/``revoked_at`` at read time.

    Storage-agnostic; used by every provider (SQLite, JSON file, memory, HTTP).
    """
    id: str
    secret_hash: str = field(repr=False)
    salt: str = field(repr=False)
    name: str
    email: str
    tier: Tier
    created_at: datetime
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    usage_counters: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "tier", parse_tier(self.tier))
        object.__setattr__(self, "usage_counters", MappingProxyType(dict(self.usage_counters or {})))

    def to_dict(self) -> Dict[str, Any]:
        """Full persisted form. Contains the hash and salt; never hand this to callers."""
        return {
            "id": self.id,
            "secret_hash": self.secret_hash,
            "salt": self.salt,
            "name": self.name,
            "email": self.email,
            "tier": self.tier.value,
            "created_at": format_ts(self.created_at),
            "expires_at": format_ts(self.expires_at),
            "revoked_at": format_ts(self.revoked_at),
            "usage_counters": dict(self.usage_counters),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyRecord":
        missing = [f for f in ("id", "secret_hash", "salt", "tier", "created_at") if not data.get(f)]
        if missing:
            raise ValueError(f"record missing fields: {missing}")
        return cls(
            id=data["id"],
            secret_hash=data["secret_hash"],
            salt=data["salt"],
            name=data.get("name", ""),
            email=data.get("email", ""),
            tier=data["tier"],
            created_at=parse_ts(data["created_at"]),
            expires_at=parse_ts(data.get("expires_at")),
            revoked_at=parse_ts(data.get("revoked_at")),
            usage_counters={k: int(v) for k, v in (data.get("usage_counters") or {}).items()},
        )

    def public_info(self, now: datetime) -> "KeyInfo":
        return KeyInfo(
            id=self.id,
            name=self.name,
            email=self.email,
            tier=self.tier,
            created_at=self.created_at,
            expires_at=self.expires_at,
            revoked_at=self.revoked_at,
            usage_counters=dict(self.usage_counters),
            status=key_status(self, now),
        )

@dataclass(frozen=True)
class KeyInfo:
    """Read-only view of a record with the hash and salt stripped."""
    id: str
    name: str
    email: str
    tier: Tier
    created_at: datetime
    expires_at: Optional[datetime]
    revoked_at: Optional[datetime]
    usage_counters: Dict[str, int]
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "tier": self.tier.value,
            "created_at": format_ts(self.created_at),
            "expires_at": format_ts(self.expires_at),
            "revoked_at": format_ts(self.revoked_at),
            "usage_counters": dict(self.usage_counters),
            "status": self.status,
        }

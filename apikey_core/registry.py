"""
apikey_core.registry
--------------------
Business rules around issuing and managing API keys.

``create_key`` is the only operation that ever sees the plaintext secret; it
returns it once in ``CreatedKey`` and keeps only the scrypt hash. Every other
operation works on records and hands back ``KeyInfo`` views without the hash.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union
from .codec import KeyCodec
from .config import KeyStoreConfig
from .errors import DuplicateId, InvalidProfile, StoreError
from .logger import get_logger
from .storage.models import KeyInfo, KeyRecord, is_active, key_status
from .storage.provider import StorageProvider
from .tiers import Tier, parse_tier
from .utils import format_ts, utc_now

log = get_logger("apikey.registry")

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class KeyProfile:
    name: str
    email: str
    tier: Union[Tier, str]
    expires_at: Optional[datetime] = None
    expires_in: Optional[Union[timedelta, int, float]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyProfile":
        return cls(
            name=data.get("name", ""),
            email=data.get("email", ""),
            tier=data.get("tier"),
            expires_at=data.get("expires_at"),
            expires_in=data.get("expires_in"),
        )


@dataclass(frozen=True)
class CreatedKey:
    key_id: str
    full_key: str = field(repr=False)
    tier: Tier
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"keyId": self.key_id, "fullKey": self.full_key, "tier": self.tier.value}
        if self.expires_at is not None:
            out["expiresAt"] = format_ts(self.expires_at)
        return out


class KeyRegistry:
    def __init__(self, store: StorageProvider, codec: Optional[KeyCodec] = None,
                 config: Optional[KeyStoreConfig] = None, clock: Clock = utc_now):
        self.store = store
        self.config = config or KeyStoreConfig(provider="memory")
        self.codec = codec or KeyCodec.from_config(self.config)
        self.clock = clock

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------
    def create_key(self, profile: Union[KeyProfile, Dict[str, Any]]) -> CreatedKey:
        if isinstance(profile, dict):
            profile = KeyProfile.from_dict(profile)
        # Tier first: a bad tier must never leave a record behind
        tier = parse_tier(self.config.default_tier if profile.tier is None else profile.tier)
        name, email = self._check_profile(profile)
        now = self.clock()
        expires_at = self._resolve_expiry(profile, now)

        for attempt in range(1, self.config.max_create_attempts + 1):
            generated = self.codec.generate()
            salt = self.codec.new_salt()
            rec = KeyRecord(
                id=generated.id,
                secret_hash=self.codec.hash(generated.secret, salt),
                salt=salt,
                name=name,
                email=email,
                tier=tier,
                created_at=now,
                expires_at=expires_at,
            )
            try:
                self.store.put(rec)
            except DuplicateId:
                log.warning(f"[REGISTRY] id collision on create (attempt {attempt})")
                if attempt == self.config.max_create_attempts:
                    raise
                continue

            self._audit("key.created", {"id": rec.id, "tier": tier.value,
                                             "expires_at": format_ts(expires_at)})
            log.info(f"[REGISTRY] created key id={rec.id} tier={tier.value}")
            return CreatedKey(key_id=rec.id, full_key=generated.full_key, tier=tier, expires_at=expires_at)

    @staticmethod
    def _check_profile(profile: KeyProfile):
        name = profile.name.strip() if isinstance(profile.name, str) else ""
        email = profile.email.strip() if isinstance(profile.email, str) else ""
        if not name:
            raise InvalidProfile("name must be a non-empty string")
        if not email:
            raise InvalidProfile("email must be a non-empty string")
        return name, email

    @staticmethod
    def _resolve_expiry(profile: KeyProfile, now: datetime) -> Optional[datetime]:
        if profile.expires_at is not None and profile.expires_in is not None:
            raise InvalidProfile("give expires_at or expires_in, not both")
        if profile.expires_in is not None:
            delta = profile.expires_in
            if not isinstance(delta, timedelta):
                if isinstance(delta, bool) or not isinstance(delta, (int, float)):
                    raise InvalidProfile("expires_in must be a timedelta or seconds")
                delta = timedelta(seconds=delta)
            if delta <= timedelta(0):
                raise InvalidProfile("expires_in must be positive")
            return now + delta
        if profile.expires_at is not None:
            if not isinstance(profile.expires_at, datetime) or profile.expires_at.tzinfo is None:
                raise InvalidProfile("expires_at must be a timezone-aware datetime")
            if profile.expires_at <= now:
                raise InvalidProfile("expires_at must be in the future")
            return profile.expires_at
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def revoke_key(self, key_id: str) -> KeyInfo:
        now = self.clock()
        state = {"changed": False}

        def _revoke(rec: KeyRecord) -> KeyRecord:
            state["changed"] = rec.revoked_at is None
            if not state["changed"]:
                return rec
            return replace(rec, revoked_at=now)

        rec = self.store.update(key_id, _revoke)
        if state["changed"]:
            self._audit("key.revoked", {"id": key_id})
            log.info(f"[REGISTRY] revoked key id={key_id}")
        else:
            log.info(f"[REGISTRY] key id={key_id} already revoked")
        return rec.public_info(now)

    def update_tier(self, key_id: str, new_tier) -> KeyInfo:
        tier = parse_tier(new_tier)
        old = {}

        def _set_tier(rec: KeyRecord) -> KeyRecord:
            old["tier"] = rec.tier
            return replace(rec, tier=tier)

        rec = self.store.update(key_id, _set_tier)
        self._audit("key.tier_updated", {"id": key_id, "from": old["tier"].value, "to": tier.value})
        log.info(f"[REGISTRY] key id={key_id} tier {old['tier'].value} -> {tier.value}")
        return rec.public_info(self.clock())

    def expire_key(self, key_id: str, at: Optional[datetime] = None) -> KeyInfo:
        """Set (or move) the expiry of a key. Defaults to now, which deactivates it immediately."""
        if at is not None and (not isinstance(at, datetime) or at.tzinfo is None):
            raise InvalidProfile("expiry must be a timezone-aware datetime")
        when = at or self.clock()
        rec = self.store.update(key_id, lambda r: replace(r, expires_at=when))
        self._audit("key.expiry_updated", {"id": key_id, "expires_at": format_ts(when)})
        log.info(f"[REGISTRY] key id={key_id} expires_at={format_ts(when)}")
        return rec.public_info(self.clock())

    def reissue_key(self, key_id: str) -> CreatedKey:
        """
        Issue a replacement with the same owner and tier, then revoke the old key.

        The replacement exists before the old key stops working. If the revoke
        fails the replacement is revoked as well and the error propagates, so
        no unheld active key is left behind.
        """
        old = self.store.get(key_id)
        created = self.create_key(KeyProfile(name=old.name, email=old.email, tier=old.tier))
        try:
            self.revoke_key(key_id)
        except StoreError:
            log.error(f"[REGISTRY] reissue of id={key_id} failed to revoke the old key; "
                      f"withdrawing replacement id={created.key_id}")
            try:
                self.store.update(created.key_id, lambda r: replace(r, revoked_at=self.clock()))
            except StoreError:
                log.exception(f"[REGISTRY] could not withdraw replacement id={created.key_id}")
            raise
        self._audit("key.reissued", {"id": key_id, "replacement": created.key_id})
        return created

    def _audit(self, event_type: str, payload: Dict[str, Any]) -> None:
        # The state change has already been committed; a lost audit line must
        # not turn a completed operation into a reported failure.
        try:
            self.store.log_event(event_type, payload)
        except StoreError as e:
            log.error(f"[REGISTRY] audit event {event_type} for id={payload.get('id')} not recorded: {e}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_key(self, key_id: str) -> KeyInfo:
        return self.store.get(key_id).public_info(self.clock())

    def list_keys(self) -> List[KeyInfo]:
        now = self.clock()
        return [rec.public_info(now) for rec in self.store.list_all()]

    is_active = staticmethod(is_active)
    key_status = staticmethod(key_status)

"""
apikey_core.verifier
--------------------
Hot-path verification of presented API keys.

All rejections (malformed, unknown id, wrong secret, revoked, expired) raise
the same ``InvalidKey``. Unknown ids still pay for one scrypt derivation so
"no such key" costs the same as "wrong secret". Store outages propagate as
``StoreUnavailable`` and are never reported as an invalid key.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from .codec import KeyCodec
from .errors import InvalidKey, MalformedKey, NotFound
from .logger import get_logger, redact_key
from .storage.models import KeyRecord, key_status, STATUS_ACTIVE
from .storage.provider import StorageProvider
from .tiers import Tier
from .utils import utc_now

log = get_logger("apikey.verifier")


@dataclass(frozen=True)
class VerifiedKey:
    id: str
    tier: Tier

    def to_dict(self):
        return {"id": self.id, "tier": self.tier.value}


class Verifier:
    def __init__(self, store: StorageProvider, codec: KeyCodec,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.codec = codec
        self.clock = clock

    def verify(self, full_key) -> VerifiedKey:
        try:
            key_id, secret = self.codec.parse(full_key)
        except MalformedKey:
            raise self._reject("malformed", full_key) from None

        try:
            rec: Optional[KeyRecord] = self.store.get(key_id)
        except NotFound:
            rec = None

        if rec is None:
            self.codec.burn(secret)
            raise self._reject("unknown_id", full_key)

        if not self.codec.verify_secret(secret, rec.salt, rec.secret_hash):
            raise self._reject("bad_secret", full_key)

        status = key_status(rec, self.clock())
        if status != STATUS_ACTIVE:
            raise self._reject(status, full_key)

        return VerifiedKey(id=rec.id, tier=rec.tier)

    def check(self, full_key) -> Optional[VerifiedKey]:
        """Like verify() but returns None on rejection. Store outages still raise."""
        try:
            return self.verify(full_key)
        except InvalidKey:
            return None

    @staticmethod
    def _reject(reason: str, full_key) -> InvalidKey:
        log.debug(f"[VERIFY] rejected key={redact_key(full_key)} reason={reason}")
        return InvalidKey()

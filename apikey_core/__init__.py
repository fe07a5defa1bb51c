"""
apikey_core
===========
API-key issuance and verification core.

Provides:
- KeyCodec: key generation, the ``<prefix>_<id>_<secret>`` format, scrypt hashing
- Pluggable key stores (SQLite default, JSON file, in-memory, HTTP)
- KeyRegistry: tiers, expiry, revocation, reissue
- Verifier: constant-time, non-distinguishing hot-path verification
- ApiKeyManager: scoped lifecycle tying the above together
"""

from .codec import KeyCodec, GeneratedKey
from .config import KeyStoreConfig
from .errors import (
    ApiKeyError, MalformedKey, InvalidTier, InvalidProfile, DuplicateId, NotFound,
    InvalidKey, StoreError, StoreUnavailable, StoreCorrupt, ConfigError, ManagerClosed,
)
from .manager import ApiKeyManager
from .registry import KeyRegistry, KeyProfile, CreatedKey
from .storage import KeyRecord, KeyInfo, is_active, key_status, load_storage_provider
from .tiers import Tier, TierPolicy, TIER_POLICIES, get_tier_policy, parse_tier
from .verifier import Verifier, VerifiedKey

__version__ = "0.1.0"

__all__ = [
    "KeyCodec", "GeneratedKey", "KeyStoreConfig",
    "ApiKeyError", "MalformedKey", "InvalidTier", "InvalidProfile", "DuplicateId", "NotFound",
    "InvalidKey", "StoreError", "StoreUnavailable", "StoreCorrupt", "ConfigError", "ManagerClosed",
    "ApiKeyManager", "KeyRegistry", "KeyProfile", "CreatedKey",
    "KeyRecord", "KeyInfo", "is_active", "key_status", "load_storage_provider",
    "Tier", "TierPolicy", "TIER_POLICIES", "get_tier_policy", "parse_tier",
    "Verifier", "VerifiedKey",
]

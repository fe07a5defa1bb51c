# apikey_core/config.py
"""
Validated configuration for the key store and codec.

Only the options listed on ``KeyStoreConfig`` are recognized; anything else
passed to ``from_dict`` is rejected rather than silently ignored.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Optional, Dict, Any
import os, re
from .errors import ConfigError, InvalidTier
from .tiers import Tier, parse_tier

PROVIDERS = ("sqlite", "json", "memory", "http")
_PREFIX_RE = re.compile(r"^[a-z0-9]{2,16}$")

_ENV_MAP = {
    "provider": ("APIKEY_STORAGE_PROVIDER", str),
    "keys_file": ("APIKEY_KEYS_FILE", str),
    "sqlite_path": ("APIKEY_DB_PATH", str),
    "url": ("APIKEY_STORE_URL", str),
    "timeout": ("APIKEY_STORE_TIMEOUT", float),
    "key_prefix": ("APIKEY_PREFIX", str),
    "scrypt_n": ("APIKEY_SCRYPT_N", int),
    "scrypt_r": ("APIKEY_SCRYPT_R", int),
    "scrypt_p": ("APIKEY_SCRYPT_P", int),
}


@dataclass(frozen=True)
class KeyStoreConfig:
    provider: str = "sqlite"
    keys_file: str = "data/api-keys.json"
    sqlite_path: str = "db/api_keys.db"
    url: Optional[str] = None
    timeout: float = 5.0
    key_prefix: str = "llmr"
    scrypt_n: int = 2 ** 14
    scrypt_r: int = 8
    scrypt_p: int = 1
    max_create_attempts: int = 3
    default_tier: Tier = Tier.BASIC

    def __post_init__(self):
        if self.provider not in PROVIDERS:
            raise ConfigError(f"unknown storage provider: {self.provider!r}")
        if self.provider == "http" and not self.url:
            raise ConfigError("provider 'http' requires url")
        if self.provider == "json" and not self.keys_file:
            raise ConfigError("provider 'json' requires keys_file")
        if self.provider == "sqlite" and not self.sqlite_path:
            raise ConfigError("provider 'sqlite' requires sqlite_path")
        if not self.timeout or self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if not _PREFIX_RE.match(self.key_prefix or ""):
            raise ConfigError("key_prefix must be 2-16 characters of [a-z0-9]")
        if self.scrypt_n < 2 or self.scrypt_n & (self.scrypt_n - 1):
            raise ConfigError("scrypt_n must be a power of two greater than 1")
        if self.scrypt_r < 1 or self.scrypt_p < 1:
            raise ConfigError("scrypt_r and scrypt_p must be >= 1")
        if self.max_create_attempts < 1:
            raise ConfigError("max_create_attempts must be >= 1")
        try:
            object.__setattr__(self, "default_tier", parse_tier(self.default_tier))
        except InvalidTier as e:
            raise ConfigError(str(e)) from None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyStoreConfig":
        known = {f.name for f in fields(cls)}
        # camelCase alias kept for callers migrating from the JS manager
        data = dict(data)
        if "keysFile" in data:
            data.setdefault("keys_file", data.pop("keysFile"))
        # A keys file with no explicit provider means the JSON keys-file store
        if data.get("keys_file") and not data.get("provider"):
            data["provider"] = "json"
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unrecognized config options: {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def from_env(cls, **overrides) -> "KeyStoreConfig":
        values: Dict[str, Any] = {}
        for field_name, (env_name, cast) in _ENV_MAP.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = cast(raw)
            except ValueError:
                raise ConfigError(f"{env_name} has invalid value {raw!r}") from None
        values.update(overrides)
        return cls.from_dict(values)

"""
apikey_core.codec
-----------------
Key material generation, the external key format, and secret hashing.

Full key format::

    <prefix>_<id>_<secret>

- prefix: 2-16 chars of [a-z0-9], used only for format recognition
- id:     16 random bytes, fixed-width base62 (22 chars), public lookup handle
- secret: 32 random bytes, fixed-width base62 (43 chars), never persisted

base62 has no ``_`` so the separator is unambiguous. With the default ``llmr``
prefix every key is exactly 71 characters.

Secrets are hashed with scrypt (memory-hard) and a per-record salt. The stored
hash string carries its own cost parameters::

    scrypt$<n>$<r>$<p>$<b64url digest>
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Tuple
import secrets
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives import constant_time
from .errors import MalformedKey
from .utils import b64e, b64d, base62_encode, base62_decode, base62_width

ID_BYTES = 16
SECRET_BYTES = 32  # 256 bits of entropy
SALT_BYTES = 16
HASH_BYTES = 32
HASH_SCHEME = "scrypt"
SEPARATOR = "_"

ID_LENGTH = base62_width(ID_BYTES)
SECRET_LENGTH = base62_width(SECRET_BYTES)


@dataclass(frozen=True)
class GeneratedKey:
    id: str
    secret: str = field(repr=False)
    full_key: str = field(repr=False)


class KeyCodec:
    def __init__(self, prefix: str = "llmr", n: int = 2 ** 14, r: int = 8, p: int = 1):
        self.prefix = prefix
        self.n = n
        self.r = r
        self.p = p
        # Cost of the last stored hash checked; burn() matches it so an unknown id
        # costs what a wrong secret against real records costs.
        self.burn_cost = (n, r, p)
        self.key_length = len(prefix) + ID_LENGTH + SECRET_LENGTH + 2 * len(SEPARATOR)

    @classmethod
    def from_config(cls, config) -> "KeyCodec":
        return cls(prefix=config.key_prefix, n=config.scrypt_n, r=config.scrypt_r, p=config.scrypt_p)

    # --------- generation / format ----------
    def generate(self) -> GeneratedKey:
        key_id = base62_encode(secrets.token_bytes(ID_BYTES))
        secret = base62_encode(secrets.token_bytes(SECRET_BYTES))
        return GeneratedKey(id=key_id, secret=secret, full_key=self.render(key_id, secret))

    def render(self, key_id: str, secret: str) -> str:
        return SEPARATOR.join((self.prefix, key_id, secret))

    def parse(self, full_key) -> Tuple[str, str]:
        """
        Split a presented key into (id, secret).

        Every rejection raises the same MalformedKey so callers cannot learn
        which part of the format was wrong.
        """
        if not isinstance(full_key, str) or len(full_key) != self.key_length:
            raise MalformedKey()
        parts = full_key.split(SEPARATOR)
        if len(parts) != 3:
            raise MalformedKey()
        prefix, key_id, secret = parts
        if prefix != self.prefix or len(key_id) != ID_LENGTH or len(secret) != SECRET_LENGTH:
            raise MalformedKey()
        try:
            base62_decode(key_id, ID_BYTES)
            base62_decode(secret, SECRET_BYTES)
        except ValueError:
            raise MalformedKey() from None
        return key_id, secret

    def is_well_formed(self, full_key) -> bool:
        try:
            self.parse(full_key)
            return True
        except MalformedKey:
            return False

    # --------- hashing ----------
    @staticmethod
    def new_salt() -> str:
        return b64e(secrets.token_bytes(SALT_BYTES))

    def hash(self, secret: str, salt: str) -> str:
        digest = _scrypt(secret, salt, self.n, self.r, self.p)
        return f"{HASH_SCHEME}${self.n}${self.r}${self.p}${b64e(digest)}"

    def verify_secret(self, secret: str, salt: str, secret_hash: str) -> bool:
        try:
            scheme, n_raw, r_raw, p_raw, digest_raw = secret_hash.split("$")
            if scheme != HASH_SCHEME:
                return False
            n, r, p = int(n_raw), int(r_raw), int(p_raw)
            expected = b64d(digest_raw)
            computed = _scrypt(secret, salt, n, r, p)
            self.burn_cost = (n, r, p)
        except (ValueError, TypeError, AttributeError):
            return False
        return constant_time.bytes_eq(computed, expected)

    def burn(self, secret: str) -> None:
        """Spend one hash derivation with a throwaway salt (equalizes rejection timing)."""
        n, r, p = self.burn_cost
        _scrypt(secret, b64e(bytes(SALT_BYTES)), n, r, p)


def _scrypt(secret: str, salt: str, n: int, r: int, p: int) -> bytes:
    kdf = Scrypt(salt=b64d(salt), length=HASH_BYTES, n=n, r=r, p=p)
    return kdf.derive(secret.encode("utf-8"))

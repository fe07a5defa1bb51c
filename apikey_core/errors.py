"""
apikey_core.errors
------------------
Error taxonomy for key issuance, storage and verification.

Administrative paths raise the specific error. The verification path collapses
everything except store outages into a single ``InvalidKey``.
"""


class ApiKeyError(Exception):
    pass


class MalformedKey(ApiKeyError, ValueError):
    def __init__(self):
        super().__init__("malformed API key")


class InvalidTier(ApiKeyError, ValueError):
    def __init__(self, tier):
        super().__init__(f"invalid tier: {tier!r}")
        self.tier = tier


class InvalidProfile(ApiKeyError, ValueError):
    pass


class DuplicateId(ApiKeyError):
    def __init__(self, key_id: str):
        super().__init__(f"key id already exists: {key_id}")
        self.key_id = key_id


class NotFound(ApiKeyError, KeyError):
    def __init__(self, key_id: str):
        super().__init__(key_id)
        self.key_id = key_id

    def __str__(self):
        return f"key not found: {self.key_id}"


class InvalidKey(ApiKeyError):
    def __init__(self):
        super().__init__("invalid API key")


class StoreError(ApiKeyError):
    retryable = False


class StoreUnavailable(StoreError):
    """Transient store failure (timeout, lock contention, 5xx). Retry with backoff."""
    retryable = True


class StoreCorrupt(StoreError):
    """Persisted state could not be read or validated."""


class ConfigError(ApiKeyError, ValueError):
    pass


class ManagerClosed(ApiKeyError, RuntimeError):
    def __init__(self):
        super().__init__("ApiKeyManager is not open")

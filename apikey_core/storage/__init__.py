# apikey_core/storage/__init__.py

from .models import KeyRecord, KeyInfo, is_active, key_status
from .provider import StorageProvider
from .providers.memory_provider import InMemoryStorage
from .providers.json_provider import JsonFileStorage
from .providers.sqlite_provider import SQLiteStorage
from .providers.http_provider import HTTPKeyStore
from apikey_core.config import KeyStoreConfig
from apikey_core.errors import ConfigError


def load_storage_provider(config: KeyStoreConfig | None = None) -> StorageProvider:
    """
    Factory resolver for selecting the runtime storage backend.

        - sqlite (default)
        - json   (single keys file)
        - memory
        - http   (remote key service)

    The provider is returned unopened; call open() or use it as a context manager.
    """
    config = config or KeyStoreConfig.from_env()
    provider = config.provider

    if provider == "memory":
        return InMemoryStorage()

    if provider == "json":
        return JsonFileStorage(config.keys_file)

    if provider == "sqlite":
        return SQLiteStorage(config.sqlite_path, timeout=config.timeout)

    if provider == "http":
        return HTTPKeyStore(config.url, timeout=config.timeout)

    raise ConfigError(f"Unknown storage provider: {provider}")


__all__ = [
    "KeyRecord",
    "KeyInfo",
    "is_active",
    "key_status",
    "StorageProvider",
    "InMemoryStorage",
    "JsonFileStorage",
    "SQLiteStorage",
    "HTTPKeyStore",
    "load_storage_provider",
]

# apikey_core/manager.py
from __future__ import annotations
import threading
from typing import Optional, List, Dict, Any, Union
from .codec import KeyCodec
from .config import KeyStoreConfig
from .errors import ManagerClosed
from .logger import get_logger
from .registry import KeyRegistry, KeyProfile, CreatedKey
from .storage import load_storage_provider
from .storage.models import KeyInfo
from .storage.provider import StorageProvider
from .utils import utc_now
from .verifier import Verifier, VerifiedKey

log = get_logger("apikey.manager")


class ApiKeyManager:
    """
    Scoped owner of a key store plus the registry and verifier built on it.

    Lifecycle: construct -> open() (loads and validates the store, fails fast
    on corrupt state) -> use -> close(). Also usable as a context manager::

        with ApiKeyManager(KeyStoreConfig(provider="json", keys_file="data/api-keys.json")) as mgr:
            created = mgr.create_key({"name": "Functional Test User",
                                      "email": "functional-test@example.com",
                                      "tier": "basic"})
    """

    def __init__(self, config: Optional[Union[KeyStoreConfig, Dict[str, Any]]] = None,
                 store: Optional[StorageProvider] = None, clock=utc_now):
        if isinstance(config, dict):
            config = KeyStoreConfig.from_dict(config)
        self.config = config or KeyStoreConfig.from_env()
        self.codec = KeyCodec.from_config(self.config)
        self.clock = clock
        self._store = store
        self._registry: Optional[KeyRegistry] = None
        self._verifier: Optional[Verifier] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._registry is not None

    def open(self) -> "ApiKeyManager":
        with self._lock:
            if self.is_open:
                return self
            store = self._store or load_storage_provider(self.config)
            store.open()
            self._store = store
            self._registry = KeyRegistry(store, codec=self.codec, config=self.config, clock=self.clock)
            self._verifier = Verifier(store, self.codec, clock=self.clock)
            log.info(f"[MANAGER] opened store provider={store.name}")
        return self

    def close(self) -> None:
        with self._lock:
            if not self.is_open:
                return
            self._registry = None
            self._verifier = None
            try:
                self._store.close()
            finally:
                log.info("[MANAGER] closed store")

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    @property
    def store(self) -> StorageProvider:
        if not self.is_open:
            raise ManagerClosed()
        return self._store

    @property
    def registry(self) -> KeyRegistry:
        if self._registry is None:
            raise ManagerClosed()
        return self._registry

    @property
    def verifier(self) -> Verifier:
        if self._verifier is None:
            raise ManagerClosed()
        return self._verifier

    # Pass-throughs for the common calls
    def create_key(self, profile: Union[KeyProfile, Dict[str, Any]]) -> CreatedKey:
        return self.registry.create_key(profile)

    def verify(self, full_key: str) -> VerifiedKey:
        return self.verifier.verify(full_key)

    def revoke_key(self, key_id: str) -> KeyInfo:
        return self.registry.revoke_key(key_id)

    def update_tier(self, key_id: str, tier) -> KeyInfo:
        return self.registry.update_tier(key_id, tier)

    def list_keys(self) -> List[KeyInfo]:
        return self.registry.list_keys()

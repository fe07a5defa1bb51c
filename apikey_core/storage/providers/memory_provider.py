import threading
from typing import Dict, Any, List
from apikey_core.errors import DuplicateId, NotFound
from apikey_core.storage.models import KeyRecord
from apikey_core.storage.provider import StorageProvider
from apikey_core.utils import now_ts


class InMemoryStorage(StorageProvider):
    name = "memory"

    def __init__(self):
        self.keys: Dict[str, KeyRecord] = {}
        self.audit: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self._record_locks: Dict[str, threading.Lock] = {}

    def put(self, rec: KeyRecord, overwrite: bool = False):
        with self._lock:
            if rec.id in self.keys and not overwrite:
                raise DuplicateId(rec.id)
            self._record_locks.setdefault(rec.id, threading.Lock())
            self.keys[rec.id] = rec

    def get(self, key_id: str) -> KeyRecord:
        rec = self.keys.get(key_id)
        if rec is None:
            raise NotFound(key_id)
        return rec

    def update(self, key_id: str, mutator) -> KeyRecord:
        lock = self._record_locks.get(key_id)
        if lock is None:
            raise NotFound(key_id)
        with lock:
            new = self.apply(self.get(key_id), mutator)
            self.keys[key_id] = new
            return new

    def list_all(self) -> List[KeyRecord]:
        return list(self.keys.values())

    # audit
    def log_event(self, event_type: str, payload: Dict[str, Any]):
        with self._lock:
            self.audit.append({"ts": now_ts(), "event_type": event_type, "payload": dict(payload)})

    def audit_events(self) -> List[Dict[str, Any]]:
        return list(self.audit)

# apikey_core/storage/provider.py
from __future__ import annotations
from typing import Callable, Dict, Any, List
from apikey_core.storage.models import KeyRecord
from apikey_core.errors import StoreError

Mutator = Callable[[KeyRecord], KeyRecord]


class StorageProvider:
    """
    Interface for durable ``id -> KeyRecord`` stores.

    Contract:
      - put() is atomic and raises DuplicateId unless overwrite=True
      - get() raises NotFound for unknown ids
      - update() is a read-modify-write that cannot interleave with another
        update of the same id
      - records are never deleted
    """
    name: str = "base"

    def open(self) -> "StorageProvider":
        return self

    def put(self, rec: KeyRecord, overwrite: bool = False) -> None: ...
    def get(self, key_id: str) -> KeyRecord: ...
    def update(self, key_id: str, mutator: Mutator) -> KeyRecord: ...
    def list_all(self) -> List[KeyRecord]: ...
    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None: ...
    def audit_events(self) -> List[Dict[str, Any]]: ...

    def close(self) -> None:
        return

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    @staticmethod
    def apply(rec: KeyRecord, mutator: Mutator) -> KeyRecord:
        new = mutator(rec)
        if not isinstance(new, KeyRecord) or new.id != rec.id:
            raise StoreError("mutator must return a KeyRecord with the same id")
        return new

from __future__ import annotations
from typing import Dict, Any, List
import json, os, threading
from apikey_core.errors import DuplicateId, NotFound, StoreCorrupt, StoreUnavailable
from apikey_core.logger import get_logger
from apikey_core.storage.models import KeyRecord
from apikey_core.storage.provider import StorageProvider
from apikey_core.utils import now_ts

log = get_logger("apikey.storage.json")

FORMAT_VERSION = 1


class JsonFileStorage(StorageProvider):
    """
    Single JSON document holding every key record and the audit trail.

    The whole document is kept in memory; each write serializes it to
    ``<path>.tmp``, fsyncs, then swaps it over ``path`` with os.replace, so a
    crash mid-write leaves the previous document intact.
    """
    name = "json"

    def __init__(self, path="data/api-keys.json"):
        self.path = path
        self.keys: Dict[str, KeyRecord] = {}
        self.audit: List[Dict[str, Any]] = []
        self._lock = threading.RLock()
        self._opened = False

    def open(self) -> "JsonFileStorage":
        with self._lock:
            if not self._opened:
                self._load()
                self._opened = True
        return self

    def _load(self) -> None:
        if not os.path.exists(self.path):
            log.info(f"[JSON] no keys file at {self.path}, starting empty")
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreCorrupt(f"cannot read keys file {self.path}: {e}") from e

        if not isinstance(doc, dict) or doc.get("version") != FORMAT_VERSION:
            raise StoreCorrupt(f"keys file {self.path} has unknown format")
        raw_keys = doc.get("keys")
        raw_audit = doc.get("audit", [])
        if not isinstance(raw_keys, dict) or not isinstance(raw_audit, list):
            raise StoreCorrupt(f"keys file {self.path} has unknown format")

        keys = {}
        for key_id, raw in raw_keys.items():
            try:
                rec = KeyRecord.from_dict(raw)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                raise StoreCorrupt(f"bad record {key_id!r} in {self.path}: {e}") from e
            if rec.id != key_id:
                raise StoreCorrupt(f"record id mismatch for {key_id!r} in {self.path}")
            keys[key_id] = rec
        self.keys = keys
        self.audit = raw_audit
        log.info(f"[JSON] loaded {len(keys)} keys from {self.path}")

    def _flush(self, keys: Dict[str, KeyRecord], audit: List[Dict[str, Any]]) -> None:
        doc = {
            "version": FORMAT_VERSION,
            "keys": {k: rec.to_dict() for k, rec in keys.items()},
            "audit": audit,
        }
        dir_path = os.path.dirname(self.path) or "."
        tmp = self.path + ".tmp"
        try:
            os.makedirs(dir_path, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreUnavailable(f"cannot write keys file {self.path}: {e}") from e

    def put(self, rec: KeyRecord, overwrite: bool = False) -> None:
        with self._lock:
            if rec.id in self.keys and not overwrite:
                raise DuplicateId(rec.id)
            keys = dict(self.keys)
            keys[rec.id] = rec
            # Memory only changes once the file swap succeeded
            self._flush(keys, self.audit)
            self.keys = keys

    def get(self, key_id: str) -> KeyRecord:
        rec = self.keys.get(key_id)
        if rec is None:
            raise NotFound(key_id)
        return rec

    def update(self, key_id: str, mutator) -> KeyRecord:
        with self._lock:
            new = self.apply(self.get(key_id), mutator)
            keys = dict(self.keys)
            keys[key_id] = new
            self._flush(keys, self.audit)
            self.keys = keys
            return new

    def list_all(self) -> List[KeyRecord]:
        return list(self.keys.values())

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            audit = self.audit + [{"ts": now_ts(), "event_type": event_type, "payload": dict(payload)}]
            self._flush(self.keys, audit)
            self.audit = audit

    def audit_events(self) -> List[Dict[str, Any]]:
        return list(self.audit)

    def close(self):
        self._opened = False

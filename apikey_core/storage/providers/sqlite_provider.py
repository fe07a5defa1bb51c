from __future__ import annotations
from contextlib import contextmanager
from typing import Optional, Dict, Any, List
import json, sqlite3, os, threading
from apikey_core.errors import DuplicateId, NotFound, StoreCorrupt, StoreUnavailable
from apikey_core.logger import get_logger
from apikey_core.storage.models import KeyRecord
from apikey_core.storage.provider import StorageProvider
from apikey_core.utils import canonical_json, now_ts

log = get_logger("apikey.storage.sqlite")

_COLUMNS = ("id", "secret_hash", "salt", "name", "email", "tier",
            "created_at", "expires_at", "revoked_at", "usage_counters")
_SELECT = f"SELECT {','.join(_COLUMNS)} FROM api_keys"


class SQLiteStorage(StorageProvider):
    name = "sqlite"

    def __init__(self, path="db/api_keys.db", timeout: float = 5.0):
        self.path = path
        self.timeout = timeout
        self.db: Optional[sqlite3.Connection] = None
        # One connection shared across threads; issuance is rare so a
        # store-wide lock is cheap next to the hash cost of verification.
        self._lock = threading.RLock()

    def open(self) -> "SQLiteStorage":
        with self._lock:
            if self.db is not None:
                return self
            if self.path != ":memory:":
                # If no directory, default to current working directory
                os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            try:
                db = sqlite3.connect(self.path, timeout=self.timeout,
                                     check_same_thread=False, isolation_level=None)
            except sqlite3.Error as e:
                raise StoreUnavailable(f"cannot open {self.path}: {e}") from e
            try:
                row = db.execute("PRAGMA quick_check").fetchone()
                if not row or row[0] != "ok":
                    raise StoreCorrupt(f"integrity check failed for {self.path}: {row}")
                self.db = db
                self._init()
            except sqlite3.DatabaseError as e:
                db.close()
                self.db = None
                raise StoreCorrupt(f"cannot read {self.path}: {e}") from e
            except StoreCorrupt:
                db.close()
                raise
        return self

    def _init(self) -> None:
        c = self.db.cursor()
        c.execute("""CREATE TABLE IF NOT EXISTS api_keys(
            id TEXT PRIMARY KEY,
            secret_hash TEXT NOT NULL,
            salt TEXT NOT NULL,
            name TEXT,
            email TEXT,
            tier TEXT NOT NULL,
            created_at TEXT NOT NULL,
            expires_at TEXT,
            revoked_at TEXT,
            usage_counters TEXT
        )""")
        c.execute("""CREATE TABLE IF NOT EXISTS audit(
            ts TEXT,
            event_type TEXT,
            payload TEXT
        )""")

    @contextmanager
    def _tx(self):
        """BEGIN IMMEDIATE ... COMMIT under the store lock; operational errors become StoreUnavailable."""
        if self.db is None:
            self.open()
        with self._lock:
            try:
                self.db.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                raise StoreUnavailable(f"sqlite busy: {e}") from e
            try:
                yield self.db
            except sqlite3.OperationalError as e:
                self._rollback()
                raise StoreUnavailable(f"sqlite write failed: {e}") from e
            except BaseException:
                self._rollback()
                raise
            else:
                try:
                    self.db.execute("COMMIT")
                except sqlite3.OperationalError as e:
                    self._rollback()
                    raise StoreUnavailable(f"sqlite commit failed: {e}") from e

    def _rollback(self):
        if self.db.in_transaction:
            self.db.execute("ROLLBACK")

    @staticmethod
    def _row_values(rec: KeyRecord) -> tuple:
        d = rec.to_dict()
        d["usage_counters"] = json.dumps(d["usage_counters"], separators=(",", ":"), sort_keys=True)
        return tuple(d[c] for c in _COLUMNS)

    @staticmethod
    def _from_row(row) -> KeyRecord:
        d = dict(zip(_COLUMNS, row))
        try:
            d["usage_counters"] = json.loads(d["usage_counters"]) if d["usage_counters"] else {}
            return KeyRecord.from_dict(d)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise StoreCorrupt(f"bad record {d.get('id')!r}: {e}") from e

    def _fetch(self, db, key_id: str) -> KeyRecord:
        row = db.execute(f"{_SELECT} WHERE id=?", (key_id,)).fetchone()
        if not row:
            raise NotFound(key_id)
        return self._from_row(row)

    def put(self, rec: KeyRecord, overwrite: bool = False) -> None:
        placeholders = ",".join("?" * len(_COLUMNS))
        if overwrite:
            updates = ", ".join(f"{c}=excluded.{c}" for c in _COLUMNS[1:])
            sql = (f"INSERT INTO api_keys({','.join(_COLUMNS)}) VALUES({placeholders}) "
                   f"ON CONFLICT(id) DO UPDATE SET {updates}")
        else:
            sql = f"INSERT INTO api_keys({','.join(_COLUMNS)}) VALUES({placeholders})"
        with self._tx() as db:
            try:
                db.execute(sql, self._row_values(rec))
            except sqlite3.IntegrityError:
                raise DuplicateId(rec.id) from None

    def get(self, key_id: str) -> KeyRecord:
        if self.db is None:
            self.open()
        with self._lock:
            try:
                return self._fetch(self.db, key_id)
            except sqlite3.OperationalError as e:
                raise StoreUnavailable(f"sqlite read failed: {e}") from e

    def update(self, key_id: str, mutator) -> KeyRecord:
        with self._tx() as db:
            new = self.apply(self._fetch(db, key_id), mutator)
            values = self._row_values(new)
            sets = ", ".join(f"{c}=?" for c in _COLUMNS[1:])
            db.execute(f"UPDATE api_keys SET {sets} WHERE id=?", values[1:] + (key_id,))
            return new

    def list_all(self) -> List[KeyRecord]:
        if self.db is None:
            self.open()
        with self._lock:
            try:
                rows = self.db.execute(f"{_SELECT} ORDER BY created_at").fetchall()
            except sqlite3.OperationalError as e:
                raise StoreUnavailable(f"sqlite read failed: {e}") from e
        return [self._from_row(r) for r in rows]

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._tx() as db:
            db.execute("INSERT INTO audit(ts,event_type,payload) VALUES(?,?,?)",
                       (now_ts(), event_type, canonical_json(payload).decode("utf-8")))

    def audit_events(self) -> List[Dict[str, Any]]:
        if self.db is None:
            self.open()
        with self._lock:
            rows = self.db.execute("SELECT ts,event_type,payload FROM audit ORDER BY rowid").fetchall()
        return [{"ts": ts, "event_type": et, "payload": json.loads(p)} for ts, et, p in rows]

    def close(self):
        with self._lock:
            if self.db is not None:
                self.db.close()
                self.db = None

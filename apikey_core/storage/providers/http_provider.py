# apikey_core/storage/providers/http_provider.py
from __future__ import annotations
from typing import Optional, Dict, Any, List, Tuple
from urllib.parse import quote
import requests
from apikey_core.errors import DuplicateId, NotFound, StoreCorrupt, StoreError, StoreUnavailable
from apikey_core.logger import get_logger
from apikey_core.storage.models import KeyRecord
from apikey_core.storage.provider import StorageProvider

log = get_logger("apikey.storage.http")


class HTTPKeyStore(StorageProvider):
    """
    Key store backed by a remote REST service.

    Protocol:
      GET  /healthz            -> 200 when ready
      GET  /keys/{id}          -> 200 record JSON + ETag | 404
      PUT  /keys/{id}          -> 200/201/204; If-None-Match: * on create,
                                  If-Match: <etag> on update (412 on conflict)
      GET  /keys               -> list of records (or {"keys": [...]})
      POST /audit              -> append {"event_type", "payload"}
      GET  /audit              -> list of audit events

    Every call carries a timeout. Timeouts, connection failures, 429 and 5xx
    surface as StoreUnavailable so callers can retry with backoff.
    """
    name = "http"

    def __init__(self, base_url: str, timeout: float = 5.0, session: Optional[requests.Session] = None,
                 max_update_attempts: int = 5, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_update_attempts = max_update_attempts
        self.session = session or requests.Session()
        self._owns_session = session is None
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        headers = dict(self.headers)
        headers.update(kwargs.pop("headers", None) or {})
        try:
            res = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as e:
            log.warning(f"[HTTP STORE] {method} {url} unavailable: {e}")
            raise StoreUnavailable(f"{method} {url}: {e}") from e
        except requests.RequestException as e:
            raise StoreError(f"{method} {url}: {e}") from e

        if res.status_code == 429 or res.status_code >= 500:
            log.warning(f"[HTTP STORE] {method} {url} -> {res.status_code}")
            raise StoreUnavailable(f"{method} {url} -> {res.status_code}")
        return res

    @staticmethod
    def _unexpected(res: requests.Response) -> StoreError:
        return StoreError(f"unexpected response {res.status_code}: {res.text[:200]}")

    @staticmethod
    def _decode(data: Any) -> KeyRecord:
        try:
            return KeyRecord.from_dict(data)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise StoreCorrupt(f"remote store returned a bad record: {e}") from e

    def _json(self, res: requests.Response) -> Any:
        try:
            return res.json()
        except ValueError as e:
            raise StoreCorrupt(f"remote store returned invalid JSON: {e}") from e

    def _key_path(self, key_id: str) -> str:
        return f"/keys/{quote(key_id, safe='')}"

    def _read(self, key_id: str) -> Tuple[KeyRecord, Optional[str]]:
        res = self._request("GET", self._key_path(key_id))
        if res.status_code == 404:
            raise NotFound(key_id)
        if res.status_code != 200:
            raise self._unexpected(res)
        return self._decode(self._json(res)), res.headers.get("ETag")

    # ------------------------------------------------------------------
    # StorageProvider
    # ------------------------------------------------------------------
    def open(self) -> "HTTPKeyStore":
        res = self._request("GET", "/healthz")
        if res.status_code != 200:
            raise StoreUnavailable(f"key store not ready: {res.status_code}")
        log.info(f"[HTTP STORE] connected {self.base_url}")
        return self

    def put(self, rec: KeyRecord, overwrite: bool = False) -> None:
        headers = {} if overwrite else {"If-None-Match": "*"}
        res = self._request("PUT", self._key_path(rec.id), json=rec.to_dict(), headers=headers)
        if res.status_code in (409, 412):
            raise DuplicateId(rec.id)
        if res.status_code not in (200, 201, 204):
            raise self._unexpected(res)

    def get(self, key_id: str) -> KeyRecord:
        return self._read(key_id)[0]

    def update(self, key_id: str, mutator) -> KeyRecord:
        for attempt in range(1, self.max_update_attempts + 1):
            current, etag = self._read(key_id)
            if not etag:
                raise StoreError(f"remote store sent no ETag for {key_id}; refusing an unguarded update")
            new = self.apply(current, mutator)
            headers = {"If-Match": etag}
            res = self._request("PUT", self._key_path(key_id), json=new.to_dict(), headers=headers)
            if res.status_code in (200, 201, 204):
                return new
            if res.status_code == 404:
                raise NotFound(key_id)
            if res.status_code != 412:
                raise self._unexpected(res)
            log.info(f"[HTTP STORE] update conflict on {key_id} (attempt {attempt})")
        raise StoreUnavailable(f"update of {key_id} kept conflicting after {self.max_update_attempts} attempts")

    def list_all(self) -> List[KeyRecord]:
        res = self._request("GET", "/keys")
        if res.status_code != 200:
            raise self._unexpected(res)
        data = self._json(res)
        if isinstance(data, dict):
            data = data.get("keys")
        if not isinstance(data, list):
            raise StoreCorrupt("remote store returned an unexpected key listing")
        return [self._decode(d) for d in data]

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        res = self._request("POST", "/audit", json={"event_type": event_type, "payload": payload})
        if res.status_code not in (200, 201, 202, 204):
            raise self._unexpected(res)

    def audit_events(self) -> List[Dict[str, Any]]:
        res = self._request("GET", "/audit")
        if res.status_code != 200:
            raise self._unexpected(res)
        data = self._json(res)
        if isinstance(data, dict):
            data = data.get("events")
        if not isinstance(data, list):
            raise StoreCorrupt("remote store returned an unexpected audit listing")
        return data

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

from datetime import datetime, timedelta, timezone
import pytest
from apikey_core.codec import KeyCodec
from apikey_core.config import KeyStoreConfig
from apikey_core.registry import KeyRegistry
from apikey_core.storage import InMemoryStorage, JsonFileStorage, SQLiteStorage
from apikey_core.verifier import Verifier

# Cheap scrypt cost so the suite stays fast; production default is 2**14.
FAST_SCRYPT_N = 16


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def config():
    return KeyStoreConfig(provider="memory", scrypt_n=FAST_SCRYPT_N)


@pytest.fixture
def codec(config):
    return KeyCodec.from_config(config)


@pytest.fixture
def clock():
    return FakeClock()


def make_store(kind, tmp_path):
    if kind == "memory":
        return InMemoryStorage()
    if kind == "json":
        return JsonFileStorage(str(tmp_path / "data" / "api-keys.json"))
    return SQLiteStorage(str(tmp_path / "db" / "api_keys.db"))


@pytest.fixture(params=["memory", "json", "sqlite"])
def store(request, tmp_path):
    s = make_store(request.param, tmp_path).open()
    yield s
    s.close()


@pytest.fixture
def registry(store, codec, config, clock):
    return KeyRegistry(store, codec=codec, config=config, clock=clock)


@pytest.fixture
def verifier(store, codec, clock):
    return Verifier(store, codec, clock=clock)

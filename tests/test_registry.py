from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta, timezone
import pytest
from apikey_core.codec import GeneratedKey
from apikey_core.config import KeyStoreConfig
from apikey_core.errors import DuplicateId, InvalidProfile, InvalidTier, NotFound, StoreUnavailable
from apikey_core.registry import KeyProfile, KeyRegistry
from apikey_core.storage import InMemoryStorage, is_active, key_status
from apikey_core.tiers import Tier
from apikey_core.verifier import Verifier

PROFILE = {"name": "Functional Test User", "email": "functional-test@example.com", "tier": "basic"}


def test_create_key(registry, store, codec):
    created = registry.create_key(PROFILE)
    assert created.tier is Tier.BASIC
    assert codec.parse(created.full_key)[0] == created.key_id

    out = created.to_dict()
    assert set(out) == {"keyId", "fullKey", "tier"}
    assert out["tier"] == "basic"
    assert created.full_key not in repr(created)

    rec = store.get(created.key_id)
    _, secret = codec.parse(created.full_key)
    assert secret not in str(rec.to_dict())
    assert codec.verify_secret(secret, rec.salt, rec.secret_hash)
    assert rec.name == "Functional Test User"


def test_create_key_accepts_profile_object(registry):
    created = registry.create_key(KeyProfile(name="ops", email="ops@example.com", tier=Tier.PRO))
    assert created.tier is Tier.PRO


def test_create_key_invalid_tier_persists_nothing(registry, store):
    with pytest.raises(InvalidTier):
        registry.create_key({"tier": "nonexistent"})
    with pytest.raises(InvalidTier):
        registry.create_key(dict(PROFILE, tier="platinum"))
    assert store.list_all() == []
    assert store.audit_events() == []


@pytest.mark.parametrize("override", [
    {"name": ""},
    {"email": "   "},
    {"email": None},
    {"expires_in": -5},
    {"expires_in": "soon"},
    {"expires_at": datetime(2020, 1, 1, tzinfo=timezone.utc)},
    {"expires_at": datetime(2030, 1, 1)},
    {"expires_at": datetime(2030, 1, 1, tzinfo=timezone.utc), "expires_in": 60},
])
def test_create_key_invalid_profile(registry, store, override):
    with pytest.raises(InvalidProfile):
        registry.create_key(dict(PROFILE, **override))
    assert store.list_all() == []


def test_create_key_with_expiry(registry, clock):
    created = registry.create_key(dict(PROFILE, expires_in=timedelta(days=30)))
    assert created.expires_at == clock.now + timedelta(days=30)
    assert "expiresAt" in created.to_dict()
    assert registry.get_key(created.key_id).status == "active"

    clock.advance(days=31)
    assert registry.get_key(created.key_id).status == "expired"


def test_create_key_audited(registry, store):
    created = registry.create_key(PROFILE)
    events = store.audit_events()
    assert events[-1]["event_type"] == "key.created"
    assert events[-1]["payload"]["id"] == created.key_id
    assert created.full_key not in str(events)


def test_create_key_retries_on_id_collision(registry, store, codec, monkeypatch):
    existing = registry.create_key(PROFILE)
    fresh = codec.generate()
    clash = GeneratedKey(id=existing.key_id, secret=fresh.secret,
                         full_key=codec.render(existing.key_id, fresh.secret))
    queue = [clash, fresh]
    monkeypatch.setattr(registry.codec, "generate", lambda: queue.pop(0))

    created = registry.create_key(PROFILE)
    assert created.key_id == fresh.id
    assert len(store.list_all()) == 2


def test_create_key_gives_up_after_bounded_collisions(registry, store, codec, monkeypatch):
    existing = registry.create_key(PROFILE)
    clash = GeneratedKey(id=existing.key_id, secret="x", full_key="x")
    monkeypatch.setattr(registry.codec, "generate", lambda: clash)
    with pytest.raises(DuplicateId):
        registry.create_key(PROFILE)
    assert len(store.list_all()) == 1


def test_revoke_is_idempotent(registry, store, clock):
    created = registry.create_key(PROFILE)
    first = registry.revoke_key(created.key_id)
    assert first.status == "revoked"
    revoked_at = store.get(created.key_id).revoked_at

    clock.advance(hours=1)
    second = registry.revoke_key(created.key_id)
    assert second.status == "revoked"
    assert store.get(created.key_id).revoked_at == revoked_at
    assert [e["event_type"] for e in store.audit_events()].count("key.revoked") == 1


def test_revoke_unknown(registry):
    with pytest.raises(NotFound):
        registry.revoke_key("missing")


def test_revoked_record_is_retained(registry):
    created = registry.create_key(PROFILE)
    registry.revoke_key(created.key_id)
    assert [k.id for k in registry.list_keys()] == [created.key_id]


def test_update_tier(registry, store):
    created = registry.create_key(PROFILE)
    info = registry.update_tier(created.key_id, "Enterprise")
    assert info.tier is Tier.ENTERPRISE
    assert store.get(created.key_id).tier is Tier.ENTERPRISE
    assert store.audit_events()[-1]["payload"] == {"id": created.key_id, "from": "basic", "to": "enterprise"}

    with pytest.raises(InvalidTier):
        registry.update_tier(created.key_id, "gold")
    with pytest.raises(NotFound):
        registry.update_tier("missing", "pro")


def test_expire_key(registry, clock):
    created = registry.create_key(PROFILE)
    info = registry.expire_key(created.key_id)
    assert info.status == "expired"
    later = clock.now + timedelta(days=1)
    assert registry.expire_key(created.key_id, at=later).status == "active"
    with pytest.raises(NotFound):
        registry.expire_key("missing")


def test_reissue_key(registry, store):
    old = registry.create_key(dict(PROFILE, tier="pro"))
    new = registry.reissue_key(old.key_id)
    assert new.key_id != old.key_id
    assert new.tier is Tier.PRO
    assert registry.get_key(old.key_id).status == "revoked"
    assert registry.get_key(new.key_id).status == "active"
    assert store.audit_events()[-1]["payload"] == {"id": old.key_id, "replacement": new.key_id}


def test_read_views_hide_secret_material(registry):
    created = registry.create_key(PROFILE)
    info = registry.get_key(created.key_id)
    assert not hasattr(info, "secret_hash")
    assert not hasattr(info, "salt")
    for listed in registry.list_keys():
        assert "secret_hash" not in listed.to_dict()


def test_is_active_is_pure(registry, store, clock):
    created = registry.create_key(PROFILE)
    rec = store.get(created.key_id)
    now = clock.now
    assert is_active(rec, now) and registry.is_active(rec, now)
    assert not is_active(replace(rec, expires_at=now), now)
    revoked = replace(rec, revoked_at=now, expires_at=now - timedelta(days=1))
    assert not is_active(revoked, now)
    assert key_status(revoked, now) == "revoked"
    assert store.get(created.key_id) == rec


@pytest.mark.parametrize("kind", ["memory", "sqlite", "json"])
def test_concurrent_creates_never_collide(kind, tmp_path, codec, config):
    from conftest import make_store
    store = make_store(kind, tmp_path).open()
    registry = KeyRegistry(store, codec=codec, config=config)
    with ThreadPoolExecutor(max_workers=16) as pool:
        created = list(pool.map(lambda i: registry.create_key(
            {"name": f"user{i}", "email": f"u{i}@example.com", "tier": "basic"}), range(200)))
    ids = [c.key_id for c in created]
    assert len(set(ids)) == 200
    assert len(store.list_all()) == 200
    store.close()


class AuditDownStorage(InMemoryStorage):
    def log_event(self, event_type, payload):
        raise StoreUnavailable("audit sink timed out")


def test_create_key_survives_audit_outage(codec, config, clock, caplog):
    store = AuditDownStorage()
    registry = KeyRegistry(store, codec=codec, config=config, clock=clock)
    created = registry.create_key(PROFILE)
    assert Verifier(store, codec, clock=clock).verify(created.full_key).id == created.key_id
    assert [r.id for r in store.list_all()] == [created.key_id]
    assert "key.created" in caplog.text

    # Lifecycle operations still complete too
    assert registry.revoke_key(created.key_id).status == "revoked"


def test_create_key_without_tier_uses_default(codec, clock):
    store = InMemoryStorage()
    registry = KeyRegistry(store, codec=codec, config=KeyStoreConfig(provider="memory", scrypt_n=16), clock=clock)
    assert registry.create_key({"name": "ops", "email": "ops@example.com"}).tier is Tier.BASIC

    pro = KeyStoreConfig(provider="memory", scrypt_n=16, default_tier="pro")
    registry = KeyRegistry(store, codec=codec, config=pro, clock=clock)
    assert registry.create_key({"name": "ops", "email": "ops@example.com"}).tier is Tier.PRO
    with pytest.raises(InvalidTier):
        registry.create_key({"name": "ops", "email": "ops@example.com", "tier": ""})


def test_reissue_keeps_old_key_when_replacement_fails(registry, monkeypatch):
    old = registry.create_key(PROFILE)

    def down(profile):
        raise StoreUnavailable("store timed out")

    monkeypatch.setattr(registry, "create_key", down)
    with pytest.raises(StoreUnavailable):
        registry.reissue_key(old.key_id)
    assert registry.get_key(old.key_id).status == "active"
    assert len(registry.list_keys()) == 1


class RevokeDownStorage(InMemoryStorage):
    def __init__(self):
        super().__init__()
        self.blocked = set()

    def update(self, key_id, mutator):
        if key_id in self.blocked:
            raise StoreUnavailable("store timed out")
        return super().update(key_id, mutator)


def test_reissue_withdraws_replacement_when_revoke_fails(codec, config, clock):
    store = RevokeDownStorage()
    registry = KeyRegistry(store, codec=codec, config=config, clock=clock)
    old = registry.create_key(PROFILE)
    store.blocked.add(old.key_id)

    with pytest.raises(StoreUnavailable):
        registry.reissue_key(old.key_id)
    statuses = {k.id: k.status for k in registry.list_keys()}
    assert statuses.pop(old.key_id) == "active"
    assert list(statuses.values()) == ["revoked"]

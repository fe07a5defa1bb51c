import pytest
from apikey_core.codec import KeyCodec, ID_LENGTH, SECRET_LENGTH
from apikey_core.errors import MalformedKey


def test_generate_parse_roundtrip(codec):
    gen = codec.generate()
    key_id, secret = codec.parse(gen.full_key)
    assert key_id == gen.id
    assert secret == gen.secret
    assert gen.full_key.startswith("llmr_")


def test_key_format_is_fixed_length(codec):
    assert ID_LENGTH == 22
    assert SECRET_LENGTH == 43
    assert codec.key_length == 71
    for _ in range(50):
        gen = codec.generate()
        assert len(gen.full_key) == 71
        assert len(gen.id) == ID_LENGTH
        assert gen.full_key.count("_") == 2


def test_custom_prefix_changes_length():
    codec = KeyCodec(prefix="testkey", n=16)
    gen = codec.generate()
    assert gen.full_key.startswith("testkey_")
    assert codec.key_length == len(gen.full_key) == 74


def test_generated_ids_are_unique(codec):
    ids = {codec.generate().id for _ in range(2000)}
    assert len(ids) == 2000


def test_repr_hides_secret(codec):
    gen = codec.generate()
    assert gen.secret not in repr(gen)
    assert gen.id in repr(gen)


def test_hash_and_verify(codec):
    gen = codec.generate()
    salt = codec.new_salt()
    stored = codec.hash(gen.secret, salt)
    assert stored.startswith("scrypt$16$8$1$")
    assert gen.secret not in stored
    assert codec.verify_secret(gen.secret, salt, stored)
    assert not codec.verify_secret(codec.generate().secret, salt, stored)


def test_hash_depends_on_salt(codec):
    secret = codec.generate().secret
    assert codec.hash(secret, codec.new_salt()) != codec.hash(secret, codec.new_salt())


def test_verify_uses_parameters_stored_in_hash(codec):
    # Hash made with a different cost still verifies after the config changes
    old = KeyCodec(n=32)
    salt = old.new_salt()
    stored = old.hash("s3cret", salt)
    assert codec.verify_secret("s3cret", salt, stored)


@pytest.mark.parametrize("stored", ["", "garbage", "bcrypt$1$2$3$abc", "scrypt$x$8$1$abc", None])
def test_verify_with_unusable_hash_is_false(codec, stored):
    assert codec.verify_secret("secret", codec.new_salt(), stored) is False


def _bad_keys(codec):
    good = codec.generate().full_key
    prefix, key_id, secret = good.split("_")
    return [
        "",
        good[:-1],
        good + "A",
        "sk_" + good[5:] + "A",
        "LLMR_" + good[5:],
        good.replace("_", "-"),
        f"{prefix}_{key_id[:-1]}_{secret}A",
        f"{prefix}_{key_id}_{secret[:-1]}-",
        f"{prefix}_{'z' * 22}_{secret}",  # id overflows 16 bytes
        f"{prefix}_{key_id}_{'z' * 43}",  # secret overflows 32 bytes
        None,
        good.encode("ascii"),
        12345,
    ]


def test_parse_rejects_malformed_uniformly(codec):
    messages = set()
    for bad in _bad_keys(codec):
        with pytest.raises(MalformedKey) as exc:
            codec.parse(bad)
        messages.add(str(exc.value))
        assert not codec.is_well_formed(bad)
    assert messages == {"malformed API key"}


def test_burn_follows_stored_hash_cost(codec, monkeypatch):
    import apikey_core.codec as codec_module
    old = KeyCodec(n=32)
    salt = old.new_salt()
    assert codec.verify_secret("s3cret", salt, old.hash("s3cret", salt))
    assert codec.burn_cost == (32, 8, 1)

    seen = []
    monkeypatch.setattr(codec_module, "_scrypt", lambda secret, salt, n, r, p: seen.append((n, r, p)))
    codec.burn("whatever")
    assert seen == [(32, 8, 1)]

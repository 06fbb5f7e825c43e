import base64

import pytest

from relaymsg.crypto import CryptoEngine, CryptoError, prekey_signature_payload


@pytest.fixture
def engine():
    return CryptoEngine()


def test_healthcheck_returns_none(engine):
    assert engine.healthcheck() is None


def test_shared_key_is_32_bytes(engine):
    key = engine.generate_shared_key_b64()
    assert len(base64.b64decode(key)) == 32
    assert engine.generate_shared_key_b64() != key


def test_text_round_trip(engine):
    key = engine.generate_shared_key_b64()
    envelope = engine.encrypt_text_to_b64(key, "hello, мир")
    assert engine.decrypt_text_from_b64(key, envelope) == "hello, мир"


def test_envelope_layout(engine):
    key = engine.generate_shared_key_b64()
    envelope = engine.encrypt_bytes(key, b"abc")
    assert len(envelope) == 24 + 3 + 16
    assert engine.decrypt_bytes(key, envelope) == b"abc"


def test_wrong_key_fails(engine):
    key = engine.generate_shared_key_b64()
    other = engine.generate_shared_key_b64()
    envelope = engine.encrypt_bytes_to_b64(key, b"data")
    with pytest.raises(CryptoError, match="decryption failed"):
        engine.decrypt_bytes_from_b64(other, envelope)


def test_short_envelope_rejected(engine):
    key = engine.generate_shared_key_b64()
    with pytest.raises(CryptoError, match="invalid envelope length"):
        engine.decrypt_bytes(key, b"\x00" * 10)


def test_key_length_checked(engine):
    short_key = base64.b64encode(b"\x01" * 16).decode()
    with pytest.raises(CryptoError, match="key must be 32 bytes"):
        engine.encrypt_bytes(short_key, b"x")


def test_bad_base64_key(engine):
    with pytest.raises(CryptoError, match="invalid key base64"):
        engine.encrypt_bytes("!!!", b"x")


def test_bad_envelope_base64(engine):
    key = engine.generate_shared_key_b64()
    with pytest.raises(CryptoError, match="invalid envelope base64"):
        engine.decrypt_bytes_from_b64(key, "not base64!")


def test_invalid_utf8_payload(engine):
    key = engine.generate_shared_key_b64()
    envelope = engine.encrypt_bytes_to_b64(key, b"\xff\xfe")
    with pytest.raises(CryptoError, match="invalid utf8 payload"):
        engine.decrypt_text_from_b64(key, envelope)


def test_sign_and_verify_prekey(engine):
    signing = engine.generate_ed25519_keypair()
    prekey = engine.generate_x25519_keypair()
    signature = engine.sign_prekey_b64(signing.private_b64, prekey.public_b64)
    assert len(base64.b64decode(signature)) == 64
    assert (
        engine.verify_prekey_signature_b64(signing.public_b64, prekey.public_b64, signature)
        is None
    )


def test_verify_rejects_other_prekey(engine):
    signing = engine.generate_ed25519_keypair()
    prekey = engine.generate_x25519_keypair()
    other = engine.generate_x25519_keypair()
    signature = engine.sign_prekey_b64(signing.private_b64, prekey.public_b64)
    with pytest.raises(CryptoError, match="invalid prekey signature"):
        engine.verify_prekey_signature_b64(signing.public_b64, other.public_b64, signature)


def test_verify_rejects_short_signature(engine):
    signing = engine.generate_ed25519_keypair()
    prekey = engine.generate_x25519_keypair()
    short = base64.b64encode(b"\x00" * 10).decode()
    with pytest.raises(CryptoError, match="invalid prekey signature"):
        engine.verify_prekey_signature_b64(signing.public_b64, prekey.public_b64, short)


def test_signature_payload_prefix():
    assert prekey_signature_payload(b"\x01\x02") == b"rsmsg-signed-prekey-v1\x01\x02"


def test_derive_shared_key_symmetric(engine):
    alice = engine.generate_x25519_keypair()
    bob = engine.generate_x25519_keypair()
    k1 = engine.derive_shared_key_b64(alice.private_b64, bob.public_b64)
    k2 = engine.derive_shared_key_b64(bob.private_b64, alice.public_b64)
    assert k1 == k2
    assert len(base64.b64decode(k1)) == 32


def test_derived_key_encrypts(engine):
    alice = engine.generate_x25519_keypair()
    bob = engine.generate_x25519_keypair()
    key_a = engine.derive_shared_key_b64(alice.private_b64, bob.public_b64)
    key_b = engine.derive_shared_key_b64(bob.private_b64, alice.public_b64)
    assert engine.decrypt_text_from_b64(key_b, engine.encrypt_text_to_b64(key_a, "hi")) == "hi"


def test_ratchet_is_deterministic_and_distinct(engine):
    chain = engine.generate_shared_key_b64()
    message_key, next_chain = engine.ratchet_step_b64(chain)
    assert engine.ratchet_step_b64(chain) == (message_key, next_chain)
    assert message_key != next_chain
    assert next_chain != chain
    assert engine.ratchet_step_b64(next_chain)[0] != message_key
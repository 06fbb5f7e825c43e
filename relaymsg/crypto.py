"""End-to-end encryption primitives: key agreement, signatures, AEAD and ratchet."""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from nacl import bindings
from nacl.exceptions import CryptoError as _NaclCryptoError

NONCE_LEN = 24
KEY_LEN = 32

_RAW = serialization.Encoding.Raw
_RAW_PUBLIC = serialization.PublicFormat.Raw
_RAW_PRIVATE = serialization.PrivateFormat.Raw
_NO_ENCRYPTION = serialization.NoEncryption()


class CryptoError(Exception):
    """Raised when a key, envelope or signature cannot be used."""


@dataclass(frozen=True)
class X25519KeyPair:
    private_b64: str
    public_b64: str


@dataclass(frozen=True)
class Ed25519KeyPair:
    private_b64: str
    public_b64: str


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CryptoError(f"invalid {what} base64") from exc


def _decode_key(key_b64: str) -> bytes:
    key = _b64decode(key_b64, "key")
    if len(key) != KEY_LEN:
        raise CryptoError("key must be 32 bytes")
    return key


def _hkdf(ikm: bytes, info: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=KEY_LEN, salt=None, info=info).derive(ikm)


def prekey_signature_payload(prekey_public: bytes) -> bytes:
    """The bytes that are signed to vouch for a prekey."""
    return b"rsmsg-signed-prekey-v1" + bytes(prekey_public)


class CryptoEngine:
    """Stateless collection of the client's cryptographic operations."""

    def healthcheck(self) -> None:
        return None

    def generate_shared_key_b64(self) -> str:
        return _b64(os.urandom(KEY_LEN))

    def generate_x25519_keypair(self) -> X25519KeyPair:
        secret = X25519PrivateKey.generate()
        return X25519KeyPair(
            private_b64=_b64(secret.private_bytes(_RAW, _RAW_PRIVATE, _NO_ENCRYPTION)),
            public_b64=_b64(secret.public_key().public_bytes(_RAW, _RAW_PUBLIC)),
        )

    def generate_ed25519_keypair(self) -> Ed25519KeyPair:
        signing = Ed25519PrivateKey.generate()
        return Ed25519KeyPair(
            private_b64=_b64(signing.private_bytes(_RAW, _RAW_PRIVATE, _NO_ENCRYPTION)),
            public_b64=_b64(signing.public_key().public_bytes(_RAW, _RAW_PUBLIC)),
        )

    def sign_prekey_b64(self, signing_private_b64: str, prekey_public_b64: str) -> str:
        private = _decode_key(signing_private_b64)
        prekey = _b64decode(prekey_public_b64, "prekey")
        signing = Ed25519PrivateKey.from_private_bytes(private)
        return _b64(signing.sign(prekey_signature_payload(prekey)))

    def verify_prekey_signature_b64(
        self, signing_public_b64: str, prekey_public_b64: str, signature_b64: str
    ) -> None:
        """Raise CryptoError unless the signature over the prekey is valid."""
        public = _decode_key(signing_public_b64)
        prekey = _b64decode(prekey_public_b64, "prekey")
        signature = _b64decode(signature_b64, "signature")
        try:
            verifying = Ed25519PublicKey.from_public_bytes(public)
        except ValueError as exc:
            raise CryptoError("invalid signing public key") from exc
        if len(signature) != 64:
            raise CryptoError("invalid prekey signature")
        try:
            verifying.verify(signature, prekey_signature_payload(prekey))
        except (InvalidSignature, ValueError) as exc:
            raise CryptoError("invalid prekey signature") from exc

    def derive_shared_key_b64(self, own_private_b64: str, peer_public_b64: str) -> str:
        own_private = _decode_key(own_private_b64)
        peer_public = _decode_key(peer_public_b64)
        secret = X25519PrivateKey.from_private_bytes(own_private)
        peer = X25519PublicKey.from_public_bytes(peer_public)
        try:
            shared = secret.exchange(peer)
        except ValueError as exc:
            raise CryptoError("key agreement failed") from exc
        return _b64(_hkdf(shared, b"rsmsg-chat-key"))

    def encrypt_text_to_b64(self, key_b64: str, plaintext: str) -> str:
        return self.encrypt_bytes_to_b64(key_b64, plaintext.encode("utf-8"))

    def encrypt_bytes_to_b64(self, key_b64: str, plaintext: bytes) -> str:
        return _b64(self.encrypt_bytes(key_b64, plaintext))

    def encrypt_bytes(self, key_b64: str, plaintext: bytes) -> bytes:
        """Encrypt with XChaCha20-Poly1305; the envelope is nonce followed by ciphertext."""
        key = _decode_key(key_b64)
        nonce = os.urandom(NONCE_LEN)
        try:
            ciphertext = bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
                bytes(plaintext), None, nonce, key
            )
        except _NaclCryptoError as exc:
            raise CryptoError("encryption failed") from exc
        return nonce + ciphertext

    def decrypt_text_from_b64(self, key_b64: str, envelope_b64: str) -> str:
        plaintext = self.decrypt_bytes_from_b64(key_b64, envelope_b64)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CryptoError("invalid utf8 payload") from exc

    def decrypt_bytes_from_b64(self, key_b64: str, envelope_b64: str) -> bytes:
        envelope = _b64decode(envelope_b64, "envelope")
        return self.decrypt_bytes(key_b64, envelope)

    def decrypt_bytes(self, key_b64: str, envelope: bytes) -> bytes:
        key = _decode_key(key_b64)
        if len(envelope) < NONCE_LEN:
            raise CryptoError("invalid envelope length")
        nonce, ciphertext = bytes(envelope[:NONCE_LEN]), bytes(envelope[NONCE_LEN:])
        try:
            return bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
                ciphertext, None, nonce, key
            )
        except _NaclCryptoError as exc:
            raise CryptoError("decryption failed") from exc

    def ratchet_step_b64(self, chain_key_b64: str) -> tuple[str, str]:
        """Return (message key, next chain key) derived from a chain key."""
        chain_key = _decode_key(chain_key_b64)
        message_key = _hkdf(chain_key, b"rsmsg-message-key-v1")
        next_chain_key = _hkdf(chain_key, b"rsmsg-chain-key-v1")
        return _b64(message_key), _b64(next_chain_key)
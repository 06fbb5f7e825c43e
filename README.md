# relaymsg

Building blocks for a small end-to-end encrypted messenger: the client-side
cryptography, SQLite-backed storage for a relay server, a login rate limiter,
the framing and sample handling used for audio and video during calls, and
text helpers for chat bubbles.

## Installation

```
pip install relaymsg
```

For running the test suite:

```
pip install "relaymsg[test]"
pytest
```

## Modules

| Module | Purpose |
| --- | --- |
| `relaymsg.crypto` | `CryptoEngine`: X25519 key agreement, Ed25519 signed prekeys, XChaCha20-Poly1305 envelopes and a symmetric ratchet step. Failures raise `CryptoError`. |
| `relaymsg.rate_limit` | `LoginRateLimiter`: blocks a key for five minutes after eight failures within a minute. |
| `relaymsg.store` | `Store`: SQLite persistence for users, devices, auth tokens, one-time prekeys, messages, blobs, registration invites, user blocks and aggregate `ServerStats`. |
| `relaymsg.media_codec` | The `RSA1` audio, `RSV1` raw video and `RSH1` H.264 frame formats, sample conversions, resampling to Opus frames and preview scaling. |
| `relaymsg.media_audio` | `MicrophoneProcessor`, `PlaybackBuffer` and `ToneGenerator`. |
| `relaymsg.message_format` | Timestamps, file sizes, status labels, wrapping and width estimates for chat bubbles. |

## Encrypting a message

```python
from relaymsg.crypto import CryptoEngine

engine = CryptoEngine()
key_b64 = engine.generate_shared_key_b64()

envelope = engine.encrypt_text_to_b64(key_b64, "hello")
assert engine.decrypt_text_from_b64(key_b64, envelope) == "hello"
```

An envelope is the 24-byte nonce followed by the ciphertext. Two devices agree
on a chat key from their X25519 pairs:

```python
alice = engine.generate_x25519_keypair()
bob = engine.generate_x25519_keypair()

key_a = engine.derive_shared_key_b64(alice.private_b64, bob.public_b64)
key_b = engine.derive_shared_key_b64(bob.private_b64, alice.public_b64)
assert key_a == key_b
```

A signed prekey is checked against the device's Ed25519 identity:

```python
identity = engine.generate_ed25519_keypair()
prekey = engine.generate_x25519_keypair()

signature = engine.sign_prekey_b64(identity.private_b64, prekey.public_b64)
engine.verify_prekey_signature_b64(identity.public_b64, prekey.public_b64, signature)
```

`verify_prekey_signature_b64` raises `CryptoError` when the signature does not
match; so do decryption failures, malformed base64 and keys that are not 32
bytes long. `ratchet_step_b64` turns a chain key into a message key and the
next chain key:

```python
message_key, next_chain_key = engine.ratchet_step_b64(key_b64)
```

## Limiting login attempts

```python
from relaymsg.rate_limit import LoginRateLimiter

limiter = LoginRateLimiter()
if limiter.allow("alice"):
    ...  # check the credentials, then:
    limiter.record_failure("alice")   # or limiter.record_success("alice")
```

The limiter takes an optional `clock` callable returning seconds, which makes
it easy to drive in tests.

## Storing devices and messages

```python
from relaymsg.store import Store

with Store() as store:          # in memory; pass a file path to persist
    sender = store.upsert_device("alice", "laptop", b"\x01" * 32, b"\x02" * 32,
                                 b"\x03" * 32, b"\x04" * 64)
    recipient = store.upsert_device("bob", "phone", b"\x05" * 32, b"\x06" * 32,
                                    b"\x07" * 32, b"\x08" * 64)
    store.insert_message("m1", sender, recipient, b"envelope")
    pending = store.fetch_pending(recipient, 100)
    store.mark_delivered(pending[0][0])
    store.ack_messages(recipient, ["m1"])
    print(store.fetch_statuses(sender, ["m1"]))   # [('m1', True, True)]
```

Message ids are unique: inserting the same id twice stores it once and the
second call returns 0. `Store.transaction()` groups calls atomically;
`search_users` returns up to twenty user ids that start with the query.

## Call media

```python
from relaymsg.media_codec import encode_audio_frame, decode_audio_frame_with_rate

frame = encode_audio_frame(48_000, [0.0, 0.5])
assert decode_audio_frame_with_rate(frame) == (48_000, [0.0, 0.5])
```

`MicrophoneProcessor.process` downmixes device buffers to mono, applies the
optional noise gate and automatic gain control from `AudioProcessingConfig`,
and returns completed 20 ms `RSA1` frames. `PlaybackBuffer` holds received
samples, starts playing once a tenth of a second is buffered and drops the
oldest audio to keep latency bounded. `ToneGenerator` produces the ringing
tone that alternates between 740 Hz and 920 Hz every quarter second.

## Chat bubble text

```python
from relaymsg.message_format import (
    MessageStatus, format_file_size, hard_wrap_long_words, message_meta,
)

format_file_size(1536)                 # '1.5 KB'
hard_wrap_long_words("abcdef", 3)      # 'abc\ndef'
message_meta(True, 3_600_000, MessageStatus.SENT, "bob", "You")   # 'You · 01:00 · sent'
```

## What this package does not do

It has no HTTP or WebSocket server, no client for one, and no command-line
tools: the storage, rate limiting and cryptography are library calls for an
application to wire into its own transport. It does not capture from or play
to audio or video devices, and does not encode or decode Opus or H.264; the
media modules only handle frame formats and sample buffers.
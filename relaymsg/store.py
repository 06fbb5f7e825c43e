"""Persistent server storage for users, devices, tokens, prekeys, messages and blobs."""

from __future__ import annotations

import math
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Sequence, Union

TOKEN_LIFETIME_SECONDS = 30 * 24 * 3600.0
INVITE_LIFETIME_SECONDS = 2 * 24 * 3600.0
RECENT_WINDOW_SECONDS = 10 * 60.0
SEARCH_LIMIT = 20

UuidLike = Union[uuid.UUID, str]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS devices (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    device_id TEXT NOT NULL,
    identity_key BLOB NOT NULL,
    signing_identity_key BLOB NOT NULL,
    signed_prekey BLOB NOT NULL,
    signed_prekey_signature BLOB NOT NULL,
    UNIQUE (user_id, device_id)
);
CREATE TABLE IF NOT EXISTS device_auth_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_ref TEXT NOT NULL,
    token_hash TEXT NOT NULL,
    expires_at REAL NOT NULL,
    revoked_at REAL
);
CREATE TABLE IF NOT EXISTS blobs (
    id TEXT PRIMARY KEY,
    owner_device TEXT NOT NULL,
    data BLOB NOT NULL,
    created_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    message_id TEXT NOT NULL UNIQUE,
    from_device TEXT NOT NULL,
    to_device TEXT NOT NULL,
    envelope_bytes BLOB NOT NULL,
    created_at REAL NOT NULL,
    delivered_at REAL,
    acked_at REAL
);
CREATE TABLE IF NOT EXISTS one_time_prekeys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_ref TEXT NOT NULL,
    key_id INTEGER NOT NULL,
    pubkey BLOB NOT NULL,
    consumed_at REAL,
    UNIQUE (device_ref, key_id)
);
CREATE TABLE IF NOT EXISTS registration_invites (
    id TEXT PRIMARY KEY,
    secret_hash TEXT NOT NULL,
    expires_at REAL NOT NULL,
    used_at REAL,
    used_by_user_id INTEGER
);
CREATE TABLE IF NOT EXISTS user_blocks (
    blocker_user_id TEXT NOT NULL,
    blocked_user_id TEXT NOT NULL,
    created_at REAL NOT NULL,
    PRIMARY KEY (blocker_user_id, blocked_user_id)
);
"""


@dataclass(frozen=True)
class RegistrationInvite:
    secret_hash: str
    used_at_exists: bool
    expired: bool


@dataclass(frozen=True)
class ServerStats:
    users_total: int
    devices_total: int
    active_tokens_total: int
    messages_sent_total: int
    messages_delivered_total: int
    messages_read_total: int
    messages_pending_total: int
    messages_sent_last_10m: int
    blobs_total: int
    blobs_bytes_total: int
    blobs_created_last_10m: int
    blobs_bytes_last_10m: int


def _uuid_text(value: UuidLike) -> str:
    return str(value if isinstance(value, uuid.UUID) else uuid.UUID(str(value)))


def _epoch_ms(seconds: float) -> int:
    return int(math.floor(seconds + 0.5)) * 1000


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class Store:
    """SQLite-backed storage; every method is safe to call from several threads."""

    def __init__(self, path: str = ":memory:", clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time
        self._conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        self._lock = threading.RLock()
        self._depth = 0
        with self._lock:
            self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Run the enclosed calls atomically; nested uses join the outer transaction."""
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return
            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._depth = 0

    def _execute(self, sql: str, params: Sequence[object] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, tuple(params))

    def _one(self, sql: str, params: Sequence[object] = ()) -> Optional[tuple]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchone()

    def _all(self, sql: str, params: Sequence[object] = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    # auth tokens

    def is_token_active(self, device_uuid: UuidLike, token_hash: str) -> bool:
        row = self._one(
            "SELECT 1 FROM device_auth_tokens WHERE device_ref = ? AND token_hash = ? "
            "AND revoked_at IS NULL AND expires_at > ? LIMIT 1",
            (_uuid_text(device_uuid), token_hash, self._clock()),
        )
        return row is not None

    def create_token(self, device_uuid: UuidLike, token_hash: str) -> None:
        self._execute(
            "INSERT INTO device_auth_tokens (device_ref, token_hash, expires_at) VALUES (?, ?, ?)",
            (_uuid_text(device_uuid), token_hash, self._clock() + TOKEN_LIFETIME_SECONDS),
        )

    def revoke_token(self, device_uuid: UuidLike, token_hash: str) -> int:
        cursor = self._execute(
            "UPDATE device_auth_tokens SET revoked_at = ? "
            "WHERE device_ref = ? AND token_hash = ? AND revoked_at IS NULL",
            (self._clock(), _uuid_text(device_uuid), token_hash),
        )
        return cursor.rowcount

    # blobs

    def insert_blob(self, owner_device: UuidLike, data: bytes) -> uuid.UUID:
        blob_id = uuid.uuid4()
        self._execute(
            "INSERT INTO blobs (id, owner_device, data, created_at) VALUES (?, ?, ?, ?)",
            (str(blob_id), _uuid_text(owner_device), bytes(data), self._clock()),
        )
        return blob_id

    def create_blob(self, owner_device: UuidLike) -> uuid.UUID:
        return self.insert_blob(owner_device, b"")

    def append_blob_chunk(
        self, owner_device: UuidLike, blob_id: UuidLike, chunk: bytes
    ) -> Optional[int]:
        """Append to an owned blob and return its new size, or None if not found."""
        with self.transaction():
            key = (_uuid_text(blob_id), _uuid_text(owner_device))
            row = self._one("SELECT data FROM blobs WHERE id = ? AND owner_device = ?", key)
            if row is None:
                return None
            data = bytes(row[0]) + bytes(chunk)
            self._execute(
                "UPDATE blobs SET data = ? WHERE id = ? AND owner_device = ?", (data, *key)
            )
            return len(data)

    def fetch_blob(self, blob_id: UuidLike) -> Optional[bytes]:
        row = self._one("SELECT data FROM blobs WHERE id = ?", (_uuid_text(blob_id),))
        return None if row is None else bytes(row[0])

    # devices

    def upsert_device(
        self,
        user_id: str,
        device_id: str,
        identity_key: bytes,
        signing_identity_key: bytes,
        signed_prekey: bytes,
        signed_prekey_signature: bytes,
    ) -> uuid.UUID:
        with self.transaction():
            self._execute(
                "INSERT INTO devices (id, user_id, device_id, identity_key, signing_identity_key, "
                "signed_prekey, signed_prekey_signature) VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (user_id, device_id) DO UPDATE SET "
                "identity_key = excluded.identity_key, "
                "signing_identity_key = excluded.signing_identity_key, "
                "signed_prekey = excluded.signed_prekey, "
                "signed_prekey_signature = excluded.signed_prekey_signature",
                (
                    str(uuid.uuid4()),
                    user_id,
                    device_id,
                    bytes(identity_key),
                    bytes(signing_identity_key),
                    bytes(signed_prekey),
                    bytes(signed_prekey_signature),
                ),
            )
            found = self.find_device_uuid(user_id, device_id)
        assert found is not None
        return found

    def find_device_uuid(self, user_id: str, device_id: str) -> Optional[uuid.UUID]:
        row = self._one(
            "SELECT id FROM devices WHERE user_id = ? AND device_id = ?", (user_id, device_id)
        )
        return None if row is None else uuid.UUID(row[0])

    def find_device_bundle(
        self, user_id: str, device_id: str
    ) -> Optional[tuple[uuid.UUID, bytes, bytes, bytes, bytes]]:
        row = self._one(
            "SELECT id, identity_key, signing_identity_key, signed_prekey, "
            "signed_prekey_signature FROM devices WHERE user_id = ? AND device_id = ?",
            (user_id, device_id),
        )
        if row is None:
            return None
        return uuid.UUID(row[0]), bytes(row[1]), bytes(row[2]), bytes(row[3]), bytes(row[4])

    def device_exists(self, device_uuid: UuidLike) -> bool:
        row = self._one("SELECT 1 FROM devices WHERE id = ? LIMIT 1", (_uuid_text(device_uuid),))
        return row is not None

    def find_user_id_by_device_uuid(self, device_uuid: UuidLike) -> Optional[str]:
        row = self._one("SELECT user_id FROM devices WHERE id = ?", (_uuid_text(device_uuid),))
        return None if row is None else row[0]

    # messages

    def insert_message(
        self, message_id: str, from_device: UuidLike, to_device: UuidLike, envelope: bytes
    ) -> int:
        cursor = self._execute(
            "INSERT INTO messages (id, message_id, from_device, to_device, envelope_bytes, "
            "created_at) VALUES (?, ?, ?, ?, ?, ?) ON CONFLICT (message_id) DO NOTHING",
            (
                str(uuid.uuid4()),
                message_id,
                _uuid_text(from_device),
                _uuid_text(to_device),
                bytes(envelope),
                self._clock(),
            ),
        )
        return cursor.rowcount

    def fetch_pending(
        self, to_device: UuidLike, limit: int
    ) -> list[tuple[uuid.UUID, str, uuid.UUID, bytes, int]]:
        """Unacknowledged messages for a device, oldest first.

        Each row is (row id, message id, sender device, envelope, created at in ms).
        """
        rows = self._all(
            "SELECT id, message_id, from_device, envelope_bytes, created_at FROM messages "
            "WHERE to_device = ? AND acked_at IS NULL ORDER BY created_at, seq LIMIT ?",
            (_uuid_text(to_device), int(limit)),
        )
        return [
            (uuid.UUID(row_id), message_id, uuid.UUID(sender), bytes(envelope), _epoch_ms(created))
            for row_id, message_id, sender, envelope, created in rows
        ]

    def mark_delivered(self, row_id: UuidLike) -> None:
        self._execute(
            "UPDATE messages SET delivered_at = COALESCE(delivered_at, ?) WHERE id = ?",
            (self._clock(), _uuid_text(row_id)),
        )

    def ack_messages(self, to_device: UuidLike, message_ids: Sequence[str]) -> int:
        ids = list(message_ids)
        if not ids:
            return 0
        cursor = self._execute(
            f"UPDATE messages SET acked_at = ? WHERE to_device = ? "
            f"AND message_id IN ({_placeholders(len(ids))}) AND acked_at IS NULL",
            (self._clock(), _uuid_text(to_device), *ids),
        )
        return cursor.rowcount

    def fetch_statuses(
        self, from_device: UuidLike, message_ids: Sequence[str]
    ) -> list[tuple[str, bool, bool]]:
        """(message id, delivered, read) for the sender's messages among the given ids."""
        ids = list(message_ids)
        if not ids:
            return []
        rows = self._all(
            f"SELECT message_id, delivered_at IS NOT NULL, acked_at IS NOT NULL FROM messages "
            f"WHERE from_device = ? AND message_id IN ({_placeholders(len(ids))}) ORDER BY seq",
            (_uuid_text(from_device), *ids),
        )
        return [(message_id, bool(delivered), bool(read)) for message_id, delivered, read in rows]

    # prekeys

    def insert_one_time_prekey(self, device_uuid: UuidLike, key_id: int, pubkey: bytes) -> int:
        cursor = self._execute(
            "INSERT INTO one_time_prekeys (device_ref, key_id, pubkey) VALUES (?, ?, ?) "
            "ON CONFLICT (device_ref, key_id) DO NOTHING",
            (_uuid_text(device_uuid), int(key_id), bytes(pubkey)),
        )
        return cursor.rowcount

    def consume_one_time_prekey(self, device_uuid: UuidLike) -> Optional[tuple[int, bytes]]:
        """Take the oldest unused prekey of a device, marking it consumed."""
        with self.transaction():
            row = self._one(
                "SELECT id, key_id, pubkey FROM one_time_prekeys "
                "WHERE device_ref = ? AND consumed_at IS NULL ORDER BY id LIMIT 1",
                (_uuid_text(device_uuid),),
            )
            if row is None:
                return None
            self._execute(
                "UPDATE one_time_prekeys SET consumed_at = ? WHERE id = ?", (self._clock(), row[0])
            )
            return int(row[1]), bytes(row[2])

    # registration invites

    def insert_invite(self, invite_id: UuidLike, secret_hash: str) -> None:
        self._execute(
            "INSERT INTO registration_invites (id, secret_hash, expires_at) VALUES (?, ?, ?)",
            (_uuid_text(invite_id), secret_hash, self._clock() + INVITE_LIFETIME_SECONDS),
        )

    def find_invite(self, invite_id: UuidLike) -> Optional[RegistrationInvite]:
        row = self._one(
            "SELECT secret_hash, used_at IS NOT NULL, expires_at <= ? "
            "FROM registration_invites WHERE id = ?",
            (self._clock(), _uuid_text(invite_id)),
        )
        if row is None:
            return None
        return RegistrationInvite(
            secret_hash=row[0], used_at_exists=bool(row[1]), expired=bool(row[2])
        )

    def mark_invite_used(self, invite_id: UuidLike, user_db_id: int) -> None:
        self._execute(
            "UPDATE registration_invites SET used_at = ?, used_by_user_id = ? "
            "WHERE id = ? AND used_at IS NULL",
            (self._clock(), int(user_db_id), _uuid_text(invite_id)),
        )

    # statistics

    def fetch_server_stats(self) -> ServerStats:
        since = self._clock() - RECENT_WINDOW_SECONDS
        row = self._one(
            "SELECT "
            "(SELECT COUNT(*) FROM users), "
            "(SELECT COUNT(*) FROM devices), "
            "(SELECT COUNT(*) FROM device_auth_tokens "
            " WHERE revoked_at IS NULL AND expires_at > ?), "
            "(SELECT COUNT(*) FROM messages), "
            "(SELECT COUNT(*) FROM messages WHERE delivered_at IS NOT NULL), "
            "(SELECT COUNT(*) FROM messages WHERE acked_at IS NOT NULL), "
            "(SELECT COUNT(*) FROM messages WHERE delivered_at IS NULL), "
            "(SELECT COUNT(*) FROM messages WHERE created_at >= ?), "
            "(SELECT COUNT(*) FROM blobs), "
            "(SELECT COALESCE(SUM(length(data)), 0) FROM blobs), "
            "(SELECT COUNT(*) FROM blobs WHERE created_at >= ?), "
            "(SELECT COALESCE(SUM(length(data)), 0) FROM blobs WHERE created_at >= ?)",
            (self._clock(), since, since, since),
        )
        assert row is not None
        return ServerStats(*(int(value) for value in row))

    # user blocks

    def block_user(self, blocker_user_id: str, blocked_user_id: str) -> bool:
        cursor = self._execute(
            "INSERT INTO user_blocks (blocker_user_id, blocked_user_id, created_at) "
            "VALUES (?, ?, ?) ON CONFLICT (blocker_user_id, blocked_user_id) DO NOTHING",
            (blocker_user_id, blocked_user_id, self._clock()),
        )
        return cursor.rowcount == 1

    def unblock_user(self, blocker_user_id: str, blocked_user_id: str) -> bool:
        cursor = self._execute(
            "DELETE FROM user_blocks WHERE blocker_user_id = ? AND blocked_user_id = ?",
            (blocker_user_id, blocked_user_id),
        )
        return cursor.rowcount == 1

    def list_blocked_users(self, blocker_user_id: str) -> list[str]:
        rows = self._all(
            "SELECT blocked_user_id FROM user_blocks WHERE blocker_user_id = ? "
            "ORDER BY blocked_user_id",
            (blocker_user_id,),
        )
        return [row[0] for row in rows]

    def block_direction(self, sender_user_id: str, recipient_user_id: str) -> Optional[str]:
        """Who blocks whom between two users, preferring the recipient as the blocker."""
        row = self._one(
            "SELECT blocker_user_id FROM user_blocks "
            "WHERE (blocker_user_id = ?1 AND blocked_user_id = ?2) "
            "OR (blocker_user_id = ?2 AND blocked_user_id = ?1) "
            "ORDER BY CASE WHEN blocker_user_id = ?2 THEN 0 ELSE 1 END LIMIT 1",
            (sender_user_id, recipient_user_id),
        )
        return None if row is None else row[0]

    # users

    def create_user(self, user_id: str, password_hash: str) -> bool:
        return self.create_user_returning_id(user_id, password_hash) is not None

    def create_user_returning_id(self, user_id: str, password_hash: str) -> Optional[int]:
        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO users (user_id, password_hash, created_at) VALUES (?, ?, ?) "
                "ON CONFLICT (user_id) DO NOTHING",
                (user_id, password_hash, self._clock()),
            )
            return cursor.lastrowid if cursor.rowcount == 1 else None

    def get_password_hash(self, user_id: str) -> Optional[str]:
        row = self._one("SELECT password_hash FROM users WHERE user_id = ?", (user_id,))
        return None if row is None else row[0]

    def user_exists(self, user_id: str) -> bool:
        return self._one("SELECT 1 FROM users WHERE user_id = ? LIMIT 1", (user_id,)) is not None

    def search_users(self, query: str) -> list[str]:
        """Up to twenty user ids starting with the query, case-insensitively, in order."""
        rows = self._all(
            "SELECT user_id FROM users WHERE user_id LIKE ? ESCAPE '\\' "
            "ORDER BY user_id LIMIT ?",
            (f"{query}%", SEARCH_LIMIT),
        )
        return [row[0] for row in rows]
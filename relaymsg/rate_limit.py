"""Per-key limiting of failed login attempts."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

WINDOW_SECONDS = 60.0
BLOCK_SECONDS = 300.0
MAX_ATTEMPTS = 8


@dataclass
class _Entry:
    attempts: int
    window_started: float
    blocked_until: Optional[float] = None


class LoginRateLimiter:
    """Blocks a key for five minutes after eight failures within a minute."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _entry(self, key: str, now: float) -> _Entry:
        return self._entries.setdefault(key, _Entry(attempts=0, window_started=now))

    def allow(self, key: str) -> bool:
        with self._lock:
            now = self._clock()
            entry = self._entry(key, now)
            if entry.blocked_until is not None:
                if now < entry.blocked_until:
                    return False
                entry.blocked_until = None
                entry.attempts = 0
                entry.window_started = now
            if now - entry.window_started > WINDOW_SECONDS:
                entry.attempts = 0
                entry.window_started = now
            return True

    def record_failure(self, key: str) -> None:
        with self._lock:
            now = self._clock()
            entry = self._entry(key, now)
            if now - entry.window_started > WINDOW_SECONDS:
                entry.attempts = 0
                entry.window_started = now
            entry.attempts += 1
            if entry.attempts >= MAX_ATTEMPTS:
                entry.blocked_until = now + BLOCK_SECONDS

    def record_success(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
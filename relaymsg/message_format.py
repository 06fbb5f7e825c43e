"""Text shown in chat bubbles: timestamps, status labels, sizes and wrapping."""

from __future__ import annotations

import enum

BUBBLE_CHAR_WIDTH = 7.5
BUBBLE_PADDING = 8.0
BUBBLE_MIN_WIDTH = 48.0
SECONDS_PER_DAY = 86_400


class MessageStatus(enum.Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


_LABELS = {
    MessageStatus.SENDING: "sending",
    MessageStatus.SENT: "sent",
    MessageStatus.DELIVERED: "delivered",
    MessageStatus.READ: "read",
    MessageStatus.FAILED: "failed",
}


def status_label(status: MessageStatus) -> str:
    return _LABELS[status]


def format_file_size(size: int) -> str:
    """Human-readable size in B, KB or MB with one decimal for the larger units."""
    if size < 0:
        raise ValueError("file size cannot be negative")
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024.0:.1f} KB"
    return f"{size / (1024.0 * 1024.0):.1f} MB"


def _lines(text: str) -> list[str]:
    if not text:
        return []
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return [part[:-1] if part.endswith("\r") else part for part in parts]


def estimate_bubble_width(text: str, meta: str, max_width: float) -> float:
    """Width for a bubble fitting its longest line, between 48 and ``max_width``."""
    if not max_width >= BUBBLE_MIN_WIDTH:
        raise ValueError("max_width must be at least the minimum bubble width")
    longest = max((len(line) for line in _lines(text) + _lines(meta)), default=1)
    width = longest * BUBBLE_CHAR_WIDTH + BUBBLE_PADDING
    return max(BUBBLE_MIN_WIDTH, min(max_width, width))


def hard_wrap_long_words(text: str, max_run: int) -> str:
    """Insert line breaks so no run of non-space characters exceeds ``max_run``."""
    out: list[str] = []
    run = 0
    for ch in text:
        if ch.isspace():
            run = 0
            out.append(ch)
            continue
        if run >= max_run:
            out.append("\n")
            run = 0
        out.append(ch)
        run += 1
    return "".join(out)


def format_message_time(ts_ms: int) -> str:
    """The UTC time of day of a millisecond timestamp as HH:MM."""
    whole_seconds = abs(ts_ms) // 1000
    if ts_ms < 0:
        whole_seconds = -whole_seconds
    seconds = whole_seconds % SECONDS_PER_DAY
    return f"{seconds // 3600:02}:{(seconds % 3600) // 60:02}"


def message_meta(
    outgoing: bool, ts_ms: int, status: MessageStatus, peer: str, you_label: str
) -> str:
    """The small header line of a bubble: author, time and delivery status."""
    author = you_label if outgoing else f"@{peer}"
    return f"{author} · {format_message_time(ts_ms)} · {status_label(status)}"
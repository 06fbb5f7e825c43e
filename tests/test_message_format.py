import pytest

from relaymsg.message_format import (
    MessageStatus,
    estimate_bubble_width,
    format_file_size,
    format_message_time,
    hard_wrap_long_words,
    message_meta,
    status_label,
)


@pytest.mark.parametrize(
    "status, label",
    [
        (MessageStatus.SENDING, "sending"),
        (MessageStatus.SENT, "sent"),
        (MessageStatus.DELIVERED, "delivered"),
        (MessageStatus.READ, "read"),
        (MessageStatus.FAILED, "failed"),
    ],
)
def test_status_labels(status, label):
    assert status_label(status) == label


def test_file_size_units():
    assert format_file_size(1023).endswith(" B")
    assert format_file_size(1023).startswith("1023")
    assert format_file_size(1024).endswith(" KB")
    assert format_file_size(1024 * 1024 - 1).endswith(" KB")
    assert format_file_size(1024 * 1024).endswith(" MB")


def test_file_size_values():
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(3 * 1024 * 1024) == "3.0 MB"


def test_file_size_negative_rejected():
    with pytest.raises(ValueError):
        format_file_size(-1)


def test_message_time_value():
    assert format_message_time((13 * 3600 + 7 * 60) * 1000) == "13:07"


def test_message_time_wraps_daily():
    ts = 1_700_000_123_456
    assert format_message_time(ts + 86_400 * 1000) == format_message_time(ts)


def test_message_time_truncates_toward_zero():
    assert format_message_time(-999) == format_message_time(500)
    assert format_message_time(-1000) == format_message_time(86_399 * 1000)


def test_bubble_width_minimum():
    assert estimate_bubble_width("", "", 500.0) == 48.0


def test_bubble_width_capped_by_max():
    assert estimate_bubble_width("x" * 200, "", 300.0) == 300.0


def test_bubble_width_grows_with_longest_line():
    short = estimate_bubble_width("abcdefg", "", 1000.0)
    longer = estimate_bubble_width("abcdefghijklmn", "", 1000.0)
    assert short < longer
    assert estimate_bubble_width("a\n" + "b" * 20, "", 1000.0) == estimate_bubble_width(
        "b" * 20, "", 1000.0
    )
    assert estimate_bubble_width("", "m" * 20, 1000.0) == estimate_bubble_width(
        "m" * 20, "", 1000.0
    )


def test_bubble_width_rejects_small_max():
    with pytest.raises(ValueError):
        estimate_bubble_width("text", "", 10.0)


@pytest.mark.parametrize("max_run", [1, 4, 48])
def test_hard_wrap_invariants(max_run):
    text = "short " + "z" * 130 + " tail\tend " + "y" * (max_run + 1)
    wrapped = hard_wrap_long_words(text, max_run)
    assert wrapped.replace("\n", "") == text
    for piece in wrapped.replace("\t", " ").replace("\n", " ").split(" "):
        assert len(piece) <= max_run


def test_hard_wrap_leaves_short_words_alone():
    text = "hello there friend"
    assert hard_wrap_long_words(text, 48) == text


def test_meta_for_outgoing_and_incoming():
    ts = 1_700_000_000_000
    assert message_meta(True, ts, MessageStatus.SENT, "bob", "You") == (
        f"You · {format_message_time(ts)} · sent"
    )
    assert message_meta(False, ts, MessageStatus.READ, "bob", "You") == (
        f"@bob · {format_message_time(ts)} · read"
    )
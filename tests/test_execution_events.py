import json

import pytest

pytestmark = pytest.mark.basic


def _line(kind: str, message) -> bytes:
    return (json.dumps({"type": kind, "message": message}) + "\n").encode("utf-8")


def test_classify_line() -> None:
    from flowengine.execution.events import EventKind, classify_line

    warn = classify_line('{"type": "warn", "message": "careful"}')
    assert warn.kind == EventKind.WARN
    assert warn.text == "[FLOW_WARN] careful"
    assert warn.structured is True

    err = classify_line('{"type": "error", "message": {"code": 3}}')
    assert err.kind == EventKind.ERROR
    assert err.message == '{"code": 3}'
    assert err.text == '[FLOW_ERROR] {"code": 3}'

    plain = classify_line("hello world")
    assert plain.kind == EventKind.LOG
    assert plain.structured is False

    unknown = classify_line('{"type": "debug", "message": "x"}')
    assert unknown.kind == EventKind.LOG
    assert unknown.message == '{"type": "debug", "message": "x"}'


def test_log_stream_reassembles_split_lines() -> None:
    from flowengine.execution.events import LogStream

    stream = LogStream()
    raw = _line("log", "first") + _line("log", "second")

    assert stream.feed(raw[:10]) == []
    events = stream.feed(raw[10:])
    assert [e.message for e in events] == ["first", "second"]


def test_log_stream_handles_multibyte_characters_split_across_chunks() -> None:
    from flowengine.execution.events import LogStream

    stream = LogStream()
    raw = "café ☕\n".encode("utf-8")
    cut = raw.index(b"\xe2") + 1

    assert stream.feed(raw[:cut]) == []
    assert [e.message for e in stream.feed(raw[cut:])] == ["café ☕"]


def test_log_stream_deduplicates_plain_messages_but_not_markers() -> None:
    from flowengine.execution.events import LogStream

    stream = LogStream()
    raw = (
        _line("log", "same")
        + _line("log", "same")
        + _line("error", "same")
        + _line("log", "[FLOW] Processing item 1/2")
        + _line("log", "[FLOW] Processing item 1/2")
        + _line("log", '[FLOW_UI_LOG] {"type": "import"}')
        + _line("log", '[FLOW_UI_LOG] {"type": "import"}')
    )

    events = stream.feed(raw)

    assert [(e.kind.value, e.message) for e in events] == [
        ("log", "same"),
        ("error", "same"),
        ("log", "[FLOW] Processing item 1/2"),
        ("log", "[FLOW] Processing item 1/2"),
        ("log", '[FLOW_UI_LOG] {"type": "import"}'),
        ("log", '[FLOW_UI_LOG] {"type": "import"}'),
    ]
    assert events[-1].is_ui_event
    assert events[-1].ui_payload() == {"type": "import"}


def test_dedup_state_is_per_stream() -> None:
    from flowengine.execution.events import LogStream

    a = LogStream()
    b = LogStream()

    assert len(a.feed(_line("log", "hello"))) == 1
    assert len(b.feed(_line("log", "hello"))) == 1
    assert a.feed(_line("log", "hello")) == []


def test_stderr_is_forwarded_immediately_as_error() -> None:
    from flowengine.execution.events import EventKind, EventSource, LogStream

    stream = LogStream()

    first = stream.feed_stderr(b"Traceback (most recent call last):\n")
    again = stream.feed_stderr(b"Traceback (most recent call last):\n")

    assert len(first) == 1 and len(again) == 1
    assert first[0].kind == EventKind.ERROR
    assert first[0].source == EventSource.STDERR
    assert stream.feed_stderr(b"   \n") == []


def test_flush_emits_trailing_partial_line() -> None:
    from flowengine.execution.events import LogStream

    stream = LogStream()
    assert stream.feed(b'{"type": "log", "message": "no newline"}') == []

    events = stream.flush()
    assert [e.message for e in events] == ["no newline"]
    assert stream.flush() == []

"""Child output → classified, de-duplicated log events.

The child writes NDJSON lines `{"type": "log"|"error"|"warn", "message": ...}`
on stdout. Anything else is forwarded as plain text. Standard error is never
buffered: each chunk becomes one error event as soon as it arrives.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

# Structured markers: repeated identical events are meaningful (item progress).
NO_DEDUP_PREFIXES: Tuple[str, ...] = ("[FLOW]", "[FLOW_UI_LOG]")
UI_LOG_PREFIX = "[FLOW_UI_LOG]"


class EventKind(str, Enum):
    LOG = "log"
    WARN = "warn"
    ERROR = "error"


class EventSource(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    SUPERVISOR = "supervisor"


@dataclass(frozen=True)
class LogEvent:
    """One forwarded log line."""

    kind: EventKind
    message: str
    source: EventSource = EventSource.STDOUT
    # False for non-JSON stdout lines.
    structured: bool = True

    @property
    def text(self) -> str:
        """Display form (`[FLOW_ERROR] msg`, `[FLOW_WARN] msg`, `msg`)."""
        if self.kind == EventKind.ERROR:
            return f"[FLOW_ERROR] {self.message}"
        if self.kind == EventKind.WARN:
            return f"[FLOW_WARN] {self.message}"
        return self.message

    @property
    def is_ui_event(self) -> bool:
        return self.message.startswith(UI_LOG_PREFIX)

    def ui_payload(self) -> Optional[Dict[str, Any]]:
        """Parsed `[FLOW_UI_LOG]` payload, or None."""
        if not self.is_ui_event:
            return None
        try:
            data = json.loads(self.message[len(UI_LOG_PREFIX) :].strip())
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def __str__(self) -> str:
        return self.text


def classify_line(line: str) -> LogEvent:
    """Classify one complete stdout line."""
    try:
        data = json.loads(line)
    except ValueError:
        data = None
    if isinstance(data, dict):
        try:
            kind = EventKind(str(data.get("type") or ""))
        except ValueError:
            kind = None
        if kind is not None:
            message = data.get("message")
            if not isinstance(message, str):
                message = json.dumps(message, ensure_ascii=False)
            return LogEvent(kind=kind, message=message)
    return LogEvent(kind=EventKind.LOG, message=line, structured=False)


def dedup_key(event: LogEvent) -> Optional[Tuple[str, str]]:
    """Key used for de-duplication; None when the event is always forwarded."""
    msg = event.message.strip()
    if msg.startswith(NO_DEDUP_PREFIXES):
        return None
    return (event.kind.value, msg)


class LogStream:
    """Per-run stream decoder.

    Holds the partial-line buffer and the set of already forwarded keys for
    exactly one run; never share an instance between runs.
    """

    def __init__(self) -> None:
        self._stdout_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._stderr_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._seen: Set[Tuple[str, str]] = set()

    def feed(self, chunk: bytes) -> List[LogEvent]:
        """Decode a stdout chunk and return events for every completed line."""
        self._buffer += self._stdout_decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return self._accept_lines(lines)

    def feed_stderr(self, chunk: bytes) -> List[LogEvent]:
        text = self._stderr_decoder.decode(chunk)
        if not text.strip():
            return []
        return [LogEvent(kind=EventKind.ERROR, message=text.rstrip(), source=EventSource.STDERR, structured=False)]

    def flush(self) -> List[LogEvent]:
        """Emit whatever partial line remains once the process has closed."""
        self._buffer += self._stdout_decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        tail = self._stderr_decoder.decode(b"", final=True)
        events = self._accept_lines([rest])
        if tail.strip():
            events.append(LogEvent(kind=EventKind.ERROR, message=tail.rstrip(), source=EventSource.STDERR, structured=False))
        return events

    def _accept_lines(self, lines: List[str]) -> List[LogEvent]:
        out: list[LogEvent] = []
        for raw in lines:
            line = raw.rstrip("\r")
            if not line.strip():
                continue
            event = classify_line(line)
            key = dedup_key(event)
            if key is not None:
                if key in self._seen:
                    continue
                self._seen.add(key)
            out.append(event)
        return out

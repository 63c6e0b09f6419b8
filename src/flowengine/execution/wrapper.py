"""Head and tail code placed around a compiled program before it runs.

The head turns `print` output into NDJSON log lines and starts a stdin
watcher that exits the process on `{"type":"terminate"}`. The tail awaits the
program's entry point and reports the outcome. Wrapper names carry a `_flow_`
prefix so they cannot collide with program code.
"""

from __future__ import annotations

from ..compiler.codegen import FLOW_ENTRYPOINT

WRAPPER_HEAD = r'''# --- flowengine run wrapper (head) ---
import asyncio as _flow_asyncio
import json as _flow_json
import os as _flow_os
import sys as _flow_sys
import threading as _flow_threading
import traceback as _flow_traceback


def _flow_emit(kind, message):
    stream = _flow_sys.__stdout__
    stream.write(_flow_json.dumps({"type": kind, "message": message}, ensure_ascii=False) + "\n")
    stream.flush()


class _FlowLineEmitter:
    """File-like stdout replacement: one log event per printed line."""

    def __init__(self, kind):
        self._kind = kind
        self._buffer = ""

    def write(self, text):
        self._buffer += str(text)
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            if line.strip():
                _flow_emit(self._kind, line)
        return len(text)

    def flush(self):
        if self._buffer.strip():
            _flow_emit(self._kind, self._buffer)
        self._buffer = ""

    def isatty(self):
        return False


_flow_sys.stdout = _FlowLineEmitter("log")


def _flow_watch_stdin():
    for raw in _flow_sys.stdin:
        try:
            request = _flow_json.loads(raw)
        except ValueError:
            continue
        if isinstance(request, dict) and request.get("type") == "terminate":
            _flow_emit("log", "Terminated by user")
            _flow_os._exit(1)


_flow_threading.Thread(target=_flow_watch_stdin, name="flow-stdin-watch", daemon=True).start()
_flow_emit("log", "Starting flow execution...")
# --- end of wrapper head ---
'''

WRAPPER_TAIL_TEMPLATE = r'''
# --- flowengine run wrapper (tail) ---
try:
    _flow_asyncio.run(__ENTRYPOINT__())
except Exception as _flow_exc:
    _flow_sys.stdout.flush()
    _flow_emit("error", "Flow execution failed: " + (str(_flow_exc) or type(_flow_exc).__name__))
    _flow_emit("error", _flow_traceback.format_exc())
    _flow_sys.exit(1)
_flow_sys.stdout.flush()
_flow_emit("log", "Flow execution completed successfully")
'''

WRAPPER_TAIL = WRAPPER_TAIL_TEMPLATE.replace("__ENTRYPOINT__", FLOW_ENTRYPOINT)


def wrap_program(program_text: str) -> str:
    """Return the file contents the child process runs."""
    body = str(program_text or "")
    if not body.endswith("\n"):
        body += "\n"
    return WRAPPER_HEAD + "\n" + body + WRAPPER_TAIL

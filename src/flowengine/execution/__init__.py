"""Supervised execution of compiled flow programs."""

from .events import EventKind, EventSource, LogEvent, LogStream, classify_line
from .executor import FlowExecutor
from .supervisor import (
    ExecutionSupervisor,
    RunHandle,
    RunResult,
    RunState,
    SupervisorError,
    timeout_message,
)
from .termination import (
    TERMINATE_MESSAGE,
    AsyncioProcessHandle,
    ProcessHandle,
    ProcessTerminator,
    TerminationPhase,
)
from .wrapper import WRAPPER_HEAD, WRAPPER_TAIL, wrap_program

__all__ = [
    "EventKind",
    "EventSource",
    "LogEvent",
    "LogStream",
    "classify_line",
    "FlowExecutor",
    "ExecutionSupervisor",
    "RunHandle",
    "RunResult",
    "RunState",
    "SupervisorError",
    "timeout_message",
    "TERMINATE_MESSAGE",
    "AsyncioProcessHandle",
    "ProcessHandle",
    "ProcessTerminator",
    "TerminationPhase",
    "WRAPPER_HEAD",
    "WRAPPER_TAIL",
    "wrap_program",
]

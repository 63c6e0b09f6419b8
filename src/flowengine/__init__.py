"""
FlowEngine

Compile visual analysis flows into Python programs and run them supervised.

This package provides:
- a flow compiler (graph validation → action binding → program text)
- a dependency snapshot preparer (isolated site-packages for child programs)
- an execution supervisor (streamed logs, timeout, cooperative/forced termination)

The generated programs import `flowengine_analysis`, which ships alongside.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("flowengine")
except PackageNotFoundError:  # source checkout without install
    __version__ = "0.0.0"

from .compiler import CompileError, CompiledProgram, CompileWarning, compile_flow, compile_request
from .core.config import EngineConfig, LLMEndpoint, ModelConfig
from .execution import ExecutionSupervisor, FlowExecutor, LogEvent, RunHandle, RunResult, RunState
from .flow import ExecutionRequest, Flow, load_execution_request, load_flow_json
from .snapshot import SnapshotError, SnapshotPreparer, check_snapshot

__all__ = [
    "__version__",
    # Config
    "EngineConfig",
    "LLMEndpoint",
    "ModelConfig",
    # Flow model
    "ExecutionRequest",
    "Flow",
    "load_execution_request",
    "load_flow_json",
    # Compiler
    "CompileError",
    "CompileWarning",
    "CompiledProgram",
    "compile_flow",
    "compile_request",
    # Snapshot
    "SnapshotError",
    "SnapshotPreparer",
    "check_snapshot",
    # Execution
    "ExecutionSupervisor",
    "FlowExecutor",
    "LogEvent",
    "RunHandle",
    "RunResult",
    "RunState",
]

"""High-level entry: ExecutionRequest → supervised run."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional, Union

from ..compiler.compiler import CompiledProgram, compile_request
from ..core.config import EngineConfig
from ..flow.models import ExecutionRequest, load_execution_request
from ..logging import get_logger
from ..snapshot.preparer import check_snapshot, default_snapshot_dir
from .events import EventKind
from .supervisor import ExecutionSupervisor, Listener, RunHandle, RunResult

logger = get_logger(__name__)


class FlowExecutor:
    """Checks the snapshot, compiles the request, and starts a supervised run.

    Compile warnings are logged and also delivered to run subscribers as
    `warn` events ahead of any child output.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        snapshot_dir: Optional[Path] = None,
        supervisor: Optional[ExecutionSupervisor] = None,
    ):
        self.config = config or EngineConfig()
        self.snapshot_dir = Path(snapshot_dir) if snapshot_dir is not None else default_snapshot_dir()
        self.supervisor = supervisor or ExecutionSupervisor(self.config)

    def compile(self, request: Union[ExecutionRequest, Any]) -> CompiledProgram:
        if not isinstance(request, ExecutionRequest):
            request = load_execution_request(request)
        program = compile_request(request, endpoint=self.config.llm)
        for warning in program.warnings:
            logger.warning("Flow compile warning", flow_id=request.flow.id, block_id=warning.block_id, warning=warning.message)
        return program

    async def start(self, request: Union[ExecutionRequest, Any], *, listeners: Iterable[Listener] = ()) -> RunHandle:
        """Raises `SnapshotError` / `CompileError` / `SupervisorError` before launch."""
        snapshot = check_snapshot(self.snapshot_dir)
        program = self.compile(request)
        handle = await self.supervisor.start(program.text, snapshot, listeners=listeners)
        for warning in program.warnings:
            handle.announce(EventKind.WARN, str(warning))
        return handle

    async def run(self, request: Union[ExecutionRequest, Any], *, listeners: Iterable[Listener] = ()) -> RunResult:
        handle = await self.start(request, listeners=listeners)
        return await handle.wait()

"""Execution supervisor: runs a compiled program in an isolated child process.

One `RunHandle` per run. It owns the child process, the per-run log stream
(partial-line buffer + de-duplication set), the timeout timer and the
temporary working directory, and it resolves exactly once:

    CREATED -> RUNNING -> COMPLETED | FAILED | TIMED_OUT | TERMINATED

Every terminal state is announced by a supervisor log event before the
result future resolves. The engine does not serialize concurrent runs.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import sys
import tempfile
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.config import EngineConfig
from ..logging import get_logger
from ..snapshot.manifest import MANIFEST_FILENAME, SITE_PACKAGES_DIRNAME
from ..snapshot.preparer import check_snapshot
from .events import EventKind, EventSource, LogEvent, LogStream
from .termination import AsyncioProcessHandle, ProcessTerminator
from .wrapper import wrap_program

logger = get_logger(__name__)

Listener = Callable[[LogEvent], Any]

_READ_CHUNK = 64 * 1024
# Bound on waiting for the output pipes to close after a kill.
DEFAULT_DRAIN_TIMEOUT_S = 5.0


class RunState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunState.CREATED, RunState.RUNNING)


class SupervisorError(RuntimeError):
    """Raised when a run cannot be started."""


@dataclass(frozen=True)
class RunResult:
    state: RunState
    exit_code: Optional[int] = None
    error: Optional[str] = None
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state == RunState.COMPLETED


def timeout_message(timeout_s: float) -> str:
    return f"Flow execution timed out after {timeout_s:g} seconds"


class RunHandle:
    """Live view of one run: subscribe to events, await the result, terminate."""

    def __init__(self, config: EngineConfig, *, drain_timeout_s: float = DEFAULT_DRAIN_TIMEOUT_S):
        self.run_id = uuid.uuid4().hex
        self.state = RunState.CREATED
        self.events: List[LogEvent] = []
        self._config = config
        self._drain_timeout_s = drain_timeout_s
        self._listeners: List[Listener] = []
        self._stream = LogStream()
        self._future: asyncio.Future[RunResult] = asyncio.get_running_loop().create_future()
        self._terminator: Optional[ProcessTerminator] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._workdir: Optional[Path] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._stopping: Optional[RunState] = None
        self._exit_code: Optional[int] = None
        self._errors: List[str] = []
        self._started_at = time.monotonic()

    # -- caller API -------------------------------------------------------

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def done(self) -> bool:
        return self._future.done()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for future events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def wait(self) -> RunResult:
        return await asyncio.shield(self._future)

    async def terminate(self) -> None:
        """Request user cancellation. Safe to call repeatedly or after exit; never raises."""
        try:
            await self._stop(RunState.TERMINATED)
        except Exception as e:
            logger.warning("Terminate failed", run_id=self.run_id, error=str(e))

    # -- internals --------------------------------------------------------

    def _deliver(self, events: Iterable[LogEvent]) -> None:
        for event in events:
            if event.kind == EventKind.ERROR and event.source != EventSource.SUPERVISOR:
                self._errors.append(event.message)
            self.events.append(event)
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception as e:
                    logger.warning("Run event listener failed", run_id=self.run_id, error=str(e))

    def announce(self, kind: EventKind, message: str) -> None:
        """Deliver a supervisor-side event to subscribers."""
        self._deliver([LogEvent(kind=kind, message=message, source=EventSource.SUPERVISOR)])

    def _attach(self, process: asyncio.subprocess.Process, workdir: Path) -> None:
        self._process = process
        self._workdir = workdir
        self._terminator = ProcessTerminator(
            AsyncioProcessHandle(process),
            grace_period_s=self._config.grace_period_s,
            kill_check_delay_s=self._config.kill_check_delay_s,
        )
        self.state = RunState.RUNNING
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._config.run_timeout_s, self._on_timeout)
        self._pump_task = loop.create_task(self._pump(process))

    def _on_timeout(self) -> None:
        self._timer = None
        if not self.done and self._stopping is None:
            self._stop_task = asyncio.get_running_loop().create_task(self._stop(RunState.TIMED_OUT))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _read(self, reader: Optional[asyncio.StreamReader], decode: Callable[[bytes], List[LogEvent]]) -> None:
        if reader is None:
            return
        while True:
            chunk = await reader.read(_READ_CHUNK)
            if not chunk:
                return
            self._deliver(decode(chunk))

    async def _pump(self, process: asyncio.subprocess.Process) -> None:
        exit_code: Optional[int] = None
        failure: Optional[str] = None
        try:
            await asyncio.gather(
                self._read(process.stdout, self._stream.feed),
                self._read(process.stderr, self._stream.feed_stderr),
            )
            exit_code = await process.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = f"Flow supervision failed: {e}"
        finally:
            self._deliver(self._stream.flush())
            self._exit_code = exit_code if exit_code is not None else process.returncode
            self._cleanup()

        if self._stopping is not None or self.done:
            return
        self._cancel_timer()
        if self._terminator is not None:
            if failure is not None:
                await self._terminator.terminate()
            self._terminator.disarm()
        if failure is not None:
            self.announce(EventKind.ERROR, failure)
            self._finish(RunState.FAILED, error=failure)
        elif exit_code == 0:
            self.announce(EventKind.LOG, "Flow process exited normally")
            self._finish(RunState.COMPLETED)
        else:
            message = f"Flow execution failed with exit code {exit_code}"
            self.announce(EventKind.ERROR, message)
            detail = "\n".join(self._errors[-2:]) if self._errors else message
            self._finish(RunState.FAILED, error=detail)

    async def _stop(self, state: RunState) -> None:
        if self.done or self._stopping is not None:
            return
        process = self._process
        if state == RunState.TERMINATED and process is not None and process.returncode is not None:
            # Already exited on its own; the reader resolves the run from the exit code.
            return
        self._stopping = state
        self._cancel_timer()
        if state == RunState.TIMED_OUT:
            error: Optional[str] = timeout_message(self._config.run_timeout_s)
            self.announce(EventKind.ERROR, error)
        else:
            error = None
            self.announce(EventKind.LOG, "Flow execution terminated by user")

        if self._terminator is not None:
            await self._terminator.terminate()

        pump = self._pump_task
        if pump is not None and not pump.done():
            try:
                await asyncio.wait_for(asyncio.shield(pump), timeout=self._drain_timeout_s)
            except asyncio.TimeoutError:
                logger.warning("Output pipes still open after kill; abandoning reader", run_id=self.run_id)
                pump.cancel()
            except Exception as e:
                logger.warning("Reader task failed during stop", run_id=self.run_id, error=str(e))
        self._cleanup()
        self._finish(state, error=error)

    def _cleanup(self) -> None:
        self._process = None
        workdir, self._workdir = self._workdir, None
        if workdir is None:
            return
        try:
            shutil.rmtree(workdir)
        except OSError as e:
            logger.warning("Failed to remove run directory", run_id=self.run_id, path=str(workdir), error=str(e))

    def _finish(self, state: RunState, *, error: Optional[str] = None) -> None:
        if self._future.done():
            return
        self.state = state
        result = RunResult(
            state=state,
            exit_code=self._exit_code,
            error=error,
            duration_s=time.monotonic() - self._started_at,
        )
        logger.info("Flow run finished", run_id=self.run_id, state=state.value, exit_code=self._exit_code)
        self._future.set_result(result)


def _link_site_packages(snapshot_site: Path, workdir: Path) -> Path:
    target = workdir / SITE_PACKAGES_DIRNAME
    try:
        os.symlink(snapshot_site, target, target_is_directory=True)
    except (OSError, NotImplementedError):
        shutil.copytree(snapshot_site, target)
    return target


def child_environment(site_packages: Path, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Environment for the child: module search limited to the snapshot.

    The child also runs with `-S`, which keeps the host interpreter's
    site-packages off its path. An inherited `PYTHONPATH` is dropped.
    """
    env = dict(os.environ)
    env["PYTHONPATH"] = str(site_packages)
    env["PYTHONNOUSERSITE"] = "1"
    env["PYTHONIOENCODING"] = "utf-8"
    env["PYTHONUNBUFFERED"] = "1"
    if extra:
        env.update(extra)
    return env


class ExecutionSupervisor:
    """Starts supervised runs of compiled programs.

    Example:
        >>> supervisor = ExecutionSupervisor(EngineConfig(run_timeout_s=60))
        >>> handle = await supervisor.start(program.text, snapshot_dir)  # doctest: +SKIP
        >>> result = await handle.wait()  # doctest: +SKIP
    """

    def __init__(self, config: Optional[EngineConfig] = None, *, drain_timeout_s: float = DEFAULT_DRAIN_TIMEOUT_S):
        self.config = config or EngineConfig()
        self._drain_timeout_s = drain_timeout_s

    async def start(
        self,
        program_text: str,
        snapshot_dir: Path,
        *,
        listeners: Iterable[Listener] = (),
    ) -> RunHandle:
        """Materialize *program_text* next to the snapshot and launch it.

        Raises:
            SnapshotError: the snapshot is missing (fatal before launch).
            SupervisorError: the working directory or the child process could not be created.
        """
        snapshot = check_snapshot(Path(snapshot_dir))
        handle = RunHandle(self.config, drain_timeout_s=self._drain_timeout_s)
        for listener in listeners:
            handle.subscribe(listener)

        workdir = Path(tempfile.mkdtemp(prefix="flowengine-run-"))
        try:
            site = _link_site_packages(snapshot / SITE_PACKAGES_DIRNAME, workdir)
            shutil.copy2(snapshot / MANIFEST_FILENAME, workdir / MANIFEST_FILENAME)
            program_path = workdir / f"flow_{int(time.time() * 1000)}.py"
            program_path.write_text(wrap_program(program_text), encoding="utf-8")
            process = await asyncio.create_subprocess_exec(
                self.config.python_executable or sys.executable,
                "-u",
                "-S",
                str(program_path),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=child_environment(site, self.config.extra_env),
            )
        except Exception as e:
            shutil.rmtree(workdir, ignore_errors=True)
            raise SupervisorError(f"Failed to start flow process: {e}") from e

        logger.info("Flow run started", run_id=handle.run_id, pid=process.pid, program=str(program_path))
        handle._attach(process, workdir)
        return handle

    async def terminate(self, handle: RunHandle) -> None:
        await handle.terminate()

    async def run(
        self,
        program_text: str,
        snapshot_dir: Path,
        *,
        listeners: Iterable[Listener] = (),
    ) -> RunResult:
        """Start a run and wait for its result."""
        handle = await self.start(program_text, snapshot_dir, listeners=listeners)
        return await handle.wait()

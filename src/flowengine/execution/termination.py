"""Cooperative-then-forced process termination.

Phases, in order:

    REQUESTED_COOPERATIVE  write `{"type":"terminate"}` to stdin, close it
    GRACE_PERIOD           wait `grace_period_s`
    FORCED_KILL            POSIX: SIGTERM, re-check after `kill_check_delay_s`,
                           SIGKILL if still alive. Windows: `taskkill /T /F`.
    VERIFIED               liveness re-checked (one more escalation if needed)

The process is reached only through `ProcessHandle`, so tests drive the
machine with a fake handle and a fake sleep.
"""

from __future__ import annotations

import asyncio
import os
import signal
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol

from ..logging import get_logger

logger = get_logger(__name__)

TERMINATE_MESSAGE = b'{"type":"terminate"}\n'

Sleep = Callable[[float], Awaitable[None]]


class TerminationPhase(str, Enum):
    IDLE = "idle"
    REQUESTED_COOPERATIVE = "requested_cooperative"
    GRACE_PERIOD = "grace_period"
    FORCED_KILL = "forced_kill"
    VERIFIED = "verified"


class ProcessHandle(Protocol):
    @property
    def pid(self) -> Optional[int]: ...

    def is_alive(self) -> bool: ...

    async def request_stop(self, payload: bytes) -> None: ...

    def signal_term(self) -> None: ...

    def kill(self) -> None: ...

    async def kill_tree(self) -> None: ...

    def close_streams(self) -> None: ...


class AsyncioProcessHandle:
    """`ProcessHandle` over an `asyncio.subprocess.Process`."""

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    def is_alive(self) -> bool:
        return self._process.returncode is None

    async def request_stop(self, payload: bytes) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return
        try:
            stdin.write(payload)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            pass
        finally:
            stdin.close()

    def signal_term(self) -> None:
        try:
            self._process.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    async def kill_tree(self) -> None:
        pid = self._process.pid
        if pid is None:
            return
        proc = await asyncio.create_subprocess_exec(
            "taskkill",
            "/pid",
            str(pid),
            "/T",
            "/F",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await proc.wait()

    def close_streams(self) -> None:
        # stdout/stderr readers finish at EOF once the process is gone.
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()


class ProcessTerminator:
    """Runs the termination phases once for one process handle.

    `terminate()` never raises. The handle reference is dropped on the first
    call, so later calls return immediately.
    """

    def __init__(
        self,
        handle: Optional[ProcessHandle],
        *,
        grace_period_s: float = 0.1,
        kill_check_delay_s: float = 0.1,
        sleep: Sleep = asyncio.sleep,
        windows: Optional[bool] = None,
    ):
        self._handle = handle
        self._grace_period_s = grace_period_s
        self._kill_check_delay_s = kill_check_delay_s
        self._sleep = sleep
        self._windows = (os.name == "nt") if windows is None else windows
        self.phase = TerminationPhase.IDLE
        self.history: List[TerminationPhase] = []

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def disarm(self) -> None:
        """Forget the process (it exited on its own)."""
        self._handle = None

    def _enter(self, phase: TerminationPhase) -> None:
        self.phase = phase
        self.history.append(phase)

    async def terminate(self) -> TerminationPhase:
        handle = self._handle
        if handle is None:
            return self.phase
        self._handle = None
        try:
            self._enter(TerminationPhase.REQUESTED_COOPERATIVE)
            if handle.is_alive():
                try:
                    await handle.request_stop(TERMINATE_MESSAGE)
                except Exception as e:
                    logger.debug("Cooperative terminate request failed", pid=handle.pid, error=str(e))
                self._enter(TerminationPhase.GRACE_PERIOD)
                await self._sleep(self._grace_period_s)

            if handle.is_alive():
                self._enter(TerminationPhase.FORCED_KILL)
                await self._force(handle)
                if handle.is_alive():
                    # One more escalation after the forced step.
                    await self._sleep(self._kill_check_delay_s)
                    if handle.is_alive():
                        await self._hard_kill(handle)

            self._enter(TerminationPhase.VERIFIED)
            if handle.is_alive():
                logger.warning("Process still alive after forced termination", pid=handle.pid)
        except Exception as e:
            logger.warning("Process termination failed", pid=handle.pid, error=str(e))
        finally:
            try:
                handle.close_streams()
            except Exception as e:
                logger.debug("Closing process streams failed", pid=handle.pid, error=str(e))
        return self.phase

    async def _force(self, handle: ProcessHandle) -> None:
        if self._windows:
            await handle.kill_tree()
            return
        handle.signal_term()
        await self._sleep(self._kill_check_delay_s)
        if handle.is_alive():
            handle.kill()

    async def _hard_kill(self, handle: ProcessHandle) -> None:
        if self._windows:
            await handle.kill_tree()
        else:
            handle.kill()

import asyncio
from typing import List, Optional

import pytest

pytestmark = pytest.mark.basic


class FakeHandle:
    """Scripted process: `dies_on` names the step after which it is no longer alive."""

    def __init__(self, dies_on: Optional[str]):
        self._alive = True
        self._dies_on = dies_on
        self.calls: List[str] = []
        self.payloads: List[bytes] = []

    @property
    def pid(self) -> Optional[int]:
        return 4242

    def _step(self, name: str) -> None:
        self.calls.append(name)
        if name == self._dies_on:
            self._alive = False

    def is_alive(self) -> bool:
        return self._alive

    async def request_stop(self, payload: bytes) -> None:
        self.payloads.append(payload)
        self._step("request_stop")

    def signal_term(self) -> None:
        self._step("signal_term")

    def kill(self) -> None:
        self._step("kill")

    async def kill_tree(self) -> None:
        self._step("kill_tree")

    def close_streams(self) -> None:
        self.calls.append("close_streams")


async def _no_sleep(_seconds: float) -> None:
    return None


def _terminator(handle, windows: bool = False):
    from flowengine.execution.termination import ProcessTerminator

    return ProcessTerminator(handle, grace_period_s=0.0, kill_check_delay_s=0.0, sleep=_no_sleep, windows=windows)


def test_cooperative_stop_skips_forced_kill() -> None:
    from flowengine.execution.termination import TERMINATE_MESSAGE, TerminationPhase

    handle = FakeHandle(dies_on="request_stop")
    term = _terminator(handle)

    phase = asyncio.run(term.terminate())

    assert phase == TerminationPhase.VERIFIED
    assert term.history == [
        TerminationPhase.REQUESTED_COOPERATIVE,
        TerminationPhase.GRACE_PERIOD,
        TerminationPhase.VERIFIED,
    ]
    assert handle.payloads == [TERMINATE_MESSAGE]
    assert handle.calls == ["request_stop", "close_streams"]


def test_posix_escalates_from_sigterm_to_sigkill() -> None:
    from flowengine.execution.termination import TerminationPhase

    handle = FakeHandle(dies_on="kill")
    term = _terminator(handle)

    asyncio.run(term.terminate())

    assert TerminationPhase.FORCED_KILL in term.history
    assert handle.calls == ["request_stop", "signal_term", "kill", "close_streams"]


def test_posix_sigterm_is_enough_when_the_process_obeys() -> None:
    handle = FakeHandle(dies_on="signal_term")

    asyncio.run(_terminator(handle).terminate())

    assert handle.calls == ["request_stop", "signal_term", "close_streams"]


def test_windows_uses_tree_kill() -> None:
    handle = FakeHandle(dies_on="kill_tree")

    asyncio.run(_terminator(handle, windows=True).terminate())

    assert handle.calls == ["request_stop", "kill_tree", "close_streams"]


def test_stubborn_process_gets_one_more_escalation() -> None:
    from flowengine.execution.termination import TerminationPhase

    handle = FakeHandle(dies_on=None)
    term = _terminator(handle)

    phase = asyncio.run(term.terminate())

    assert phase == TerminationPhase.VERIFIED
    assert handle.calls == ["request_stop", "signal_term", "kill", "kill", "close_streams"]


def test_second_terminate_is_a_no_op() -> None:
    handle = FakeHandle(dies_on="request_stop")
    term = _terminator(handle)

    async def _twice():
        await term.terminate()
        await term.terminate()

    asyncio.run(_twice())

    assert handle.calls == ["request_stop", "close_streams"]
    assert term.armed is False


def test_terminate_never_raises() -> None:
    class Broken(FakeHandle):
        def signal_term(self) -> None:
            raise OSError("boom")

    handle = Broken(dies_on=None)

    asyncio.run(_terminator(handle).terminate())

    assert handle.calls[-1] == "close_streams"


def test_disarmed_terminator_does_nothing() -> None:
    from flowengine.execution.termination import TerminationPhase

    handle = FakeHandle(dies_on=None)
    term = _terminator(handle)
    term.disarm()

    assert asyncio.run(term.terminate()) == TerminationPhase.IDLE
    assert handle.calls == []

import asyncio
import json
from pathlib import Path

import pytest


def _snapshot(tmp_path: Path) -> Path:
    snapshot = tmp_path / "snapshot"
    (snapshot / "site-packages").mkdir(parents=True)
    (snapshot / "manifest.json").write_text(json.dumps({"name": "test", "dependencies": {}}), encoding="utf-8")
    return snapshot


def _messages(events):
    return [e.message for e in events]


@pytest.mark.integration
def test_successful_run_streams_logs_and_completes(tmp_path: Path) -> None:
    from flowengine.core.config import EngineConfig
    from flowengine.execution import ExecutionSupervisor, RunState

    program = "async def run_flow():\n    print('hello from flow')\n    print('hello from flow')\n"
    seen = []

    async def _main():
        supervisor = ExecutionSupervisor(EngineConfig(run_timeout_s=60))
        handle = await supervisor.start(program, _snapshot(tmp_path), listeners=[seen.append])
        assert handle.pid is not None
        return handle, await handle.wait()

    handle, result = asyncio.run(_main())

    assert result.state == RunState.COMPLETED
    assert result.ok
    assert result.exit_code == 0
    messages = _messages(seen)
    assert messages[0] == "Starting flow execution..."
    assert messages.count("hello from flow") == 1
    assert "Flow execution completed successfully" in messages
    assert messages[-1] == "Flow process exited normally"
    assert _messages(handle.events) == messages


@pytest.mark.integration
def test_failing_program_reports_last_error_lines(tmp_path: Path) -> None:
    from flowengine.core.config import EngineConfig
    from flowengine.execution import ExecutionSupervisor, RunState

    program = "async def run_flow():\n    raise ValueError('bad input')\n"

    result = asyncio.run(ExecutionSupervisor(EngineConfig(run_timeout_s=60)).run(program, _snapshot(tmp_path)))

    assert result.state == RunState.FAILED
    assert result.exit_code == 1
    assert "Flow execution failed: bad input" in result.error
    assert "ValueError" in result.error


@pytest.mark.integration
def test_stderr_output_is_forwarded_as_error(tmp_path: Path) -> None:
    from flowengine.core.config import EngineConfig
    from flowengine.execution import EventSource, ExecutionSupervisor

    program = "import sys\nasync def run_flow():\n    sys.stderr.write('low level problem\\n')\n"
    seen = []

    result = asyncio.run(
        ExecutionSupervisor(EngineConfig(run_timeout_s=60)).run(program, _snapshot(tmp_path), listeners=[seen.append])
    )

    assert result.ok
    stderr_events = [e for e in seen if e.source == EventSource.STDERR]
    assert [e.text for e in stderr_events] == ["[FLOW_ERROR] low level problem"]


@pytest.mark.integration
def test_run_times_out_and_kills_the_child(tmp_path: Path) -> None:
    from flowengine.core.config import EngineConfig
    from flowengine.execution import ExecutionSupervisor, RunState

    program = "import asyncio\nasync def run_flow():\n    await asyncio.sleep(60)\n"
    seen = []

    result = asyncio.run(
        ExecutionSupervisor(EngineConfig(run_timeout_s=1.0)).run(program, _snapshot(tmp_path), listeners=[seen.append])
    )

    assert result.state == RunState.TIMED_OUT
    assert result.error == "Flow execution timed out after 1 seconds"
    assert result.duration_s < 30
    assert "[FLOW_ERROR] Flow execution timed out after 1 seconds" in [e.text for e in seen]


@pytest.mark.integration
def test_terminate_is_idempotent(tmp_path: Path) -> None:
    from flowengine.core.config import EngineConfig
    from flowengine.execution import ExecutionSupervisor, RunState

    program = "import asyncio\nasync def run_flow():\n    await asyncio.sleep(60)\n"

    async def _main():
        supervisor = ExecutionSupervisor(EngineConfig(run_timeout_s=60))
        handle = await supervisor.start(program, _snapshot(tmp_path))
        await asyncio.sleep(0.5)
        await asyncio.gather(handle.terminate(), supervisor.terminate(handle))
        result = await handle.wait()
        await handle.terminate()
        return handle, result

    handle, result = asyncio.run(_main())

    assert result.state == RunState.TERMINATED
    assert result.error is None
    assert handle.done
    assert _messages(handle.events).count("Flow execution terminated by user") == 1


@pytest.mark.integration
def test_concurrent_runs_are_independent(tmp_path: Path) -> None:
    from flowengine.core.config import EngineConfig
    from flowengine.execution import ExecutionSupervisor

    snapshot = _snapshot(tmp_path)
    supervisor = ExecutionSupervisor(EngineConfig(run_timeout_s=60))

    async def _main():
        a = await supervisor.start("async def run_flow():\n    print('same line')\n", snapshot)
        b = await supervisor.start("async def run_flow():\n    print('same line')\n", snapshot)
        return a, b, await asyncio.gather(a.wait(), b.wait())

    a, b, results = asyncio.run(_main())

    assert all(r.ok for r in results)
    assert a.run_id != b.run_id
    assert _messages(a.events).count("same line") == 1
    assert _messages(b.events).count("same line") == 1


def test_start_without_snapshot_fails_before_launch(tmp_path: Path) -> None:
    from flowengine.execution import ExecutionSupervisor
    from flowengine.snapshot import SnapshotError

    with pytest.raises(SnapshotError):
        asyncio.run(ExecutionSupervisor().start("async def run_flow():\n    pass\n", tmp_path / "missing"))


def test_child_environment_limits_module_path_to_snapshot(tmp_path: Path, monkeypatch) -> None:
    from flowengine.execution.supervisor import child_environment

    monkeypatch.setenv("PYTHONPATH", "/existing")
    env = child_environment(tmp_path, {"EXTRA": "1"})

    assert env["PYTHONPATH"] == str(tmp_path)
    assert env["PYTHONNOUSERSITE"] == "1"
    assert env["PYTHONIOENCODING"] == "utf-8"
    assert env["PYTHONUNBUFFERED"] == "1"
    assert env["EXTRA"] == "1"


@pytest.mark.integration
def test_child_only_sees_packages_from_the_snapshot(tmp_path: Path) -> None:
    from flowengine.core.config import EngineConfig
    from flowengine.execution import ExecutionSupervisor
    from flowengine.snapshot import SnapshotPreparer

    root = tmp_path / "root-site"
    info = root / "snapmod-1.0.dist-info"
    info.mkdir(parents=True)
    (info / "METADATA").write_text("Metadata-Version: 2.1\nName: snapmod\nVersion: 1.0\n", encoding="utf-8")
    (info / "top_level.txt").write_text("snapmod\n", encoding="utf-8")
    (root / "snapmod.py").write_text("VALUE = 7\n", encoding="utf-8")
    snapshot = SnapshotPreparer(root_packages=("snapmod",), local_packages=()).prepare(root, tmp_path / "snapshot")

    # pytest is installed for the host interpreter but not copied into the snapshot.
    program = (
        "import importlib.util\n"
        "import snapmod\n"
        "async def run_flow():\n"
        "    print('snapmod ' + str(snapmod.VALUE))\n"
        "    print('pytest ' + ('visible' if importlib.util.find_spec('pytest') else 'hidden'))\n"
    )
    seen = []

    result = asyncio.run(
        ExecutionSupervisor(EngineConfig(run_timeout_s=60)).run(program, snapshot, listeners=[seen.append])
    )

    assert result.ok, [e.text for e in seen]
    messages = _messages(seen)
    assert "snapmod 7" in messages
    assert "pytest hidden" in messages


@pytest.mark.integration
def test_terminate_after_the_child_exited_keeps_the_completed_result(tmp_path: Path) -> None:
    from flowengine.core.config import EngineConfig
    from flowengine.execution import ExecutionSupervisor, RunState

    # The helper inherits the output pipes, so reading continues after the child exits.
    program = (
        "import subprocess\n"
        "import sys\n"
        "async def run_flow():\n"
        "    subprocess.Popen([sys.executable, '-S', '-c', 'import time; time.sleep(3)'])\n"
    )

    async def _main():
        handle = await ExecutionSupervisor(EngineConfig(run_timeout_s=60)).start(program, _snapshot(tmp_path))
        for _ in range(200):
            process = handle._process
            if process is not None and process.returncode is not None:
                break
            await asyncio.sleep(0.05)
        assert not handle.done
        await handle.terminate()
        return handle, await handle.wait()

    handle, result = asyncio.run(_main())

    assert result.state == RunState.COMPLETED
    assert result.exit_code == 0
    assert "Flow execution terminated by user" not in _messages(handle.events)


def test_wrap_program_places_entry_point_call_last() -> None:
    from flowengine.execution import WRAPPER_HEAD, wrap_program

    text = wrap_program("async def run_flow():\n    pass")

    assert text.startswith(WRAPPER_HEAD)
    assert "_flow_asyncio.run(run_flow())" in text
    assert text.index("async def run_flow") < text.index("_flow_asyncio.run(run_flow())")
    compile(text, "wrapped.py", "exec")

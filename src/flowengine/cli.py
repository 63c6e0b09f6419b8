"""`flowengine` command line.

Subcommands:
  compile       flow JSON -> Python program text
  run           compile, then run under supervision and stream log events
  prepare-deps  build (or refresh) the dependency snapshot runs execute against
  models        list models served by the local LM Studio endpoint

Exit codes: 0 success, 1 failed run or snapshot build, 2 compile or start error,
130 interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .core.config import EngineConfig, LLMEndpoint
from .execution.events import LogEvent
from .flow.models import ExecutionRequest, load_actions_json, load_execution_request, load_flow_json


def _read_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def load_request(path: str, *, actions_path: Optional[str] = None, item_limit: Optional[int] = None) -> ExecutionRequest:
    """Load an ExecutionRequest JSON, or a bare flow JSON plus optional actions file."""
    raw = _read_json(path)
    if isinstance(raw, dict) and "flow" in raw:
        request = load_execution_request(raw)
    else:
        request = ExecutionRequest(flow=load_flow_json(raw))
    if actions_path:
        request = replace(request, actions=request.actions + load_actions_json(_read_json(actions_path)))
    if item_limit is not None:
        request = replace(request, item_limit=item_limit)
    return request


def _engine_config(args: argparse.Namespace) -> EngineConfig:
    cfg = EngineConfig.from_env()
    if getattr(args, "timeout", None) is not None:
        cfg = replace(cfg, run_timeout_s=float(args.timeout))
    base_url = str(getattr(args, "base_url", "") or "").strip()
    if base_url:
        cfg = replace(cfg, llm=LLMEndpoint.from_base_url(base_url))
    return cfg


def _cmd_compile(args: argparse.Namespace) -> int:
    from .compiler import CompileError
    from .execution.executor import FlowExecutor

    request = load_request(args.request, actions_path=args.actions, item_limit=args.item_limit)
    try:
        program = FlowExecutor(_engine_config(args)).compile(request)
    except CompileError as e:
        sys.stderr.write(f"Compile failed: {e}\n")
        return 2
    for w in program.warnings:
        sys.stderr.write(f"warning: {w}\n")
    if args.output:
        Path(args.output).write_text(program.text, encoding="utf-8")
    else:
        sys.stdout.write(program.text)
    return 0


def _print_event(event: LogEvent, as_json: bool) -> None:
    if as_json:
        payload: Dict[str, Any] = {"type": event.kind.value, "source": event.source.value, "message": event.message}
        sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
    else:
        sys.stdout.write(event.text + "\n")
    sys.stdout.flush()


async def _run(args: argparse.Namespace) -> int:
    from .execution.executor import FlowExecutor

    request = load_request(args.request, actions_path=args.actions, item_limit=args.item_limit)
    snapshot_dir = Path(args.snapshot_dir) if args.snapshot_dir else None
    executor = FlowExecutor(_engine_config(args), snapshot_dir=snapshot_dir)
    handle = await executor.start(request, listeners=[lambda e: _print_event(e, args.json_events)])
    try:
        result = await handle.wait()
    except asyncio.CancelledError:
        await handle.terminate()
        raise
    if not result.ok:
        sys.stderr.write(f"Run {result.state.value}: {result.error or ''}\n")
        return 1
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    from .compiler import CompileError
    from .execution.supervisor import SupervisorError
    from .snapshot.manifest import SnapshotError

    try:
        return asyncio.run(_run(args))
    except (SnapshotError, CompileError, SupervisorError) as e:
        sys.stderr.write(f"Flow run failed: {e}\n")
        return 2
    except KeyboardInterrupt:
        sys.stderr.write("Flow run interrupted\n")
        return 130


def _cmd_prepare_deps(args: argparse.Namespace) -> int:
    from .snapshot import SnapshotError, SnapshotPreparer, installed_packages, is_snapshot_stale
    from .snapshot.preparer import default_root_modules_path, default_snapshot_dir

    root = Path(args.root_modules) if args.root_modules else default_root_modules_path()
    target = Path(args.snapshot_dir) if args.snapshot_dir else default_snapshot_dir()
    if args.if_stale and not is_snapshot_stale(target, root):
        sys.stdout.write(f"Snapshot up to date: {target}\n")
        return 0
    try:
        SnapshotPreparer().prepare(root, target)
    except SnapshotError as e:
        sys.stderr.write(f"Failed to prepare flow dependencies: {e}\n")
        return 1
    sys.stdout.write(f"Snapshot ready: {target}\n")
    for name in installed_packages(target):
        sys.stdout.write(f"  {name}\n")
    return 0


def _cmd_models(args: argparse.Namespace) -> int:
    from .integrations.lmstudio import ModelListError, list_local_models

    try:
        models = list_local_models(_engine_config(args).llm, llm_only=not args.all)
    except ModelListError as e:
        sys.stderr.write(f"{e}\n")
        return 1
    for m in models:
        sys.stdout.write(f"{m.id}\t{m.type}\t{m.state}\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowengine",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def _request_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("request", help="ExecutionRequest JSON ({flow, actions, itemLimit, modelConfig}) or a flow JSON.")
        p.add_argument("--actions", default=None, help="Extra user actions JSON (list or {actions: [...]}).")
        p.add_argument("--item-limit", type=int, default=None, help="Process at most N records per import.")
        p.add_argument("--base-url", default="", help="LLM server base URL (default: http://127.0.0.1:1234).")

    p_compile = sub.add_parser("compile", help="Compile a flow to a Python program.")
    _request_args(p_compile)
    p_compile.add_argument("-o", "--output", default=None, help="Write the program here instead of stdout.")
    p_compile.set_defaults(func=_cmd_compile)

    p_run = sub.add_parser("run", help="Compile and run a flow under supervision.")
    _request_args(p_run)
    p_run.add_argument("--snapshot-dir", default=None, help="Dependency snapshot (default: FLOWENGINE_SNAPSHOT_DIR).")
    p_run.add_argument("--timeout", type=float, default=None, help="Run timeout in seconds (default: 300).")
    p_run.add_argument("--json-events", action="store_true", help="Print events as NDJSON.")
    p_run.set_defaults(func=_cmd_run)

    p_deps = sub.add_parser("prepare-deps", help="Build the dependency snapshot used by runs.")
    p_deps.add_argument("--root-modules", default=None, help="site-packages directory to copy from.")
    p_deps.add_argument("--snapshot-dir", default=None, help="Snapshot directory (default: FLOWENGINE_SNAPSHOT_DIR).")
    p_deps.add_argument("--if-stale", action="store_true", help="Only rebuild when recorded versions differ.")
    p_deps.set_defaults(func=_cmd_prepare_deps)

    p_models = sub.add_parser("models", help="List models on the local LM Studio server.")
    p_models.add_argument("--base-url", default="", help="LLM server base URL (default: http://127.0.0.1:1234).")
    p_models.add_argument("--all", action="store_true", help="Include embedding models.")
    p_models.set_defaults(func=_cmd_models)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

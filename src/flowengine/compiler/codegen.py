"""`ProgramIR` → Python program text.

The emitted program has five parts, in order:
1) the analysis library import line (fixed, first line)
2) constants: flow identity, item limit, LLM config
3) runtime helpers (NDJSON log emitters, file parsing, drivers)
4) one builder function per bound block, registered into caller tables
5) step tables and the awaited entry point `run_flow()`

Output depends only on the IR, so compiling the same flow twice yields the
same text.
"""

from __future__ import annotations

import pprint
import textwrap
from typing import Any, Dict, List

from .ir import BoundAction, ProgramIR

FLOW_ENTRYPOINT = "run_flow"

ANALYSIS_IMPORT_LINE = (
    "from flowengine_analysis import CohensComparisonModel, ComparisonModel, "
    "KrippendorffsComparisonModel, Response, set_config_from_object, traced, transforms"
)

_STDLIB_IMPORTS = """\
import asyncio
import csv
import inspect
import json
import os
import sys
from datetime import datetime
"""

_RUNTIME = r'''
def _json_default(value):
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return str(value)


def _dumps(value, **kwargs):
    return json.dumps(value, default=_json_default, ensure_ascii=False, **kwargs)


def _emit(kind, message):
    stream = sys.__stdout__ or sys.stdout
    stream.write(json.dumps({"type": kind, "message": message}, ensure_ascii=False) + "\n")
    stream.flush()


def _text(parts):
    return " ".join(p if isinstance(p, str) else _dumps(p) for p in parts)


def log(*parts):
    _emit("log", _text(parts))


def log_warn(*parts):
    _emit("warn", _text(parts))


def log_error(*parts):
    _emit("error", _text(parts))


def ui_log(payload):
    if UI_LOGGING:
        _emit("log", "[FLOW_UI_LOG] " + _dumps(payload))


def _output(value):
    return value.output if isinstance(value, Response) else value


def _clock():
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


_file_cache = {}


def parse_file_content(file_path, node_name):
    """Load an import file as a list of `Response` records (cached per path)."""
    ui_log({"type": "additional_file", "nodeName": node_name, "filePath": file_path})
    if file_path in _file_cache:
        log("[FLOW] Using cached content for: " + _dumps(file_path))
        return _file_cache[file_path]
    extension = os.path.splitext(file_path)[1].lower().lstrip(".")
    try:
        with open(file_path, "r", encoding="utf-8", newline="") as fh:
            if extension == "json":
                data = json.load(fh)
                items = data if isinstance(data, list) else [data]
            elif extension == "csv":
                items = list(csv.DictReader(fh))
            else:
                items = [fh.read()]
    except Exception as e:
        log_error("Error processing file: " + _dumps({"filePath": file_path, "error": str(e)}))
        return []
    responses = [Response.create(item, item, node_name) for item in items]
    log("[FLOW] Caching " + str(len(responses)) + " items from " + _dumps(file_path))
    _file_cache[file_path] = responses
    return responses


callers = {}
comparison_callers = {}
export_callers = {}


async def run_caller(block_id, value, node_name):
    caller = callers.get(block_id)
    if caller is None:
        return value
    try:
        return await caller.run(value)
    except Exception as e:
        log_error("Error running node " + _dumps(node_name) + ": " + str(e))
        raise
'''

_DRIVER = r'''
async def _process_import(chain, results):
    import_id = chain["import_id"]
    name = chain["import_name"]
    if chain["file"]:
        items = parse_file_content(chain["file"], name)
    else:
        log_warn("No file configured for import: " + _dumps(name))
        items = []
    if ITEM_LIMIT is not None:
        items = items[:ITEM_LIMIT]
    total = len(items)
    log("[FLOW] Processing " + str(total) + " items from " + _dumps(name))

    node_results = []
    results[import_id] = node_results
    for index, item in enumerate(items, start=1):
        try:
            ui_log({"type": "item_update", "nodeId": import_id, "nodeName": name, "current": index, "total": total})
            log("[FLOW] Processing item " + str(index) + "/" + str(total) + " from " + _dumps(name))
            result = item
            if import_id in callers:
                log("[FLOW] conducting import: " + _dumps(name) + " (" + _clock() + ")")
                result = await run_caller(import_id, item, name)
                ui_log({
                    "type": "import",
                    "nodeId": import_id,
                    "nodeName": name,
                    "input": _output(item),
                    "output": _output(result),
                })
            outputs = {import_id: result}
            for stage in chain["stages"]:
                stage_input = outputs[stage["parent"]]
                log("[FLOW] conducting transformation: " + _dumps(stage["name"]) + " (" + _clock() + ")")
                result = await run_caller(stage["id"], stage_input, stage["name"])
                outputs[stage["id"]] = result
                ui_log({
                    "type": "transform",
                    "nodeId": stage["id"],
                    "nodeName": stage["name"],
                    "input": _output(stage_input),
                    "output": _output(result),
                })
            # Commit only whole items so per-node lists stay positionally aligned.
            for stage in chain["stages"]:
                results.setdefault(stage["id"], []).append(outputs[stage["id"]])
            node_results.append(result)
        except Exception as e:
            log_error("Error processing item " + str(index) + "/" + str(total) + " from " + _dumps(name) + ": " + str(e))


async def _run_comparison(step, results, comparison_results):
    list1 = results.get(step["sources"][0]) or []
    list2 = results.get(step["sources"][1]) or []
    log("[FLOW] Running comparison between " + _dumps(step["labels"][0]) + " and " + _dumps(step["labels"][1]))
    try:
        outcome = comparison_callers[step["id"]](list1, list2)
        if inspect.isawaitable(outcome):
            outcome = await outcome
    except Exception as e:
        log_error("Error running comparison " + _dumps(step["name"]) + ": " + str(e))
        return
    comparison_results[step["id"]] = outcome
    ui_log({
        "type": "comparison_in_log",
        "nodeId": step["id"],
        "nodeName": step["name"],
        "actionName": step["action_name"],
        "list1": step["labels"][0],
        "list2": step["labels"][1],
        "list1Size": len(list1),
        "list2Size": len(list2),
        "comparisonResult": outcome,
    })


async def _run_export(step, results, comparison_results):
    source = comparison_results if step["from_comparison"] else results
    data = source.get(step["source"])
    if data is None:
        log_warn("No data available for export: " + _dumps(step["name"]))
        return
    if not step["output_filename"]:
        log_warn("No output file specified for export: " + _dumps(step["name"]))
        return
    output_path = os.path.join(step["output_path"] or ".", step["output_filename"])
    try:
        exporter = export_callers.get(step["id"])
        outcome = exporter(data) if exporter is not None else data
        if inspect.isawaitable(outcome):
            outcome = await outcome
        with open(output_path, "w", encoding="utf-8") as fh:
            fh.write(outcome if isinstance(outcome, str) else _dumps(outcome, indent=2))
    except Exception as e:
        log_error("Error running export " + _dumps(step["name"]) + ": " + str(e))
        return
    log("[FLOW] Export completed: " + _dumps(step["name"]))
    ui_log({
        "type": "export",
        "nodeId": step["id"],
        "nodeName": step["name"],
        "actionName": step["action_name"],
        "outputPath": step["output_path"],
        "outputFilename": step["output_filename"],
    })


async def run_flow():
    results = {}
    comparison_results = {}
    for chain in CHAINS:
        await _process_import(chain, results)
    for step in COMPARISONS:
        await _run_comparison(step, results, comparison_results)
    for step in EXPORTS:
        await _run_export(step, results, comparison_results)
    return {"results": results, "comparison_results": comparison_results}
'''


def _literal(value: Any) -> str:
    return pprint.pformat(value, width=100, sort_dicts=False)


def _builder(name: str, action: BoundAction, returns: str) -> List[str]:
    lines = [f"def {name}():"]
    lines.extend(textwrap.indent(action.code.strip("\n"), "    ").splitlines())
    lines.append(f"    config = {_literal(action.config)}")
    lines.append(f"    return {returns}")
    return lines


def _section(title: str) -> List[str]:
    return ["", "", f"# --- {title} ---", ""]


def emit_program(ir: ProgramIR) -> str:
    out: List[str] = [ANALYSIS_IMPORT_LINE, ""]
    out.append(f"# Flow program generated by flowengine: {ir.flow_name!r} ({ir.flow_id!r})")
    out.append(_STDLIB_IMPORTS)
    out.append(f"FLOW_ID = {ir.flow_id!r}")
    out.append(f"ITEM_LIMIT = {ir.item_limit!r}")
    out.append("UI_LOGGING = True")
    out.append("")
    out.append(f"llm_config = {_literal(ir.llm_config)}")
    out.append("set_config_from_object(llm_config)")
    out.append(_RUNTIME.rstrip("\n"))

    if ir.callers:
        out.extend(_section("callers"))
    for n, step in enumerate(ir.callers, start=1):
        fn = step.action.function_name
        if step.action.wrapped:
            returns = f"traced(lambda value: {fn}(value, config), {step.label!r})"
        else:
            returns = f"{fn}(config)"
        name = f"_build_caller_{n}"
        out.extend(_builder(name, step.action, returns))
        out.append("")
        out.append(f"callers[{step.block_id!r}] = traced({name}(), {step.label!r})")
        out.append("")

    if ir.comparisons:
        out.extend(_section("comparisons"))
    for n, cmp_step in enumerate(ir.comparisons, start=1):
        fn = cmp_step.action.function_name
        name = f"_build_comparison_{n}"
        out.extend(_builder(name, cmp_step.action, f"lambda list1, list2: {fn}(list1, list2, config)"))
        out.append("")
        out.append(f"comparison_callers[{cmp_step.block_id!r}] = {name}()")
        out.append("")

    exporters = [(e.block_id, e.action) for e in ir.exports if e.action is not None]
    if exporters:
        out.extend(_section("exports"))
    for n, (block_id, action) in enumerate(exporters, start=1):
        name = f"_build_export_{n}"
        out.extend(_builder(name, action, f"lambda data: {action.function_name}(data, config)"))
        out.append("")
        out.append(f"export_callers[{block_id!r}] = {name}()")
        out.append("")

    out.extend(_section("steps"))
    out.append(f"CHAINS = {_literal([_chain_row(c) for c in ir.chains])}")
    out.append("")
    out.append(f"COMPARISONS = {_literal([_comparison_row(c) for c in ir.comparisons])}")
    out.append("")
    out.append(f"EXPORTS = {_literal([_export_row(e) for e in ir.exports])}")
    out.append(_DRIVER.rstrip("\n"))
    return "\n".join(out) + "\n"


def _chain_row(chain) -> Dict[str, Any]:
    return {
        "import_id": chain.import_id,
        "import_name": chain.import_name,
        "file": chain.file,
        "stages": [{"id": s.block_id, "name": s.block_name, "parent": s.parent_id} for s in chain.stages],
    }


def _comparison_row(step) -> Dict[str, Any]:
    return {
        "id": step.block_id,
        "name": step.block_name,
        "action_name": step.action.action_name,
        "sources": list(step.sources),
        "labels": list(step.source_labels),
    }


def _export_row(step) -> Dict[str, Any]:
    return {
        "id": step.block_id,
        "name": step.block_name,
        "action_name": step.action_name,
        "source": step.source_id,
        "from_comparison": step.source_is_comparison,
        "output_path": step.output_path,
        "output_filename": step.output_filename,
    }

"""Flow graph → `ProgramIR`."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..actions.registry import ActionRegistry
from ..core.config import LLMEndpoint, ModelConfig, llm_config_dict
from ..flow.graph import (
    REQUIRED_INBOUND,
    GraphError,
    incoming,
    nearest_import,
    transform_chain,
    validate_flow,
)
from ..flow.models import COMPATIBLE_ACTION_TYPE, Block, BlockKind, Edge, Flow
from .ir import (
    BoundAction,
    CallerStep,
    ChainStage,
    CompileError,
    CompileWarning,
    ComparisonStep,
    ExportStep,
    ProcessingChain,
    ProgramIR,
)
from .snippets import find_entry_function, resolve_config, strip_type_annotations


def bind_action(block: Block, registry: ActionRegistry, warnings: List[CompileWarning]) -> Optional[BoundAction]:
    """Resolve and prepare the action of *block*; None means pass-through."""
    if not block.action_id:
        return None
    action = registry.get(block.action_id)
    if action is None:
        warnings.append(
            CompileWarning(block.id, f"Action '{block.action_id}' not found for block '{block.display_name}'; passing data through")
        )
        return None
    expected = COMPATIBLE_ACTION_TYPE[block.kind]
    if action.type != expected:
        warnings.append(
            CompileWarning(
                block.id,
                f"Action '{action.display_name}' has type {action.type.value} but block '{block.display_name}' "
                f"is a {block.kind.value} block (expects {expected.value}); passing data through",
            )
        )
        return None

    code = strip_type_annotations(action.code)
    fn_name = find_entry_function(code)
    if fn_name is None:
        warnings.append(
            CompileWarning(block.id, f"Action '{action.display_name}' defines no top-level function; passing data through")
        )
        return None

    config, missing = resolve_config(action, block.config)
    for label in missing:
        warnings.append(
            CompileWarning(block.id, f"Required config field '{label}' of action '{action.display_name}' has no value")
        )
    return BoundAction(
        action_id=action.id,
        action_name=action.display_name,
        function_name=fn_name,
        code=code,
        config=config,
        wrapped=action.wrap_in_analysis,
    )


def _arity_ok(edges: List[Edge], block: Block, warnings: List[CompileWarning]) -> bool:
    expected = REQUIRED_INBOUND.get(block.kind)
    found = len(incoming(edges, block.id))
    if expected is None or found == expected:
        return True
    noun = "input" if expected == 1 else "inputs"
    warnings.append(
        CompileWarning(
            block.id,
            f"{block.kind.value.capitalize()} block '{block.display_name}' requires exactly {expected} {noun}, "
            f"found {found}; skipped",
        )
    )
    return False


def lower_flow(
    flow: Flow,
    registry: ActionRegistry,
    *,
    item_limit: Optional[int] = None,
    model_config: Optional[ModelConfig] = None,
    endpoint: Optional[LLMEndpoint] = None,
) -> ProgramIR:
    """Validate *flow*, bind actions and build the ordered pipeline steps.

    Raises:
        CompileError: bad edge transition or directed cycle.
    """
    try:
        edges, issues = validate_flow(flow)
    except GraphError as e:
        raise CompileError(str(e)) from e

    warnings: list[CompileWarning] = [CompileWarning(i.block_id, i.message) for i in issues]
    by_id: Dict[str, Block] = {b.id: b for b in flow.blocks}

    bound: Dict[str, BoundAction] = {}
    for block in flow.blocks:
        b = bind_action(block, registry, warnings)
        if b is not None:
            bound[block.id] = b

    callers = tuple(
        CallerStep(block_id=b.id, block_name=b.display_name, kind=b.kind, action=bound[b.id])
        for b in flow.blocks
        if b.kind in (BlockKind.IMPORT, BlockKind.TRANSFORM) and b.id in bound
    )

    chains: list[ProcessingChain] = []
    for block in flow.blocks_of(BlockKind.IMPORT):
        if not block.file:
            warnings.append(CompileWarning(block.id, f"Import block '{block.display_name}' has no file; it yields no records"))
        stages = tuple(
            ChainStage(block_id=tid, block_name=by_id[tid].display_name, parent_id=parent)
            for tid, parent in transform_chain(flow, edges, block.id)
        )
        chains.append(ProcessingChain(import_id=block.id, import_name=block.display_name, file=block.file, stages=stages))

    comparisons: list[ComparisonStep] = []
    for block in flow.blocks_of(BlockKind.COMPARISON):
        if not _arity_ok(edges, block, warnings):
            continue
        action = bound.get(block.id)
        if action is None:
            warnings.append(CompileWarning(block.id, f"Comparison block '{block.display_name}' has no comparison action; skipped"))
            continue
        first, second = (e.source for e in incoming(edges, block.id))
        labels = []
        for source in (first, second):
            origin = nearest_import(flow, edges, source)
            labels.append(origin.display_name if origin is not None else by_id[source].display_name)
        comparisons.append(
            ComparisonStep(
                block_id=block.id,
                block_name=block.display_name,
                sources=(first, second),
                source_labels=(labels[0], labels[1]),
                action=action,
            )
        )

    compared = {c.block_id for c in comparisons}
    exports: list[ExportStep] = []
    for block in flow.blocks_of(BlockKind.EXPORT):
        if not _arity_ok(edges, block, warnings):
            continue
        source = by_id[incoming(edges, block.id)[0].source]
        from_comparison = source.kind == BlockKind.COMPARISON
        if from_comparison and source.id not in compared:
            warnings.append(
                CompileWarning(block.id, f"Export block '{block.display_name}' reads from skipped comparison '{source.display_name}'")
            )
        if not block.output_filename:
            warnings.append(CompileWarning(block.id, f"Export block '{block.display_name}' has no output file"))
        exports.append(
            ExportStep(
                block_id=block.id,
                block_name=block.display_name,
                source_id=source.id,
                source_is_comparison=from_comparison,
                output_path=block.output_path,
                output_filename=block.output_filename,
                action=bound.get(block.id),
            )
        )

    limit = max(0, int(item_limit)) if item_limit is not None else None
    return ProgramIR(
        flow_id=flow.id,
        flow_name=flow.name or flow.id,
        llm_config=llm_config_dict(model_config or ModelConfig(), endpoint or LLMEndpoint()),
        item_limit=limit,
        callers=callers,
        chains=tuple(chains),
        comparisons=tuple(comparisons),
        exports=tuple(exports),
        warnings=tuple(warnings),
    )

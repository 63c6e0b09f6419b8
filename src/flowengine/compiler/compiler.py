"""Flow → program text compiler (pure; no I/O)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple, Union

from ..actions.registry import ActionRegistry, LayeredActionRegistry
from ..core.config import LLMEndpoint, ModelConfig
from ..flow.models import Action, ExecutionRequest, Flow, load_flow_json
from .codegen import FLOW_ENTRYPOINT, emit_program
from .ir import CompileError, CompileWarning, ProgramIR
from .lowering import lower_flow


@dataclass(frozen=True)
class CompiledProgram:
    """Program text plus the warnings collected while compiling it."""

    text: str
    warnings: Tuple[CompileWarning, ...] = ()
    entrypoint: str = FLOW_ENTRYPOINT


def _as_registry(actions: Union[ActionRegistry, Iterable[Action], None]) -> ActionRegistry:
    if actions is None:
        return LayeredActionRegistry()
    if isinstance(actions, ActionRegistry):
        return actions
    return LayeredActionRegistry(actions)


def build_ir(
    flow: Union[Flow, Any],
    actions: Union[ActionRegistry, Iterable[Action], None] = None,
    *,
    item_limit: Optional[int] = None,
    model_config: Optional[ModelConfig] = None,
    endpoint: Optional[LLMEndpoint] = None,
) -> ProgramIR:
    """Lower a flow (dataclass or JSON dict) to its `ProgramIR`."""
    if not isinstance(flow, Flow):
        flow = load_flow_json(flow)
    return lower_flow(
        flow,
        _as_registry(actions),
        item_limit=item_limit,
        model_config=model_config,
        endpoint=endpoint,
    )


def compile_flow(
    flow: Union[Flow, Any],
    actions: Union[ActionRegistry, Iterable[Action], None] = None,
    *,
    item_limit: Optional[int] = None,
    model_config: Optional[ModelConfig] = None,
    endpoint: Optional[LLMEndpoint] = None,
) -> CompiledProgram:
    """Compile *flow* into a single Python program exposing `async def run_flow()`.

    Unresolved actions and arity problems become warnings; the affected node is
    passed through or skipped. Only structural violations raise.

    Raises:
        CompileError: an edge breaks the transition table, or the graph has a cycle.
    """
    ir = build_ir(flow, actions, item_limit=item_limit, model_config=model_config, endpoint=endpoint)
    return CompiledProgram(text=emit_program(ir), warnings=ir.warnings)


def compile_request(request: ExecutionRequest, *, endpoint: Optional[LLMEndpoint] = None) -> CompiledProgram:
    return compile_flow(
        request.flow,
        request.actions,
        item_limit=request.item_limit,
        model_config=request.model_config,
        endpoint=endpoint,
    )


__all__ = ["CompileError", "CompiledProgram", "build_ir", "compile_flow", "compile_request"]

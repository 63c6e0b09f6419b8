"""Intermediate representation between graph lowering and code emission.

A `ProgramIR` is an ordered list of typed pipeline steps. It is built by
`lowering.lower_flow` and consumed by `codegen.emit_program`; nothing in here
knows about source text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..flow.models import BlockKind


class CompileError(ValueError):
    """Raised when a flow violates a structural invariant and cannot be compiled."""


@dataclass(frozen=True)
class CompileWarning:
    """Non-fatal compile problem. The affected node is skipped or passed through."""

    block_id: Optional[str]
    message: str

    def __str__(self) -> str:
        return f"[{self.block_id}] {self.message}" if self.block_id else self.message


@dataclass(frozen=True)
class BoundAction:
    """An action bound to one block: prepared code plus its literal config."""

    action_id: str
    action_name: str
    function_name: str
    code: str
    config: Dict[str, Any] = field(default_factory=dict)
    wrapped: bool = True


@dataclass(frozen=True)
class CallerStep:
    """Caller for an import or transform block."""

    block_id: str
    block_name: str
    kind: BlockKind
    action: BoundAction

    @property
    def label(self) -> str:
        return f"{self.block_name}: {self.action.action_name}"


@dataclass(frozen=True)
class ChainStage:
    block_id: str
    block_name: str
    # Stage whose output this transform consumes (the import id for first stages).
    parent_id: str


@dataclass(frozen=True)
class ProcessingChain:
    import_id: str
    import_name: str
    file: Optional[str]
    stages: Tuple[ChainStage, ...] = ()

    @property
    def terminal_id(self) -> str:
        return self.stages[-1].block_id if self.stages else self.import_id


@dataclass(frozen=True)
class ComparisonStep:
    block_id: str
    block_name: str
    sources: Tuple[str, str]
    source_labels: Tuple[str, str]
    action: BoundAction


@dataclass(frozen=True)
class ExportStep:
    block_id: str
    block_name: str
    source_id: str
    source_is_comparison: bool
    output_path: Optional[str]
    output_filename: Optional[str]
    # None exports the upstream data unchanged.
    action: Optional[BoundAction] = None

    @property
    def action_name(self) -> str:
        return self.action.action_name if self.action is not None else "Pass-through"


@dataclass(frozen=True)
class ProgramIR:
    flow_id: str
    flow_name: str
    llm_config: Dict[str, Any]
    item_limit: Optional[int] = None
    callers: Tuple[CallerStep, ...] = ()
    chains: Tuple[ProcessingChain, ...] = ()
    comparisons: Tuple[ComparisonStep, ...] = ()
    exports: Tuple[ExportStep, ...] = ()
    warnings: Tuple[CompileWarning, ...] = ()

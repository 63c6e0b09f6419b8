"""flowengine.compiler

Flow graph → executable Python program.

Stages: graph validation → action binding → `ProgramIR` → code emission.
The emitted program imports the analysis library on its first line and
exposes one awaited entry point (`FLOW_ENTRYPOINT`).
"""

from .codegen import ANALYSIS_IMPORT_LINE, FLOW_ENTRYPOINT, emit_program
from .compiler import CompiledProgram, build_ir, compile_flow, compile_request
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
from .lowering import lower_flow
from .snippets import find_entry_function, normalize_config_key, resolve_config, strip_type_annotations

__all__ = [
    "ANALYSIS_IMPORT_LINE",
    "FLOW_ENTRYPOINT",
    "BoundAction",
    "CallerStep",
    "ChainStage",
    "CompileError",
    "CompileWarning",
    "CompiledProgram",
    "ComparisonStep",
    "ExportStep",
    "ProcessingChain",
    "ProgramIR",
    "build_ir",
    "compile_flow",
    "compile_request",
    "emit_program",
    "find_entry_function",
    "lower_flow",
    "normalize_config_key",
    "resolve_config",
    "strip_type_annotations",
]

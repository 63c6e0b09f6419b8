"""Stdlib-only models for flows and actions.

These are intentionally permissive:
- They accept unknown/extra fields (ignored).
- Blocks accept either `kind` or the editor's `type` key.
- Actions accept `wrapInAitomics` (editor JSON) or `wrap_in_analysis`.

The compiler is responsible for checking graph invariants; loaders only
normalise shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..core.config import ModelConfig


class BlockKind(str, Enum):
    IMPORT = "import"
    TRANSFORM = "transform"
    COMPARISON = "comparison"
    EXPORT = "export"


class ActionType(str, Enum):
    INPUT = "input"
    OUTPUT = "output"
    TRANSFORM = "transform"
    COMPARISON = "comparison"


# Which action type a block of a given kind may bind.
COMPATIBLE_ACTION_TYPE: Dict[BlockKind, ActionType] = {
    BlockKind.IMPORT: ActionType.INPUT,
    BlockKind.TRANSFORM: ActionType.TRANSFORM,
    BlockKind.COMPARISON: ActionType.COMPARISON,
    BlockKind.EXPORT: ActionType.OUTPUT,
}

CONFIG_FIELD_TYPES = ("text", "number", "boolean", "select", "json", "list", "markdown")


@dataclass(frozen=True)
class ActionConfigField:
    type: str
    label: str
    required: bool = False
    default_value: Any = None
    has_default: bool = False
    options: Tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class Action:
    id: str
    type: ActionType
    code: str
    name: str = ""
    config: Tuple[ActionConfigField, ...] = ()
    wrap_in_analysis: bool = True
    description: str = ""
    is_builtin: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Block:
    id: str
    kind: BlockKind
    name: str = ""
    action_id: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)
    file: Optional[str] = None
    output_path: Optional[str] = None
    output_filename: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str


@dataclass(frozen=True)
class Flow:
    id: str
    name: str = ""
    blocks: List[Block] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)

    def block(self, block_id: str) -> Optional[Block]:
        for b in self.blocks:
            if b.id == block_id:
                return b
        return None

    def blocks_of(self, kind: BlockKind) -> List[Block]:
        return [b for b in self.blocks if b.kind == kind]


@dataclass(frozen=True)
class ExecutionRequest:
    """One run: a flow snapshot, the user actions it may reference, and run parameters."""

    flow: Flow
    actions: List[Action] = field(default_factory=list)
    item_limit: Optional[int] = None
    model_config: ModelConfig = field(default_factory=ModelConfig)


def _as_dict(raw: Any) -> Any:
    if hasattr(raw, "model_dump"):
        try:
            return raw.model_dump(mode="json")  # type: ignore[call-arg]
        except TypeError:
            return raw.model_dump()
    return raw


def _coerce_enum(enum_cls: Any, value: Any) -> Any:
    if isinstance(value, enum_cls):
        return value
    s = str(value.value if isinstance(value, Enum) else value or "").strip().lower()
    # Serializers may stringify enums as "BlockKind.IMPORT".
    if "." in s:
        s = s.split(".", 1)[1]
    return enum_cls(s)


def _opt_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_config_field(raw: Any) -> Optional[ActionConfigField]:
    if not isinstance(raw, Mapping):
        return None
    label = str(raw.get("label") or "").strip()
    if not label:
        return None
    ftype = str(raw.get("type") or "text").strip().lower()
    if ftype not in CONFIG_FIELD_TYPES:
        ftype = "text"
    has_default = "defaultValue" in raw or "default_value" in raw
    default = raw.get("defaultValue", raw.get("default_value"))
    options_raw = raw.get("options")
    options = tuple(str(o) for o in options_raw) if isinstance(options_raw, list) else ()
    return ActionConfigField(
        type=ftype,
        label=label,
        required=bool(raw.get("required", False)),
        default_value=default,
        has_default=has_default,
        options=options,
        description=str(raw.get("description") or ""),
    )


def load_action_json(raw: Any) -> Action:
    """Parse one action object (editor JSON) into an `Action`."""
    raw = _as_dict(raw)
    if not isinstance(raw, Mapping):
        raise TypeError("Action must be a JSON object (dict)")

    aid = str(raw.get("id") or "").strip()
    if not aid:
        raise ValueError("Action missing required 'id'")

    atype = _coerce_enum(ActionType, raw.get("type"))

    fields_raw = raw.get("config")
    fields: list[ActionConfigField] = []
    if isinstance(fields_raw, list):
        for f in fields_raw:
            parsed = _load_config_field(f)
            if parsed is not None:
                fields.append(parsed)

    # Only an explicit `false` disables wrapping.
    wrap = raw.get("wrapInAitomics", raw.get("wrap_in_analysis"))

    return Action(
        id=aid,
        type=atype,
        code=str(raw.get("code") or ""),
        name=str(raw.get("name") or ""),
        config=tuple(fields),
        wrap_in_analysis=wrap is not False,
        description=str(raw.get("description") or ""),
        is_builtin=bool(raw.get("isBuiltIn", False)),
    )


def load_actions_json(raw: Any) -> List[Action]:
    """Parse a list of actions, skipping entries that are not objects."""
    raw = _as_dict(raw)
    if isinstance(raw, Mapping) and isinstance(raw.get("actions"), list):
        raw = raw["actions"]
    if not isinstance(raw, list):
        raise TypeError("Actions must be a JSON array")
    return [load_action_json(a) for a in raw if isinstance(a, Mapping)]


def _load_block(raw: Mapping[str, Any]) -> Optional[Block]:
    bid = str(raw.get("id") or "").strip()
    if not bid:
        return None
    kind_raw = raw.get("kind", raw.get("type"))
    try:
        kind = _coerce_enum(BlockKind, kind_raw)
    except ValueError:
        # Editor-only blocks (text/markdown notes) carry no execution semantics.
        return None
    config = raw.get("config")
    return Block(
        id=bid,
        kind=kind,
        name=str(raw.get("name") or ""),
        action_id=_opt_str(raw.get("actionId", raw.get("action_id"))),
        config=dict(config) if isinstance(config, Mapping) else {},
        file=_opt_str(raw.get("file")),
        output_path=_opt_str(raw.get("outputPath", raw.get("output_path"))),
        output_filename=_opt_str(raw.get("outputFilename", raw.get("output_filename"))),
    )


def load_flow_json(raw: Any) -> Flow:
    """Parse a flow JSON object (dict) into stdlib dataclasses.

    Also accepts Pydantic-like models by calling `model_dump()`.
    """
    raw = _as_dict(raw)
    if not isinstance(raw, Mapping):
        raise TypeError("Flow must be a JSON object (dict)")

    fid = str(raw.get("id") or "").strip()
    if not fid:
        raise ValueError("Flow missing required 'id'")

    blocks: list[Block] = []
    blocks_raw = raw.get("blocks")
    if isinstance(blocks_raw, list):
        for b in blocks_raw:
            if not isinstance(b, Mapping):
                continue
            block = _load_block(b)
            if block is not None:
                blocks.append(block)

    edges: list[Edge] = []
    edges_raw = raw.get("edges")
    if isinstance(edges_raw, list):
        for i, e in enumerate(edges_raw):
            if not isinstance(e, Mapping):
                continue
            src = str(e.get("source") or "").strip()
            tgt = str(e.get("target") or "").strip()
            if not src or not tgt:
                continue
            eid = str(e.get("id") or "").strip() or f"edge-{i}"
            edges.append(Edge(id=eid, source=src, target=tgt))

    return Flow(id=fid, name=str(raw.get("name") or ""), blocks=blocks, edges=edges)


def load_execution_request(raw: Any) -> ExecutionRequest:
    """Parse `{flow, actions, itemLimit?, modelConfig}` into an `ExecutionRequest`."""
    raw = _as_dict(raw)
    if not isinstance(raw, Mapping):
        raise TypeError("ExecutionRequest must be a JSON object (dict)")
    flow = load_flow_json(raw.get("flow"))
    actions_raw = raw.get("actions")
    actions = load_actions_json(actions_raw) if isinstance(actions_raw, list) else []
    limit = raw.get("itemLimit", raw.get("item_limit"))
    item_limit = int(limit) if isinstance(limit, (int, float)) and not isinstance(limit, bool) else None
    return ExecutionRequest(
        flow=flow,
        actions=actions,
        item_limit=item_limit,
        model_config=ModelConfig.from_dict(raw.get("modelConfig", raw.get("model_config"))),
    )

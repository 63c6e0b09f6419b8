"""Flow graph data model and traversals."""

from .graph import GraphError, GraphIssue, validate_flow
from .models import (
    Action,
    ActionConfigField,
    ActionType,
    Block,
    BlockKind,
    Edge,
    ExecutionRequest,
    Flow,
    load_action_json,
    load_actions_json,
    load_execution_request,
    load_flow_json,
)

__all__ = [
    "Action",
    "ActionConfigField",
    "ActionType",
    "Block",
    "BlockKind",
    "Edge",
    "ExecutionRequest",
    "Flow",
    "GraphError",
    "GraphIssue",
    "load_action_json",
    "load_actions_json",
    "load_execution_request",
    "load_flow_json",
    "validate_flow",
]

"""Action registry and built-in actions."""

from .builtins import BUILTIN_ACTIONS, get_builtin_action
from .registry import ActionRegistry, LayeredActionRegistry

__all__ = ["ActionRegistry", "LayeredActionRegistry", "BUILTIN_ACTIONS", "get_builtin_action"]

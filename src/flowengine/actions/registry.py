"""Action lookup for the compiler.

Ids resolve against the built-in table first, then against user-defined
actions, so a user action cannot shadow a built-in.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from ..flow.models import Action
from .builtins import BUILTIN_ACTIONS


@runtime_checkable
class ActionRegistry(Protocol):
    def get(self, action_id: str) -> Optional[Action]: ...

    def ids(self) -> List[str]: ...


class LayeredActionRegistry:
    """Built-ins layered over user actions (read-only)."""

    def __init__(self, user_actions: Iterable[Action] = (), builtins: Iterable[Action] = BUILTIN_ACTIONS):
        self._builtins: Dict[str, Action] = {a.id: a for a in builtins}
        self._user: Dict[str, Action] = {}
        for a in user_actions:
            # First definition wins, mirroring the built-ins-first rule.
            self._user.setdefault(a.id, a)

    def get(self, action_id: str) -> Optional[Action]:
        key = str(action_id or "")
        if key in self._builtins:
            return self._builtins[key]
        return self._user.get(key)

    def ids(self) -> List[str]:
        out = list(self._builtins)
        out.extend(k for k in self._user if k not in self._builtins)
        return out

    def __contains__(self, action_id: object) -> bool:
        return isinstance(action_id, str) and self.get(action_id) is not None

    def __len__(self) -> int:
        return len(self.ids())

"""Traceable, cacheable callers.

A caller turns one `Response` into the next. `traced()` is the single entry
point generated programs use to wrap a plain function or an LLM prompt.
"""

from __future__ import annotations

import hashlib
import inspect
import json
from typing import Any, Callable, Dict, Optional

from .llm import RequestSender, chat_completion
from .response import Response


def _cache_key(value: Any) -> Optional[str]:
    try:
        raw = json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return None
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class Caller:
    """Base caller: handles response wrapping and the per-caller cache."""

    def __init__(self, label: str = "", *, cache: bool = True):
        self.label = str(label or "")
        self._cache_enabled = cache
        self._cache: Dict[str, Any] = {}

    async def _call(self, value: Any) -> Any:
        raise NotImplementedError

    async def run(self, value: Any) -> Response:
        source = value if isinstance(value, Response) else Response.create(value, value, "input")
        key = _cache_key(source.output) if self._cache_enabled else None
        if key is not None and key in self._cache:
            return Response.create(self._cache[key], source, self.label)
        output = await self._call(source.output)
        if key is not None:
            self._cache[key] = output
        return Response.create(output, source, self.label)

    def clear_cache(self) -> None:
        self._cache.clear()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(label={self.label!r})"


class FunctionCaller(Caller):
    def __init__(self, fn: Callable[[Any], Any], label: str = "", *, cache: bool = True):
        super().__init__(label or getattr(fn, "__name__", ""), cache=cache)
        self._fn = fn

    async def _call(self, value: Any) -> Any:
        result = self._fn(value)
        if inspect.isawaitable(result):
            result = await result
        return result


class PromptCaller(Caller):
    def __init__(self, prompt: str, label: str = "", *, sender: Optional[RequestSender] = None, cache: bool = True):
        super().__init__(label, cache=cache)
        self.prompt = str(prompt)
        self._sender = sender

    async def _call(self, value: Any) -> Any:
        return await chat_completion(self.prompt, value, sender=self._sender)


def traced(target: Any, label: str = "", **kwargs: Any) -> Caller:
    """Wrap *target* in a caller.

    - `Caller` → returned unchanged
    - `str` → LLM prompt caller
    - callable → function caller
    """
    if isinstance(target, Caller):
        return target
    if isinstance(target, str):
        return PromptCaller(target, label, **kwargs)
    if callable(target):
        return FunctionCaller(target, label, **kwargs)
    raise TypeError(f"Cannot build a caller from {type(target).__name__}")

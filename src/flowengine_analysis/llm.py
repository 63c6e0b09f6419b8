"""Chat completion calls against a local OpenAI-compatible server."""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .config import completions_url, get_config

# (url, json_body, timeout_s) -> parsed JSON body
RequestSender = Callable[[str, Dict[str, Any], float], Awaitable[Dict[str, Any]]]


class LLMCallError(RuntimeError):
    """Raised when the endpoint answers with something that is not a completion."""


async def httpx_send(url: str, body: Dict[str, Any], timeout_s: float) -> Dict[str, Any]:
    async with httpx.AsyncClient(timeout=timeout_s) as client:
        resp = await client.post(url, json=body)
        resp.raise_for_status()
        data = resp.json()
    if not isinstance(data, dict):
        raise LLMCallError("Chat completion response must be a JSON object")
    return data


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def build_messages(prompt: str, content: Any) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": str(prompt)},
        {"role": "user", "content": _as_text(content)},
    ]


async def chat_completion(
    prompt: str,
    content: Any,
    *,
    config: Optional[Dict[str, Any]] = None,
    sender: Optional[RequestSender] = None,
) -> str:
    """Run *prompt* over *content* and return the assistant message text."""
    cfg = config or get_config()
    body: Dict[str, Any] = {"model": cfg.get("model"), "messages": build_messages(prompt, content)}
    settings = cfg.get("settings")
    if isinstance(settings, dict):
        for key in ("temperature", "max_tokens", "stream", "stop", "seed"):
            if key in settings and settings[key] is not None:
                body[key] = settings[key]

    send = sender or httpx_send
    data = await send(completions_url(cfg), body, float(cfg.get("timeout_s") or 120.0))
    try:
        message = (data.get("choices") or [])[0].get("message") or {}
    except (IndexError, AttributeError) as e:
        raise LLMCallError(f"Malformed chat completion response: {_as_text(data)[:200]}") from e
    content_out = message.get("content")
    if not isinstance(content_out, str):
        raise LLMCallError("Chat completion response has no message content")
    return content_out.strip()

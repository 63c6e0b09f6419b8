"""Local model discovery against an LM Studio server.

LM Studio exposes `GET /api/v0/models` (developer mode) returning
`{"data": [{"id": ..., "type": "llm"|"embeddings", "state": ...}, ...]}`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from ..core.config import LLMEndpoint
from ..logging import get_logger

logger = get_logger(__name__)

DEFAULT_MODELS_TIMEOUT_S = 5.0


class ModelListError(RuntimeError):
    """Raised when the model list cannot be fetched."""


class RequestSender(Protocol):
    def get(self, url: str, *, timeout: float) -> Dict[str, Any]: ...


class HttpxRequestSender:
    """Default request sender based on httpx (sync)."""

    def __init__(self):
        import httpx

        self._httpx = httpx

    def get(self, url: str, *, timeout: float) -> Dict[str, Any]:
        resp = self._httpx.get(url, timeout=timeout)
        resp.raise_for_status()
        body = resp.json()
        return body if isinstance(body, dict) else {"data": body}


@dataclass(frozen=True)
class LocalModel:
    id: str
    type: str = "llm"
    state: str = ""
    publisher: str = ""

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "LocalModel":
        return cls(
            id=str(raw.get("id") or ""),
            type=str(raw.get("type") or "llm"),
            state=str(raw.get("state") or ""),
            publisher=str(raw.get("publisher") or ""),
        )


def models_url(endpoint: LLMEndpoint) -> str:
    return f"{endpoint.base_url}/{endpoint.models_endpoint.lstrip('/')}"


def list_local_models(
    endpoint: Optional[LLMEndpoint] = None,
    *,
    sender: Optional[RequestSender] = None,
    timeout_s: float = DEFAULT_MODELS_TIMEOUT_S,
    llm_only: bool = True,
) -> List[LocalModel]:
    """Fetch models known to the local server.

    Raises:
        ModelListError: the server is unreachable or answers with an error.
    """
    ep = endpoint or LLMEndpoint()
    url = models_url(ep)
    send = sender or HttpxRequestSender()
    try:
        body = send.get(url, timeout=timeout_s)
    except Exception as e:
        logger.warning("Failed to fetch local models", url=url, error=str(e))
        raise ModelListError(
            f"Failed to fetch models from {url}: {e}. Ensure LM Studio is running with developer mode enabled."
        ) from e

    items = body.get("data") or []
    models = [LocalModel.from_dict(m) for m in items if isinstance(m, dict) and m.get("id")]
    if llm_only:
        models = [m for m in models if m.type in ("llm", "vlm")]
    return models

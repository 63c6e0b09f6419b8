"""Process-wide analysis configuration (set once by the generated program)."""

from __future__ import annotations

import copy
from typing import Any, Dict, Optional

DEFAULT_CONFIG: Dict[str, Any] = {
    "model": "llama-3.2-3b-instruct",
    "path": "http://127.0.0.1",
    "port": 1234,
    "endpoint": "v1/chat/completions",
    "timeout_s": 120.0,
    "settings": {"temperature": 0.7, "max_tokens": -1, "stream": False},
}

_config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)


def set_config_from_object(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge *config* over the defaults and make it the active config."""
    global _config
    merged = copy.deepcopy(DEFAULT_CONFIG)
    if isinstance(config, dict):
        for key, value in config.items():
            if key == "settings" and isinstance(value, dict):
                merged["settings"].update(value)
            else:
                merged[key] = value
    _config = merged
    return get_config()


def get_config() -> Dict[str, Any]:
    return copy.deepcopy(_config)


def completions_url(config: Optional[Dict[str, Any]] = None) -> str:
    cfg = config or _config
    base = str(cfg.get("path") or DEFAULT_CONFIG["path"]).rstrip("/")
    port = cfg.get("port")
    endpoint = str(cfg.get("endpoint") or DEFAULT_CONFIG["endpoint"]).lstrip("/")
    if port:
        return f"{base}:{port}/{endpoint}"
    return f"{base}/{endpoint}"

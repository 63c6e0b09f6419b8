"""flowengine.core.config

Engine configuration: model parameters for generated programs, the local LLM
endpoint they call, and the supervisor's timing limits.

All config objects are frozen dataclasses so a single `EngineConfig` can be
shared by concurrent runs without copying.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

DEFAULT_MODEL = "llama-3.2-3b-instruct"
DEFAULT_TEMPERATURE = 0.7
# -1 means "provider default" for OpenAI-compatible local servers.
DEFAULT_MAX_TOKENS = -1

DEFAULT_RUN_TIMEOUT_S = 300.0
DEFAULT_GRACE_PERIOD_S = 0.1
DEFAULT_KILL_CHECK_DELAY_S = 0.1


@dataclass(frozen=True)
class ModelConfig:
    """Model parameters applied once by the generated program.

    Attributes:
        model: Model id sent to the chat completions endpoint.
        temperature: Sampling temperature.
        max_tokens: Output token cap (-1 = provider default).
    """

    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "ModelConfig":
        if not isinstance(raw, Mapping):
            return cls()
        model = raw.get("model")
        temperature = raw.get("temperature")
        max_tokens = raw.get("maxTokens", raw.get("max_tokens"))
        return cls(
            model=str(model).strip() if isinstance(model, str) and model.strip() else DEFAULT_MODEL,
            temperature=float(temperature) if isinstance(temperature, (int, float)) else DEFAULT_TEMPERATURE,
            max_tokens=int(max_tokens) if isinstance(max_tokens, (int, float)) else DEFAULT_MAX_TOKENS,
        )


@dataclass(frozen=True)
class LLMEndpoint:
    """Where generated programs send chat completion requests."""

    path: str = "http://127.0.0.1"
    port: int = 1234
    endpoint: str = "v1/chat/completions"
    models_endpoint: str = "api/v0/models"

    @property
    def base_url(self) -> str:
        return f"{self.path.rstrip('/')}:{self.port}"

    @classmethod
    def from_base_url(cls, base_url: str) -> "LLMEndpoint":
        """Parse `http://host:port` into an endpoint (port defaults to 1234)."""
        s = str(base_url or "").strip().rstrip("/")
        if not s:
            return cls()
        scheme, sep, rest = s.partition("://")
        if not sep:
            scheme, rest = "http", s
        host, _, port = rest.partition(":")
        try:
            port_i = int(port) if port else 1234
        except ValueError:
            port_i = 1234
        return cls(path=f"{scheme}://{host}", port=port_i)


def llm_config_dict(model: ModelConfig, endpoint: LLMEndpoint) -> Dict[str, Any]:
    """Build the config object passed to `set_config_from_object` in generated code."""
    return {
        "model": model.model,
        "path": endpoint.path,
        "port": endpoint.port,
        "endpoint": endpoint.endpoint,
        "settings": {
            "temperature": model.temperature,
            "max_tokens": model.max_tokens,
            "stream": False,
        },
    }


@dataclass(frozen=True)
class EngineConfig:
    """Supervisor and code generation settings.

    Attributes:
        run_timeout_s: Wall-clock limit for one run, started at launch.
        grace_period_s: Wait after the cooperative terminate request.
        kill_check_delay_s: Wait between SIGTERM and the liveness re-check.
        python_executable: Interpreter for child processes (None = sys.executable).
        llm: Endpoint baked into generated programs.
        extra_env: Additional environment variables for the child.

    Example:
        >>> cfg = EngineConfig(run_timeout_s=30)
        >>> cfg.run_timeout_s
        30
    """

    run_timeout_s: float = DEFAULT_RUN_TIMEOUT_S
    grace_period_s: float = DEFAULT_GRACE_PERIOD_S
    kill_check_delay_s: float = DEFAULT_KILL_CHECK_DELAY_S
    python_executable: Optional[str] = None
    llm: LLMEndpoint = field(default_factory=LLMEndpoint)
    extra_env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Build a config honouring `FLOWENGINE_*` environment overrides."""
        env = os.environ if environ is None else environ
        timeout = DEFAULT_RUN_TIMEOUT_S
        raw_timeout = str(env.get("FLOWENGINE_TIMEOUT_S") or "").strip()
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                timeout = DEFAULT_RUN_TIMEOUT_S
        base_url = str(env.get("FLOWENGINE_LLM_BASE_URL") or "").strip()
        llm = LLMEndpoint.from_base_url(base_url) if base_url else LLMEndpoint()
        python = str(env.get("FLOWENGINE_PYTHON") or "").strip() or None
        return cls(run_timeout_s=timeout, llm=llm, python_executable=python)

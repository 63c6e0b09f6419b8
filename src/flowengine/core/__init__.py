"""Core engine configuration."""

from .config import EngineConfig, LLMEndpoint, ModelConfig, llm_config_dict

__all__ = ["EngineConfig", "LLMEndpoint", "ModelConfig", "llm_config_dict"]

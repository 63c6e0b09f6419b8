"""flowengine_analysis

Runtime library imported by compiled flow programs: response lineage,
traced callers (functions or LLM prompts), text transforms and agreement
metrics.
"""

from . import transforms
from .caller import Caller, FunctionCaller, PromptCaller, traced
from .comparison import CohensComparisonModel, ComparisonModel, KrippendorffsComparisonModel
from .config import get_config, set_config_from_object
from .llm import LLMCallError, chat_completion
from .response import Response, output_of

__all__ = [
    "Response",
    "output_of",
    "Caller",
    "FunctionCaller",
    "PromptCaller",
    "traced",
    "transforms",
    "ComparisonModel",
    "CohensComparisonModel",
    "KrippendorffsComparisonModel",
    "set_config_from_object",
    "get_config",
    "chat_completion",
    "LLMCallError",
]

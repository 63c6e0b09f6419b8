"""Logging adapter for FlowEngine.

We use AbstractCore's structured logger so engine logs share one format with
the rest of the stack. Call sites pass context as keyword arguments:

    logger.warning("Action not found", block_id=block.id)
"""

from __future__ import annotations

from typing import Any

from abstractcore.utils.structured_logging import get_logger as _get_logger


def get_logger(name: str) -> Any:
    """Return a structured logger for *name*."""
    return _get_logger(name)

"""Integrations with local services."""

from .lmstudio import LocalModel, ModelListError, list_local_models

__all__ = ["LocalModel", "ModelListError", "list_local_models"]

"""Models layer for the impact_engine_mortality package."""

from .base import (
    FitTimeoutError,
    FittedModel,
    ModelExclusion,
    ModelInterface,
    ModelVariant,
    NoInformativeCovariateError,
)
from .factory import MODEL_REGISTRY, create_connected_adapter, get_model_adapter
from .manager import ModelsManager

__all__ = [
    "FitTimeoutError",
    "FittedModel",
    "MODEL_REGISTRY",
    "ModelExclusion",
    "ModelInterface",
    "ModelVariant",
    "ModelsManager",
    "NoInformativeCovariateError",
    "create_connected_adapter",
    "get_model_adapter",
]

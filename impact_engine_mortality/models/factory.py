"""
Factory functions for model adapters.

Adapters self-register on MODEL_REGISTRY via decorator; this module keeps the
lookup in one place so the manager and engine never import adapters directly.
"""

from ..core.context import AnalysisContext
from ..core.registry import Registry
from .base import ModelInterface, ModelVariant

# Registry of available models - adapters self-register via decorator.
# "best" is selected from the fitted variants and never has an adapter.
MODEL_REGISTRY: Registry[ModelInterface] = Registry(ModelInterface, ModelVariant, "model", reserved=[ModelVariant.BEST])


def get_model_adapter(variant: str) -> ModelInterface:
    """Get a new instance of the model adapter for the given variant.

    Raises:
        ValueError: If the variant is unknown, "best" or not registered.
    """
    return MODEL_REGISTRY.get(variant)


def create_connected_adapter(variant: str, context: AnalysisContext) -> ModelInterface:
    """Instantiate and connect the adapter for ``variant``.

    Raises:
        ValueError: If the variant is not registered.
        ConnectionError: If the adapter refuses the context.
    """
    model = get_model_adapter(variant)
    if not model.connect(context):
        raise ConnectionError(f"Failed to connect to {variant} model")
    return model


# Import adapters to trigger self-registration via decorators
# These imports must be at the end after MODEL_REGISTRY is defined
from .covariate_regression import CovariateRegressionAdapter  # noqa: E402, F401
from .interrupted_time_series import SegmentedRegressionAdapter  # noqa: E402, F401
from .synthetic_control import SyntheticControlAdapter  # noqa: E402, F401
from .time_trend import TimeTrendAdapter  # noqa: E402, F401

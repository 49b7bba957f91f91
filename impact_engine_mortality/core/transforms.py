"""
Covariate transformations.

Covariates enter every covariate-based model through a named transform so
that the log/identity choice is made in one place and looked up from the
run context.
"""

from typing import Callable, Dict

import numpy as np
import pandas as pd

from .context import AnalysisContext

# Transform functions take the covariate frame and the additive offset
TransformFunction = Callable[[pd.DataFrame, float], pd.DataFrame]

TRANSFORM_REGISTRY: Dict[str, TransformFunction] = {}


def register_transform(name: str) -> Callable[[TransformFunction], TransformFunction]:
    """Decorator registering a covariate transform under ``name``."""

    def decorator(func: TransformFunction) -> TransformFunction:
        TRANSFORM_REGISTRY[name] = func
        return func

    return decorator


def get_transform(name: str) -> TransformFunction:
    """Look up a registered transform.

    Raises:
        ValueError: If no transform is registered under ``name``.
    """
    if name not in TRANSFORM_REGISTRY:
        raise ValueError(f"Unknown transform '{name}'. Available: {sorted(TRANSFORM_REGISTRY)}")
    return TRANSFORM_REGISTRY[name]


@register_transform("identity")
def identity(covariates: pd.DataFrame, offset: float) -> pd.DataFrame:
    """Return the covariates unchanged (as float)."""
    return covariates.astype(float)


@register_transform("log")
def log_offset(covariates: pd.DataFrame, offset: float) -> pd.DataFrame:
    """Natural log after adding ``offset`` so zero counts stay finite.

    Raises:
        ValueError: If any value would produce a non-positive log argument.
    """
    shifted = covariates.astype(float) + offset
    if (shifted <= 0).to_numpy().any():
        raise ValueError(f"log transform requires covariate + {offset} > 0")
    return np.log(shifted)


def transform_covariates(covariates: pd.DataFrame, context: AnalysisContext) -> pd.DataFrame:
    """Apply the transform selected by ``context.log_covariates``."""
    name = "log" if context.log_covariates else "identity"
    return get_transform(name)(covariates, context.covariate_offset)

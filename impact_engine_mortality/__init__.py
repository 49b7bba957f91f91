"""
Impact Engine Mortality - counterfactual models for measuring the impact of
a vaccination programme on stratified count time series.
"""

from .core import AnalysisContext, ConfigValidationError, MalformedInputError, SeriesRegistry, StratumSeries, load_config
from .engine import evaluate_impact
from .impact import CumulativePrevented, ImpactSummary, InvalidAggregationRequest, cumulative_prevented
from .models import (
    MODEL_REGISTRY,
    FitTimeoutError,
    FittedModel,
    ModelInterface,
    ModelsManager,
    ModelVariant,
    NoInformativeCovariateError,
)
from .results import ImpactResults, VariantResult
from .screening import CovariateScreener

__version__ = "0.1.0"
__author__ = "eisenhauer.io"


__all__ = [
    "evaluate_impact",
    "load_config",
    "AnalysisContext",
    "ConfigValidationError",
    "MalformedInputError",
    "SeriesRegistry",
    "StratumSeries",
    "CovariateScreener",
    "ModelInterface",
    "ModelsManager",
    "ModelVariant",
    "MODEL_REGISTRY",
    "FittedModel",
    "FitTimeoutError",
    "NoInformativeCovariateError",
    "ImpactSummary",
    "CumulativePrevented",
    "InvalidAggregationRequest",
    "cumulative_prevented",
    "ImpactResults",
    "VariantResult",
]

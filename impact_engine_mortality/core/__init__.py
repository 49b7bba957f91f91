"""Core integration modules for impact-engine-mortality."""

from .context import AnalysisContext
from .contracts import Schema, stratum_frame_schema
from .design import DegenerateCovariateError, check_covariate
from .registry import Registry
from .series import MalformedInputError, SeriesRegistry, StratumSeries
from .transforms import TRANSFORM_REGISTRY, get_transform, register_transform, transform_covariates
from .validation import ConfigValidationError, deep_merge, get_defaults, load_config, process_config

__all__ = [
    "AnalysisContext",
    "ConfigValidationError",
    "DegenerateCovariateError",
    "MalformedInputError",
    "Registry",
    "Schema",
    "SeriesRegistry",
    "StratumSeries",
    "TRANSFORM_REGISTRY",
    "check_covariate",
    "deep_merge",
    "get_defaults",
    "get_transform",
    "load_config",
    "process_config",
    "register_transform",
    "stratum_frame_schema",
    "transform_covariates",
]

"""
Centralized configuration validation for impact-engine-mortality.

Provides a single entry point for config processing:
    load -> merge defaults -> validate structure -> validate parameters

Design principles:
- Schema derived from config_defaults.yaml (null values = required fields)
- Deep merge of user config over defaults
- Fail early with descriptive error messages, collecting every problem
"""

import copy
import json
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

KNOWN_MODELS = ("full", "pca", "time", "its")
BEST_CANDIDATES = ("full", "pca", "time")
FAMILIES = ("poisson", "negative_binomial")
EXECUTORS = ("process", "thread")

_DATE_FIELDS = ("intervention_date", "eval_start", "eval_end")


class ConfigValidationError(ValueError):
    """Exception raised for configuration validation errors."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        context = f" at '{path}'" if path else ""
        super().__init__(f"{message}{context}")


# --- Defaults Loading ---


@lru_cache(maxsize=1)
def get_defaults() -> Dict[str, Any]:
    """Load and cache config_defaults.yaml.

    Returns:
        Dict containing all default values.
    """
    defaults_path = Path(__file__).parent.parent / "config_defaults.yaml"
    if not defaults_path.exists():
        return {}

    with open(defaults_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


# --- Deep Merge ---


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence.

    Args:
        base: Base dictionary (typically defaults).
        override: Override dictionary (typically user config).

    Returns:
        Merged dictionary.
    """
    result = copy.deepcopy(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)

    return result


# --- Validation Pipeline ---


def _validate_file(config_path: str) -> str:
    """Stage 1: Validate file exists and is readable."""
    path = Path(config_path)

    if not path.exists():
        raise ConfigValidationError(f"Configuration file not found: {config_path}")

    if not path.is_file():
        raise ConfigValidationError(f"Path is not a file: {config_path}")

    return str(path.absolute())


def _validate_format(config_path: str) -> Dict[str, Any]:
    """Stage 2: Parse file and validate it's proper YAML/JSON."""
    path = Path(config_path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() in [".json"]:
                return json.load(f)
            elif path.suffix.lower() in [".yaml", ".yml"]:
                return yaml.safe_load(f) or {}
            else:
                # Try JSON first, then YAML
                content = f.read()
                try:
                    return json.loads(content)
                except json.JSONDecodeError:
                    return yaml.safe_load(content) or {}
    except Exception as e:
        raise ConfigValidationError(f"Failed to parse configuration file: {e}")


def _validate_structure(config: Dict[str, Any]) -> List[str]:
    """Stage 3: Validate required sections and fields.

    Returns:
        List of validation errors (empty if valid).
    """
    errors = []

    for section in ("DATA", "PERIODS", "MEASUREMENT", "SAMPLER", "EXECUTION"):
        if not isinstance(config.get(section), dict):
            errors.append(f"Missing required section: {section}")

    data = config.get("DATA") or {}
    for field in ("group_column", "date_column", "outcome_column"):
        if not data.get(field):
            errors.append(f"Missing required field: DATA.{field}")

    periods = config.get("PERIODS") or {}
    if not periods.get("intervention_date"):
        errors.append("Missing required field: PERIODS.intervention_date")

    measurement = config.get("MEASUREMENT") or {}
    if "MODELS" not in measurement:
        errors.append("Missing required field: MEASUREMENT.MODELS")
    if "PARAMS" not in measurement:
        errors.append("Missing required field: MEASUREMENT.PARAMS")

    return errors


def _parse_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        # YAML loads unquoted ISO dates as datetime.date
        return datetime(value.year, value.month, value.day)
    return datetime.strptime(str(value), "%Y-%m-%d")


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_parameters(config: Dict[str, Any]) -> List[str]:
    """Stage 4: Validate parameter values and relationships.

    Validates:
    - Date formats (YYYY-MM-DD) and ordering of the period boundaries
    - Known model names and best-selection precedence
    - Numeric ranges for seasonal, PCA, sampler and sensitivity settings

    Returns:
        List of validation errors (empty if valid).
    """
    errors = []

    periods = config.get("PERIODS", {})
    parsed = {}
    for field in _DATE_FIELDS:
        raw = periods.get(field)
        if raw is None:
            continue
        try:
            parsed[field] = _parse_date(raw)
        except ValueError:
            errors.append(f"Invalid date format for PERIODS.{field}: '{raw}'. Expected YYYY-MM-DD")

    ordered = [parsed[f] for f in _DATE_FIELDS if f in parsed]
    if any(a > b for a, b in zip(ordered, ordered[1:])):
        errors.append("PERIODS must satisfy intervention_date <= eval_start <= eval_end")

    month = periods.get("year_start_month", 1)
    if not _positive_int(month) or month > 12:
        errors.append(f"PERIODS.year_start_month must be an integer in 1..12, got {month!r}")

    data = config.get("DATA", {})
    if not _positive_int(data.get("n_seasons")):
        errors.append(f"DATA.n_seasons must be a positive integer, got {data.get('n_seasons')!r}")
    covariates = data.get("covariate_columns") or []
    if not isinstance(covariates, list):
        errors.append("DATA.covariate_columns must be a list")
    elif len(set(covariates)) != len(covariates):
        errors.append("DATA.covariate_columns contains duplicated names")

    measurement = config.get("MEASUREMENT", {})
    models = measurement.get("MODELS") or []
    unknown = [m for m in models if m not in KNOWN_MODELS]
    if unknown:
        errors.append(f"Unknown MEASUREMENT.MODELS {unknown}. Available: {list(KNOWN_MODELS)}")
    precedence = measurement.get("BEST_PRECEDENCE") or []
    bad = [m for m in precedence if m not in BEST_CANDIDATES]
    if bad:
        errors.append(f"MEASUREMENT.BEST_PRECEDENCE may only contain {list(BEST_CANDIDATES)}, got {bad}")

    params = measurement.get("PARAMS") or {}
    if params.get("family") not in FAMILIES:
        errors.append(f"MEASUREMENT.PARAMS.family must be one of {list(FAMILIES)}, got {params.get('family')!r}")
    for field in ("inclusion_level", "interval", "pca_variance_threshold"):
        value = params.get(field)
        if not isinstance(value, (int, float)) or not 0 < value <= 1:
            errors.append(f"MEASUREMENT.PARAMS.{field} must be in (0, 1], got {value!r}")
    for field in ("pca_max_components", "expected_covariates"):
        if not _positive_int(params.get(field)):
            errors.append(f"MEASUREMENT.PARAMS.{field} must be a positive integer, got {params.get(field)!r}")
    offset = params.get("covariate_offset")
    if not isinstance(offset, (int, float)) or offset < 0:
        errors.append("MEASUREMENT.PARAMS.covariate_offset must be a non-negative number")

    sampler = config.get("SAMPLER", {})
    for field in ("burn_in", "draws", "chains"):
        if not _positive_int(sampler.get(field)):
            errors.append(f"SAMPLER.{field} must be a positive integer, got {sampler.get(field)!r}")
    target_accept = sampler.get("target_accept")
    if not _number(target_accept) or not 0 < target_accept < 1:
        errors.append(f"SAMPLER.target_accept must be in (0, 1), got {target_accept!r}")
    seed = sampler.get("random_seed")
    if not isinstance(seed, int) or isinstance(seed, bool) or seed < 0:
        errors.append(f"SAMPLER.random_seed must be a non-negative integer, got {seed!r}")
    max_rhat = sampler.get("max_rhat")
    if not _number(max_rhat) or max_rhat <= 1:
        errors.append(f"SAMPLER.max_rhat must be a number above 1, got {max_rhat!r}")
    timeout = sampler.get("timeout")
    if timeout is not None and (not _number(timeout) or timeout <= 0):
        errors.append("SAMPLER.timeout must be a positive number of seconds or null")

    execution = config.get("EXECUTION", {})
    if not _positive_int(execution.get("max_workers")):
        errors.append("EXECUTION.max_workers must be a positive integer")
    if execution.get("executor") not in EXECUTORS:
        errors.append(f"EXECUTION.executor must be one of {list(EXECUTORS)}")

    sensitivity = config.get("SENSITIVITY") or {}
    if not isinstance(sensitivity.get("enabled", False), bool):
        errors.append("SENSITIVITY.enabled must be true or false")
    if not _positive_int(sensitivity.get("n_drop", 2)):
        errors.append(f"SENSITIVITY.n_drop must be a positive integer, got {sensitivity.get('n_drop')!r}")

    return errors


def _validate_merged(merged: Dict[str, Any]) -> Dict[str, Any]:
    structure_errors = _validate_structure(merged)
    if structure_errors:
        raise ConfigValidationError("Configuration structure errors:\n  - " + "\n  - ".join(structure_errors))

    param_errors = _validate_parameters(merged)
    if param_errors:
        raise ConfigValidationError("Configuration parameter errors:\n  - " + "\n  - ".join(param_errors))

    return merged


# --- Main Entry Point ---


def load_config(source: str | Path | Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Canonical entry point. Accepts file path, dict, or None (returns defaults).

    Parameters
    ----------
    source : str | Path | dict | None
        YAML/JSON file path, pre-parsed dict, or ``None`` for pure defaults.
        When a dict is supplied, file-loading stages are skipped.

    Returns
    -------
    dict
        Fully validated and merged configuration.

    Raises
    ------
    ConfigValidationError
        If validation fails. Note: ``None`` source still fails validation because
        ``outcome_column`` and ``intervention_date`` have no defaults.
    """
    if source is None or isinstance(source, dict):
        user_config: Dict[str, Any] = source or {}
        return _validate_merged(deep_merge(get_defaults(), user_config))
    return process_config(str(source))


def process_config(config_path: str) -> Dict[str, Any]:
    """Process configuration file through full validation pipeline.

    Pipeline stages:
    1. Validate file exists and is readable
    2. Parse and validate format (YAML/JSON)
    3. Merge with defaults (deep merge)
    4. Validate structure (required sections/fields)
    5. Validate parameters (dates, models, sampler settings)

    Raises:
        ConfigValidationError: If any validation stage fails.
    """
    validated_path = _validate_file(config_path)
    user_config = _validate_format(validated_path)
    if not isinstance(user_config, dict):
        raise ConfigValidationError("Configuration must be a dictionary/object", path=config_path)

    merged_config = deep_merge(get_defaults(), user_config)
    return _validate_merged(merged_config)

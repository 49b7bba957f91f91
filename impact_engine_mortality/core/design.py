"""
Design-matrix helpers shared by the screener and the model adapters.

All helpers are pure functions of a time index, a covariate frame and the
run context.
"""

import zlib
from typing import Dict

import numpy as np
import pandas as pd

from .context import AnalysisContext


def season_labels(index: pd.DatetimeIndex, n_seasons: int) -> np.ndarray:
    """Season number (1..n_seasons) of every timestamp.

    Monthly and quarterly data use the calendar month/quarter so that the
    labels do not depend on where the series starts; other periodicities
    fall back to the position within the cycle.
    """
    if n_seasons == 12:
        return np.asarray(index.month)
    if n_seasons == 4:
        return np.asarray(index.quarter)
    return np.arange(len(index)) % n_seasons + 1


def seasonal_dummies(index: pd.DatetimeIndex, n_seasons: int) -> pd.DataFrame:
    """Treatment-coded season indicators (first season is the reference level)."""
    if n_seasons < 2:
        return pd.DataFrame(index=index)
    labels = season_labels(index, n_seasons)
    columns = {f"season_{s}": (labels == s).astype(float) for s in range(2, n_seasons + 1)}
    return pd.DataFrame(columns, index=index)


def time_in_years(index: pd.DatetimeIndex, n_seasons: int, origin: pd.Timestamp) -> np.ndarray:
    """Elapsed time in years relative to ``origin`` (negative before it)."""
    steps = np.arange(len(index), dtype=float)
    origin_step = float(np.searchsorted(index, origin))
    return (steps - origin_step) / n_seasons


class DegenerateCovariateError(ValueError):
    """A covariate cannot enter a model: missing, all zero, constant or non-positive under the log."""

    def __init__(self, covariate: str, reason: str):
        self.covariate = covariate
        self.reason = reason
        super().__init__(f"covariate '{covariate}' {reason}")


def check_covariate(name: str, values: pd.Series, mask: np.ndarray, context: AnalysisContext) -> None:
    """Raise DegenerateCovariateError if ``values`` cannot enter a model.

    A covariate is degenerate when it has missing values, is all zero, is
    constant over the fitting window, or (under the log transform) would take
    the log of a non-positive number.
    """
    values = values.to_numpy(dtype=float)
    window = values[mask]
    if np.isnan(values).any():
        raise DegenerateCovariateError(name, "contains missing values")
    if np.all(values == 0):
        raise DegenerateCovariateError(name, "all values are zero")
    if window.size == 0 or np.ptp(window) == 0:
        raise DegenerateCovariateError(name, "constant over the fitting window")
    if context.log_covariates and (values + context.covariate_offset <= 0).any():
        raise DegenerateCovariateError(name, "non-positive values under the log transform")


def find_degenerate_covariates(
    covariates: pd.DataFrame, mask: np.ndarray, context: AnalysisContext
) -> Dict[str, str]:
    """Return {covariate: reason} for the columns that fail ``check_covariate``."""
    reasons: Dict[str, str] = {}
    for name in covariates.columns:
        try:
            check_covariate(name, covariates[name], mask, context)
        except DegenerateCovariateError as e:
            reasons[name] = e.reason
    return reasons


def standardize(frame: pd.DataFrame, mask: np.ndarray) -> pd.DataFrame:
    """Center and scale each column by its mean and sd over ``mask`` rows."""
    window = frame.loc[mask]
    scale = window.std(ddof=0).replace(0.0, 1.0)
    return (frame - window.mean()) / scale


def is_full_rank(matrix: np.ndarray) -> bool:
    """True when the design matrix has full column rank."""
    return np.linalg.matrix_rank(matrix) == matrix.shape[1]


def derive_seed(base_seed: int, *parts: str) -> int:
    """Stable per-task seed from the base seed and task labels.

    CRC32 is used instead of ``hash()`` so seeds do not change between
    interpreter sessions or worker processes.
    """
    key = "|".join(str(p) for p in parts).encode("utf-8")
    return (int(base_seed) + zlib.crc32(key)) % (2**32 - 1)

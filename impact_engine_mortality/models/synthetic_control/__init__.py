"""Synthetic control from STL-smoothed, PCA-reduced covariates ("pca" variant)."""

from .adapter import SyntheticControlAdapter
from .transforms import ReducedCovariates, decompose_trends, reduce_covariates

__all__ = [
    "ReducedCovariates",
    "SyntheticControlAdapter",
    "decompose_trends",
    "reduce_covariates",
]

"""Diagnostic screening of candidate covariates."""

from .screener import CovariateScreener, ScreeningResult, rank_screening

__all__ = [
    "CovariateScreener",
    "ScreeningResult",
    "rank_screening",
]

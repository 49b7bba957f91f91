"""Variable-selecting covariate regression ("full" variant).

Bayesian count regression of the outcome on all usable control series with a
regularized horseshoe prior, fitted to the pre-intervention window.
"""

from .adapter import CovariateRegressionAdapter

__all__ = [
    "CovariateRegressionAdapter",
]

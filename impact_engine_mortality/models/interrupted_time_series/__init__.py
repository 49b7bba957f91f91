"""Interrupted Time Series model ("its" variant).

Segmented negative-binomial (or Poisson) regression from statsmodels, with
the counterfactual obtained by switching off the post-intervention terms.
"""

from .adapter import SegmentedRegressionAdapter

__all__ = [
    "SegmentedRegressionAdapter",
]

"""Trend-only counterfactual ("time" variant), the universal fallback."""

from .adapter import TimeTrendAdapter

__all__ = [
    "TimeTrendAdapter",
]

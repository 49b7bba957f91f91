"""Impact aggregation: rate ratios, annual sums and cumulative prevented cases."""

from .aggregator import (
    CumulativePrevented,
    ImpactSummary,
    InvalidAggregationRequest,
    aggregation_years,
    annual_aggregates,
    cumulative_prevented,
    evaluation_rate_ratio,
    rate_ratios,
    rolling_rate_ratio,
)

__all__ = [
    "CumulativePrevented",
    "ImpactSummary",
    "InvalidAggregationRequest",
    "aggregation_years",
    "annual_aggregates",
    "cumulative_prevented",
    "evaluation_rate_ratio",
    "rate_ratios",
    "rolling_rate_ratio",
]

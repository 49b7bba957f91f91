"""
Impact aggregation over counterfactual predictive draws.

Every operation takes a FittedModel and works on its (n_draws, n_periods)
draw matrix only, so the same code summarises every model variant. Ratios
and differences are formed per draw first and summarised afterwards.
"""

import warnings
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from ..core.context import AnalysisContext
from ..models.base import FittedModel


class InvalidAggregationRequest(ValueError):
    """An aggregation window falls outside the observed range."""


def _quantiles(samples: np.ndarray, interval: float) -> np.ndarray:
    """(lower, median, upper) along the draw axis, ignoring NaN draws."""
    tail = (1.0 - interval) / 2.0
    with warnings.catch_warnings():
        # Periods where every ratio is undefined yield NaN
        warnings.simplefilter("ignore", RuntimeWarning)
        return np.nanquantile(samples, [tail, 0.5, 1.0 - tail], axis=0)


def _ratio(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    """Elementwise ratio with undefined values (x/0) set to NaN."""
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.asarray(numerator, dtype=float) / denominator
    ratio[~np.isfinite(ratio)] = np.nan
    return ratio


def rate_ratios(fitted: FittedModel, interval: float = 0.95) -> pd.DataFrame:
    """Per-period observed / counterfactual rate ratio.

    Returns:
        DataFrame indexed by date with observed, counterfactual median and the
        median and interval of the rate ratio.
    """
    lower, median, upper = _quantiles(_ratio(fitted.observed[None, :], fitted.draws), interval)
    return pd.DataFrame(
        {
            "observed": fitted.observed,
            "counterfactual": np.median(fitted.draws, axis=0),
            "rate_ratio": median,
            "lower": lower,
            "upper": upper,
        },
        index=fitted.dates,
    )


def _evaluation_window(fitted: FittedModel, context: AnalysisContext) -> np.ndarray:
    end = context.eval_end if context.eval_end is not None else fitted.dates[-1]
    return np.asarray((fitted.dates >= context.eval_start) & (fitted.dates <= end))


def evaluation_rate_ratio(fitted: FittedModel, context: AnalysisContext) -> Dict[str, Any]:
    """Rate ratio over the whole evaluation window.

    Observed and counterfactual counts are summed over the window per draw
    before the ratio is taken.
    """
    mask = _evaluation_window(fitted, context)
    observed = float(fitted.observed[mask].sum())
    counterfactual = fitted.draws[:, mask].sum(axis=1)
    lower, median, upper = _quantiles(_ratio(observed, counterfactual), context.interval)
    dates = fitted.dates[mask]
    return {
        "start": dates[0] if len(dates) else context.eval_start,
        "end": dates[-1] if len(dates) else context.eval_end,
        "n_periods": int(mask.sum()),
        "observed": observed,
        "counterfactual": float(np.median(counterfactual)),
        "rate_ratio": float(median),
        "lower": float(lower),
        "upper": float(upper),
    }


def aggregation_years(dates: pd.DatetimeIndex, year_start_month: int = 1) -> np.ndarray:
    """Year label of each date, labelled by the year in which the aggregation year starts."""
    years = np.asarray(dates.year)
    if year_start_month > 1:
        years = years - (np.asarray(dates.month) < year_start_month)
    return years


def annual_aggregates(fitted: FittedModel, context: AnalysisContext) -> pd.DataFrame:
    """Observed and counterfactual sums per calendar or epidemiological year.

    The year starts in ``context.year_start_month``; partial years at either
    end of the series are kept and reported with their period count.
    """
    years = aggregation_years(fitted.dates, context.year_start_month)
    rows = []
    for year in np.unique(years):
        mask = years == year
        observed = float(fitted.observed[mask].sum())
        counterfactual = fitted.draws[:, mask].sum(axis=1)
        cf_lower, cf_median, cf_upper = _quantiles(counterfactual, context.interval)
        rr_lower, rr_median, rr_upper = _quantiles(_ratio(observed, counterfactual), context.interval)
        rows.append(
            {
                "year": int(year),
                "n_periods": int(mask.sum()),
                "observed": observed,
                "counterfactual": float(cf_median),
                "counterfactual_lower": float(cf_lower),
                "counterfactual_upper": float(cf_upper),
                "rate_ratio": float(rr_median),
                "lower": float(rr_lower),
                "upper": float(rr_upper),
            }
        )
    return pd.DataFrame(rows).set_index("year")


def rolling_rate_ratio(fitted: FittedModel, context: AnalysisContext, window: Optional[int] = None) -> pd.DataFrame:
    """Trailing-window rate ratio; the first ``window - 1`` periods are NaN.

    Args:
        fitted: Model to summarise.
        context: Run context (interval, default window of one year).
        window: Number of periods summed per point, default ``n_seasons``.
    """
    window = context.n_seasons if window is None else int(window)
    if window < 1:
        raise InvalidAggregationRequest(f"window must be >= 1, got {window}")

    n_periods = len(fitted.dates)
    observed_cum = np.concatenate([[0.0], np.cumsum(fitted.observed)])
    draws_cum = np.concatenate([np.zeros((fitted.n_draws, 1)), np.cumsum(fitted.draws, axis=1)], axis=1)

    observed = np.full(n_periods, np.nan)
    ratios = np.full((fitted.n_draws, n_periods), np.nan)
    if window <= n_periods:
        observed[window - 1:] = observed_cum[window:] - observed_cum[:-window]
        counterfactual = draws_cum[:, window:] - draws_cum[:, :-window]
        ratios[:, window - 1:] = _ratio(observed[None, window - 1:], counterfactual)

    lower, median, upper = _quantiles(ratios, context.interval)
    return pd.DataFrame(
        {"observed": observed, "rate_ratio": median, "lower": lower, "upper": upper},
        index=fitted.dates,
    )


@dataclass(frozen=True)
class CumulativePrevented:
    """Cumulative prevented cases (counterfactual minus observed).

    Attributes:
        table: Per-date point, median, lower, upper and term; ``point`` is the
            running sum of ``term`` (median counterfactual minus observed).
        per_draw: Cumulative prevented cases per draw, shape (n_draws, n_dates).
        start: First date of the accumulation.
        end: Requested end date.
    """

    table: pd.DataFrame
    per_draw: np.ndarray
    start: pd.Timestamp
    end: pd.Timestamp

    @property
    def total(self) -> Dict[str, float]:
        """Median and interval at the last accumulated date."""
        last = self.table.iloc[-1]
        return {"median": float(last["median"]), "lower": float(last["lower"]), "upper": float(last["upper"])}


def cumulative_prevented(
    fitted: FittedModel,
    context: AnalysisContext,
    end=None,
    start=None,
) -> CumulativePrevented:
    """Cumulative prevented cases from ``start`` up to ``end``.

    Args:
        fitted: Model to summarise.
        context: Run context.
        end: Last date accumulated, default evaluation end (or last observation).
        start: First date accumulated, default intervention date.

    Returns:
        CumulativePrevented. When ``end`` precedes ``start`` the result is a
        single zero row with a zero-width interval.

    Raises:
        InvalidAggregationRequest: If ``start`` or ``end`` lies outside the observed range.
    """
    dates = fitted.dates
    start = context.intervention_date if start is None else pd.Timestamp(start)
    if end is None:
        end = context.eval_end if context.eval_end is not None else dates[-1]
    end = pd.Timestamp(end)

    for label, value in (("end", end), ("start", start)):
        if value < dates[0] or value > dates[-1]:
            raise InvalidAggregationRequest(
                f"{label} {value.date()} is outside the observed range {dates[0].date()}..{dates[-1].date()}"
            )

    mask = np.asarray((dates >= start) & (dates <= end))
    if end < start or not mask.any():
        zeros = pd.DataFrame(
            {"point": 0.0, "median": 0.0, "lower": 0.0, "upper": 0.0, "term": 0.0},
            index=pd.DatetimeIndex([end], name=dates.name),
        )
        return CumulativePrevented(zeros, np.zeros((fitted.n_draws, 1)), start, end)

    observed = fitted.observed[mask]
    draws = fitted.draws[:, mask]
    per_draw = np.cumsum(draws - observed[None, :], axis=1)
    term = np.median(draws, axis=0) - observed
    lower, median, upper = _quantiles(per_draw, context.interval)

    table = pd.DataFrame(
        {"point": np.cumsum(term), "median": median, "lower": lower, "upper": upper, "term": term},
        index=dates[mask],
    )
    return CumulativePrevented(table, per_draw, start, end)


@dataclass(frozen=True)
class ImpactSummary:
    """All impact aggregates of one fitted model.

    Attributes:
        rate_ratios: Per-period rate ratio table.
        evaluation: Evaluation-window rate ratio.
        annual: Per-year aggregates.
        rolling: Trailing one-year rate ratio.
        prevented: Cumulative prevented cases to the evaluation end.
    """

    rate_ratios: pd.DataFrame
    evaluation: Dict[str, Any]
    annual: pd.DataFrame
    rolling: pd.DataFrame
    prevented: CumulativePrevented

    @classmethod
    def from_fitted(cls, fitted: FittedModel, context: AnalysisContext) -> "ImpactSummary":
        return cls(
            rate_ratios=rate_ratios(fitted, context.interval),
            evaluation=evaluation_rate_ratio(fitted, context),
            annual=annual_aggregates(fitted, context),
            rolling=rolling_rate_ratio(fitted, context),
            prevented=cumulative_prevented(fitted, context),
        )

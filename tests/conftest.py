"""Shared fixtures and synthetic data factories."""

from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd
import pytest

from impact_engine_mortality.core import AnalysisContext, SeriesRegistry, deep_merge
from impact_engine_mortality.models.base import FittedModel, ModelVariant

START = "2010-01-01"
N_PRE = 60
N_POST = 24
INTERVENTION = pd.Timestamp("2015-01-01")

# Short chains keep sampler tests bounded
FAST_SAMPLER = {"burn_in": 300, "draws": 300, "chains": 2, "target_accept": 0.9, "random_seed": 11}


def monthly_dates(n_periods: int = N_PRE + N_POST, start: str = START) -> pd.DatetimeIndex:
    return pd.date_range(start, periods=n_periods, freq="MS", name="date")


def seasonal_rates(dates: pd.DatetimeIndex, level: float, trend: float = 0.003) -> np.ndarray:
    """Smooth monthly rate with a winter peak and a slow log-linear trend."""
    t = np.arange(len(dates))
    season = 1.0 + 0.25 * np.cos(2 * np.pi * (np.asarray(dates.month) - 1) / 12)
    return level * season * np.exp(trend * t)


def make_stratum_frame(
    name: str = "65+",
    effect: float = 0.5,
    seed: int = 0,
    n_pre: int = N_PRE,
    n_post: int = N_POST,
    degenerate: bool = False,
) -> Dict[str, Any]:
    """One stratum of the synthetic vaccine scenario.

    The outcome follows 10% of the control series' rate and drops to
    ``effect`` times that after the intervention. A second, unrelated
    covariate is pure noise. Returns the long frame plus the true
    counterfactual rate.
    """
    rng = np.random.default_rng(seed)
    dates = monthly_dates(n_pre + n_post)
    control_rate = seasonal_rates(dates, level=1000.0)
    counterfactual_rate = 0.1 * control_rate
    post = np.arange(len(dates)) >= n_pre
    outcome_rate = np.where(post, effect * counterfactual_rate, counterfactual_rate)

    frame = pd.DataFrame(
        {
            "age_group": name,
            "date": dates,
            "deaths": rng.poisson(outcome_rate).astype(float),
            "other_causes": rng.poisson(control_rate).astype(float),
            "noise": rng.poisson(300.0, size=len(dates)).astype(float),
        }
    )
    if degenerate:
        frame["other_causes"] = 0.0
        frame["noise"] = 5.0
    return {"frame": frame, "counterfactual_rate": counterfactual_rate, "post": post}


def make_frame(strata: Sequence[str] = ("65+",), degenerate: bool = False, seed: int = 0) -> pd.DataFrame:
    """Long frame with one synthetic stratum per name."""
    frames = [make_stratum_frame(name, seed=seed + i, degenerate=degenerate)["frame"] for i, name in enumerate(strata)]
    return pd.concat(frames, ignore_index=True)


def make_quarterly_frame(seed: int = 0) -> pd.DataFrame:
    """The monthly scenario summed to calendar quarters: 20 pre, 8 post."""
    monthly = make_stratum_frame(seed=seed)["frame"]
    quarterly = monthly.drop(columns="age_group").resample("QS", on="date").sum().reset_index()
    quarterly.insert(0, "age_group", "65+")
    return quarterly


def make_config(**sections: Dict[str, Any]) -> Dict[str, Any]:
    """Minimal valid user config for the synthetic frame, with section overrides."""
    base = {
        "DATA": {"outcome_column": "deaths", "covariate_columns": ["other_causes", "noise"]},
        "PERIODS": {"intervention_date": INTERVENTION.strftime("%Y-%m-%d")},
        "SAMPLER": dict(FAST_SAMPLER),
    }
    return deep_merge(base, sections)


def make_context(**overrides: Any) -> AnalysisContext:
    params = {
        "outcome_column": "deaths",
        "intervention_date": INTERVENTION,
        "covariate_columns": ("other_causes", "noise"),
        **FAST_SAMPLER,
    }
    params.update(overrides)
    return AnalysisContext(**params)


def make_fitted(
    draws: np.ndarray,
    observed: Optional[np.ndarray] = None,
    variant: str = "time",
    metadata: Optional[Dict[str, Any]] = None,
    start: str = START,
) -> FittedModel:
    """FittedModel built from explicit draws, for aggregation and selection tests."""
    draws = np.asarray(draws, dtype=float)
    dates = monthly_dates(draws.shape[1], start=start)
    if observed is None:
        observed = np.median(draws, axis=0)
    return FittedModel(
        stratum="65+",
        variant=ModelVariant(variant),
        dates=dates,
        observed=observed,
        draws=draws,
        coefficients=pd.DataFrame(columns=["mean", "median", "lower", "upper"]),
        score=0.0,
        score_name="waic",
        metadata=metadata or {},
    )


@pytest.fixture
def context() -> AnalysisContext:
    return make_context()


@pytest.fixture
def scenario() -> Dict[str, Any]:
    return make_stratum_frame()


@pytest.fixture
def stratum(scenario, context):
    return SeriesRegistry.from_frame(scenario["frame"], context)["65+"]


@pytest.fixture
def degenerate_stratum(context):
    frame = make_stratum_frame(degenerate=True)["frame"]
    return SeriesRegistry.from_frame(frame, context)["65+"]

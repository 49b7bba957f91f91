"""Immutable run context shared by every component of an impact analysis."""

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

import pandas as pd

from .validation import load_config


@dataclass(frozen=True)
class AnalysisContext:
    """Explicit, read-only configuration for one analysis run.

    Built once from a validated configuration dict and passed to the
    registry, screener, model adapters and aggregator. Nothing in the
    package reads configuration from module-level state.

    Attributes:
        group_column: Column naming the stratum of each row.
        date_column: Column holding the timestamp of each row.
        outcome_column: Column with the outcome counts.
        denominator_column: Optional population column used as a log offset.
        covariate_columns: Candidate control series. Empty means "all numeric
            columns not otherwise assigned".
        n_seasons: Observations per year (12 monthly, 4 quarterly).
        intervention_date: First timestamp of the post-intervention period.
        eval_start: First timestamp of the evaluation window.
        eval_end: Last timestamp of the evaluation window, or None for open-ended.
        year_start_month: First month of the aggregation year (1 = calendar year).
        models: Variants to fit for every stratum.
        best_precedence: Order in which variants are tried for "best".
        family: "poisson" or "negative_binomial".
        log_covariates: Apply log(x + covariate_offset) to covariates.
        covariate_offset: Additive offset applied before the log.
        inclusion_level: Credible level used to call a covariate informative.
        expected_covariates: Prior guess of informative covariates (horseshoe scale).
        pca_max_components: Cap on retained synthetic-control components.
        pca_variance_threshold: Cumulative explained variance to retain.
        stl_robust: Use robust STL fitting.
        its_level_change: Allow a level change at the intervention in ITS.
        interval: Width of reported intervals.
        burn_in: Tuning draws per chain.
        draws: Retained draws per chain.
        chains: Number of chains.
        target_accept: NUTS target acceptance rate.
        random_seed: Base seed; per-fit seeds are derived from it.
        timeout: Per-fit sampling deadline in seconds, or None.
        max_rhat: R-hat above which a fit is flagged unreliable.
        max_workers: Worker pool size (1 runs in-process).
        executor: "process" or "thread".
        sensitivity: Whether to refit "full" without its top covariates.
        sensitivity_drop: Number of top covariates to drop successively.
    """

    outcome_column: str
    intervention_date: pd.Timestamp
    group_column: str = "age_group"
    date_column: str = "date"
    denominator_column: Optional[str] = None
    covariate_columns: Tuple[str, ...] = ()
    n_seasons: int = 12
    eval_start: Optional[pd.Timestamp] = None
    eval_end: Optional[pd.Timestamp] = None
    year_start_month: int = 1
    models: Tuple[str, ...] = ("full", "pca", "time", "its")
    best_precedence: Tuple[str, ...] = ("full", "pca", "time")
    family: str = "negative_binomial"
    log_covariates: bool = True
    covariate_offset: float = 0.5
    inclusion_level: float = 0.95
    expected_covariates: int = 1
    pca_max_components: int = 3
    pca_variance_threshold: float = 0.9
    stl_robust: bool = True
    its_level_change: bool = True
    interval: float = 0.95
    burn_in: int = 1000
    draws: int = 1000
    chains: int = 2
    target_accept: float = 0.95
    random_seed: int = 42
    timeout: Optional[float] = None
    max_rhat: float = 1.05
    max_workers: int = 1
    executor: str = "process"
    sensitivity: bool = False
    sensitivity_drop: int = 2

    def __post_init__(self):
        object.__setattr__(self, "intervention_date", pd.Timestamp(self.intervention_date))
        eval_start = self.intervention_date if self.eval_start is None else pd.Timestamp(self.eval_start)
        object.__setattr__(self, "eval_start", eval_start)
        if self.eval_end is not None:
            object.__setattr__(self, "eval_end", pd.Timestamp(self.eval_end))
        object.__setattr__(self, "covariate_columns", tuple(self.covariate_columns))
        object.__setattr__(self, "models", tuple(self.models))
        object.__setattr__(self, "best_precedence", tuple(self.best_precedence))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AnalysisContext":
        """Build a context from a merged, validated configuration dict."""
        data = config["DATA"]
        periods = config["PERIODS"]
        measurement = config["MEASUREMENT"]
        params = measurement["PARAMS"]
        sampler = config["SAMPLER"]
        execution = config["EXECUTION"]
        sensitivity = config.get("SENSITIVITY") or {}

        return cls(
            group_column=data["group_column"],
            date_column=data["date_column"],
            outcome_column=data["outcome_column"],
            denominator_column=data.get("denominator_column"),
            covariate_columns=tuple(data.get("covariate_columns") or ()),
            n_seasons=int(data["n_seasons"]),
            intervention_date=pd.Timestamp(periods["intervention_date"]),
            eval_start=periods.get("eval_start"),
            eval_end=periods.get("eval_end"),
            year_start_month=int(periods.get("year_start_month", 1)),
            models=tuple(measurement["MODELS"]),
            best_precedence=tuple(measurement.get("BEST_PRECEDENCE") or ()),
            family=params["family"],
            log_covariates=bool(params["log_covariates"]),
            covariate_offset=float(params["covariate_offset"]),
            inclusion_level=float(params["inclusion_level"]),
            expected_covariates=int(params["expected_covariates"]),
            pca_max_components=int(params["pca_max_components"]),
            pca_variance_threshold=float(params["pca_variance_threshold"]),
            stl_robust=bool(params["stl_robust"]),
            its_level_change=bool(params["its_level_change"]),
            interval=float(params["interval"]),
            burn_in=int(sampler["burn_in"]),
            draws=int(sampler["draws"]),
            chains=int(sampler["chains"]),
            target_accept=float(sampler["target_accept"]),
            random_seed=int(sampler["random_seed"]),
            timeout=sampler.get("timeout"),
            max_rhat=float(sampler["max_rhat"]),
            max_workers=int(execution["max_workers"]),
            executor=execution["executor"],
            sensitivity=bool(sensitivity.get("enabled", False)),
            sensitivity_drop=int(sensitivity.get("n_drop", 2)),
        )

    @classmethod
    def from_source(cls, source=None) -> "AnalysisContext":
        """Load, merge and validate a config file or dict, then build the context."""
        return cls.from_config(load_config(source))

    def with_overrides(self, **changes: Any) -> "AnalysisContext":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)


"""Base interface and result container for counterfactual models."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..core.context import AnalysisContext
from ..core.series import StratumSeries


class ModelVariant(str, Enum):
    """Counterfactual model variants.

    ``BEST`` is not fitted directly: it is the variant chosen from the fitted
    ones by the configured precedence.
    """

    FULL = "full"
    BEST = "best"
    TIME = "time"
    ITS = "its"
    PCA = "pca"


class ModelExclusion(Exception):
    """Base class for conditions that exclude a variant without being a failure."""


class NoInformativeCovariateError(ModelExclusion):
    """No usable covariate remains for a covariate-based variant."""


class FitTimeoutError(RuntimeError):
    """Sampling exceeded the configured per-fit deadline."""


@dataclass(frozen=True)
class FittedModel:
    """Counterfactual fit of one variant to one stratum.

    All variants produce the same shape so the aggregator never needs to know
    which model it is summarising.

    Attributes:
        stratum: Stratum name.
        variant: Variant that produced the fit.
        dates: Full time index (pre and post intervention).
        observed: Observed counts on ``dates``.
        draws: Counterfactual predictive draws, shape (n_draws, n_periods).
        coefficients: Per-term mean, median, lower and upper estimates.
        score: Goodness-of-fit score (lower is better).
        score_name: "waic" (deviance scale) or "aic".
        warnings: Reliability warnings, e.g. non-convergence.
        metadata: Variant-specific details (retained covariates, components, ...).
    """

    stratum: str
    variant: ModelVariant
    dates: pd.DatetimeIndex
    observed: np.ndarray
    draws: np.ndarray
    coefficients: pd.DataFrame
    score: float
    score_name: str
    warnings: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        observed = np.array(self.observed, dtype=float)
        draws = np.array(self.draws, dtype=float)
        if draws.ndim != 2 or draws.shape[1] != len(self.dates) or observed.shape != (len(self.dates),):
            raise ValueError(
                f"draws must have shape (n_draws, {len(self.dates)}) and observed ({len(self.dates)},), "
                f"got {draws.shape} and {observed.shape}"
            )
        observed.setflags(write=False)
        draws.setflags(write=False)
        object.__setattr__(self, "observed", observed)
        object.__setattr__(self, "draws", draws)
        object.__setattr__(self, "variant", ModelVariant(self.variant))
        object.__setattr__(self, "warnings", tuple(self.warnings))

    @property
    def n_draws(self) -> int:
        return self.draws.shape[0]

    @property
    def reliable(self) -> bool:
        """False when the fit carries convergence or optimisation warnings."""
        return not self.warnings

    def prediction(self, interval: float = 0.95) -> pd.DataFrame:
        """Full-range observed vs. counterfactual table with interval bounds."""
        tail = (1.0 - interval) / 2.0
        lower, median, upper = np.quantile(self.draws, [tail, 0.5, 1.0 - tail], axis=0)
        return pd.DataFrame(
            {
                "observed": self.observed,
                "pred_lower": lower,
                "pred_median": median,
                "pred_upper": upper,
            },
            index=self.dates,
        )


def summarize_coefficients(samples: pd.DataFrame, interval: float) -> pd.DataFrame:
    """Mean, median and central interval of each column of a draws frame."""
    tail = (1.0 - interval) / 2.0
    return pd.DataFrame(
        {
            "mean": samples.mean(),
            "median": samples.median(),
            "lower": samples.quantile(tail),
            "upper": samples.quantile(1.0 - tail),
        }
    )


class ModelInterface(ABC):
    """Abstract base class for counterfactual models.

    Required methods (must override):
        - fit: Fit the variant to one stratum and return a FittedModel

    Optional methods (have sensible defaults):
        - connect: Store the run context
        - validate_connection: Check if model is ready
        - validate_data: Check the stratum has enough pre-intervention data
    """

    variant: ModelVariant

    def connect(self, context: AnalysisContext) -> bool:
        """Initialize model with the run context.

        Returns:
            bool: True if initialization successful.
        """
        self.context = context
        self.is_connected = True
        return True

    def validate_connection(self) -> bool:
        """Validate that the model is properly initialized and ready to use."""
        return getattr(self, "is_connected", False)

    def validate_data(self, stratum: StratumSeries) -> bool:
        """Require at least two seasonal cycles before the intervention."""
        n_pre = int(stratum.pre_mask(self.context.intervention_date).sum())
        return n_pre >= max(2 * self.context.n_seasons, 6)

    @abstractmethod
    def fit(self, stratum: StratumSeries, exclude: Optional[Sequence[str]] = None) -> FittedModel:
        """Fit the model to one stratum.

        Args:
            stratum: Validated series of the stratum.
            exclude: Covariates to leave out (used by the sensitivity analysis).

        Returns:
            FittedModel: Counterfactual draws over the full time range.

        Raises:
            ModelExclusion: If the variant cannot be built from this stratum.
            FitTimeoutError: If sampling exceeds the deadline.
            RuntimeError: If model fitting fails.
        """
        pass

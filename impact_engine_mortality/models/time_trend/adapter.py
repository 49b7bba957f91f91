"""Time Trend Adapter - seasonal Bayesian count regression with a linear trend ("time")."""

import logging
from typing import Optional, Sequence

from ...core.design import seasonal_dummies, time_in_years
from ...core.series import StratumSeries
from ..base import FitTimeoutError, FittedModel, ModelInterface, ModelVariant
from ..bayesian import fit_bayesian_counterfactual
from ..factory import MODEL_REGISTRY


@MODEL_REGISTRY.register_decorator(ModelVariant.TIME)
class TimeTrendAdapter(ModelInterface):
    """Counterfactual from seasonality and a log-linear trend only.

    Uses no control series, so it is always available and serves as the
    final fallback of the "best" selection.
    """

    variant = ModelVariant.TIME

    def __init__(self):
        """Initialize the TimeTrendAdapter."""
        self.logger = logging.getLogger(__name__)
        self.is_connected = False
        self.context = None

    def fit(self, stratum: StratumSeries, exclude: Optional[Sequence[str]] = None) -> FittedModel:
        """Fit the trend-only model to one stratum.

        ``exclude`` is accepted for interface compatibility; the model uses no
        covariates.

        Raises:
            FitTimeoutError: If sampling exceeds the deadline.
            RuntimeError: If model fitting fails.
        """
        if not self.is_connected:
            raise ConnectionError("Model not connected. Call connect() first.")

        try:
            if not self.validate_data(stratum):
                raise ValueError(
                    f"Stratum '{stratum.name}' needs at least two seasonal cycles before the intervention"
                )

            n_seasons = self.context.n_seasons
            design = seasonal_dummies(stratum.index, n_seasons)
            design["time"] = time_in_years(stratum.index, n_seasons, self.context.intervention_date)

            self.logger.info(f"Fitting time model for stratum '{stratum.name}'")
            fitted = fit_bayesian_counterfactual(stratum, self.variant, design, self.context)
            self.logger.info(f"Time model for stratum '{stratum.name}' complete")
            return fitted

        except FitTimeoutError:
            raise
        except Exception as e:
            self.logger.error(f"Error fitting TimeTrendAdapter: {e}")
            raise RuntimeError(f"Model fitting failed: {e}") from e

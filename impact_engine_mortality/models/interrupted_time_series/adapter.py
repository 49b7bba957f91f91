"""Segmented Regression Adapter - adapts statsmodels count GLMs to ModelInterface ("its")."""

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from statsmodels.discrete.discrete_model import NegativeBinomial, Poisson
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from ...core.design import derive_seed, is_full_rank, seasonal_dummies, time_in_years
from ...core.series import StratumSeries
from ..base import FittedModel, ModelInterface, ModelVariant
from ..factory import MODEL_REGISTRY

_MAX_LOG_RATE = 30.0


@dataclass
class TransformedInput:
    """Container for transformed model input data.

    Design rows cover the full range; ``fit_mask`` selects the rows the
    regression is estimated on.
    """

    y: np.ndarray
    exog: pd.DataFrame
    offset: np.ndarray
    fit_mask: np.ndarray
    post_terms: List[str]


@MODEL_REGISTRY.register_decorator(ModelVariant.ITS)
class SegmentedRegressionAdapter(ModelInterface):
    """Estimates the intervention effect with a segmented count regression.

    The regression is fitted to the whole series up to the evaluation end:
    seasonal dummies, a linear trend in years, a post-intervention slope
    change and (optionally) a level change. The counterfactual is the
    prediction with the post-intervention terms set to zero.

    Constraints:
    - At least two seasonal cycles before the intervention
    - The design must have full column rank over the fitting rows
    """

    variant = ModelVariant.ITS

    def __init__(self):
        """Initialize the SegmentedRegressionAdapter."""
        self.logger = logging.getLogger(__name__)
        self.is_connected = False
        self.context = None

    def fit(self, stratum: StratumSeries, exclude: Optional[Sequence[str]] = None) -> FittedModel:
        """Fit the segmented regression and simulate counterfactual draws.

        ``exclude`` is accepted for interface compatibility; the model uses no
        covariates.

        Returns:
            FittedModel: Counterfactual draws (AIC score); metadata reports the
                trend and level change as rate ratios.

        Raises:
            RuntimeError: If model fitting fails.
        """
        if not self.is_connected:
            raise ConnectionError("Model not connected. Call connect() first.")

        try:
            if not self.validate_data(stratum):
                raise ValueError(
                    f"Stratum '{stratum.name}' needs at least two seasonal cycles before the intervention"
                )

            transformed = self._prepare_model_input(stratum)
            rows = transformed.fit_mask
            if not is_full_rank(transformed.exog.loc[rows].to_numpy()):
                raise ValueError("Segmented regression design is rank-deficient")

            family = self.context.family
            self.logger.info(
                f"Fitting segmented {family} regression for stratum '{stratum.name}' on {int(rows.sum())} periods"
            )
            model_class = Poisson if family == "poisson" else NegativeBinomial
            model = model_class(
                transformed.y[rows],
                transformed.exog.loc[rows],
                offset=transformed.offset[rows],
            )
            with warnings.catch_warnings():
                # Non-convergence is read from mle_retvals below
                warnings.simplefilter("ignore", ConvergenceWarning)
                results = model.fit(disp=False, maxiter=500)

            fitted = self._format_results(stratum, results, transformed)
            self.logger.info(f"Its model for stratum '{stratum.name}' complete (AIC {fitted.score:.1f})")
            return fitted

        except Exception as e:
            self.logger.error(f"Error fitting SegmentedRegressionAdapter: {e}")
            raise RuntimeError(f"Model fitting failed: {e}") from e

    def _prepare_model_input(self, stratum: StratumSeries) -> TransformedInput:
        """Build the full-range segmented design matrix."""
        index = stratum.index
        context = self.context
        time = time_in_years(index, context.n_seasons, context.intervention_date)
        post = np.asarray(index >= context.intervention_date, dtype=float)

        exog = pd.concat(
            [pd.DataFrame({"const": 1.0}, index=index), seasonal_dummies(index, context.n_seasons)],
            axis=1,
        )
        exog["time"] = time
        exog["post_slope"] = post * time
        post_terms = ["post_slope"]
        if context.its_level_change:
            exog["post_level"] = post
            post_terms.append("post_level")

        fit_mask = np.ones(len(index), dtype=bool)
        if context.eval_end is not None:
            fit_mask = np.asarray(index <= context.eval_end)

        return TransformedInput(
            y=stratum.outcome.to_numpy(dtype=float),
            exog=exog,
            offset=stratum.log_offset(),
            fit_mask=fit_mask,
            post_terms=post_terms,
        )

    def _format_results(self, stratum: StratumSeries, results: Any, transformed: TransformedInput) -> FittedModel:
        """Turn the fitted regression into counterfactual draws and summaries."""
        names = list(transformed.exog.columns)
        params = results.params
        cov = results.cov_params().loc[names, names].to_numpy()
        if not np.isfinite(cov).all():
            raise ValueError("Coefficient covariance is not finite")

        seed = derive_seed(self.context.random_seed, stratum.name, self.variant.value)
        rng = np.random.default_rng(seed)
        n_draws = self.context.draws * self.context.chains
        betas = rng.multivariate_normal(params[names].to_numpy(), cov, size=n_draws)

        counterfactual = transformed.exog.copy()
        counterfactual[transformed.post_terms] = 0.0
        eta = betas @ counterfactual.to_numpy().T + transformed.offset[None, :]
        mu = np.exp(np.minimum(eta, _MAX_LOG_RATE))
        if "alpha" in params.index:
            alpha = max(float(params["alpha"]), 1e-8)
            draws = rng.poisson(rng.gamma(shape=1.0 / alpha, scale=mu * alpha))
        else:
            draws = rng.poisson(mu)

        conf = results.conf_int(alpha=1.0 - self.context.interval)
        conf.columns = ["lower", "upper"]
        coefficients = pd.DataFrame(
            {"mean": params, "median": params, "lower": conf["lower"], "upper": conf["upper"]}
        )
        coefficients["informative"] = False

        fit_warnings = []
        if not results.mle_retvals.get("converged", True):
            fit_warnings.append("maximum likelihood optimisation did not converge")
            self.logger.warning(f"Its model for stratum '{stratum.name}' may be unreliable: optimiser did not converge")

        return FittedModel(
            stratum=stratum.name,
            variant=self.variant,
            dates=stratum.index,
            observed=transformed.y,
            draws=draws,
            coefficients=coefficients,
            score=float(results.aic),
            score_name="aic",
            warnings=tuple(fit_warnings),
            metadata={
                "trend_change": self._rate_ratio(coefficients, "post_slope"),
                "level_change": self._rate_ratio(coefficients, "post_level"),
                "n_fit_periods": int(transformed.fit_mask.sum()),
                "seed": seed,
            },
        )

    @staticmethod
    def _rate_ratio(coefficients: pd.DataFrame, term: str) -> Optional[Dict[str, float]]:
        """exp() of a coefficient and its interval, or None when the term is absent."""
        if term not in coefficients.index:
            return None
        row = coefficients.loc[term]
        return {
            "rate_ratio": float(np.exp(row["mean"])),
            "lower": float(np.exp(row["lower"])),
            "upper": float(np.exp(row["upper"])),
        }

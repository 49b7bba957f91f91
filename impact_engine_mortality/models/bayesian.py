"""
Bayesian count regression shared by the covariate, synthetic-control and
trend-only variants.

The model is fitted with pymc NUTS to the pre-intervention window only. The
counterfactual over the full range is then drawn in numpy from the posterior
draws, so the whole fit is a pure function of (data, context, seed).
"""

import logging
import time
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm

from ..core.context import AnalysisContext
from ..core.design import derive_seed
from ..core.series import StratumSeries
from .base import FitTimeoutError, FittedModel, ModelVariant, summarize_coefficients

logger = logging.getLogger(__name__)

# Linear predictor cap before exponentiation; keeps numpy's Poisson sampler in range
_MAX_LOG_RATE = 30.0


@dataclass(frozen=True)
class RegressionInputs:
    """Full-range data of one Bayesian fit.

    Attributes:
        y: Observed counts over the full range.
        design: Predictors over the full range (no intercept column).
        penalized: Columns of ``design`` under the horseshoe prior.
        offset: Log offset over the full range.
        pre_mask: Rows used for fitting.
    """

    y: np.ndarray
    design: pd.DataFrame
    penalized: Sequence[str]
    offset: np.ndarray
    pre_mask: np.ndarray

    @property
    def free(self) -> List[str]:
        return [c for c in self.design.columns if c not in set(self.penalized)]


class SamplingDeadline:
    """pymc sampling callback that aborts the chain once the deadline passes.

    pymc documents raising KeyboardInterrupt from a callback as the way to stop
    sampling; ``expired`` records that the interruption was ours.
    """

    def __init__(self, timeout: Optional[float]):
        self.deadline = None if timeout is None else time.monotonic() + float(timeout)
        self.expired = False

    def __call__(self, trace=None, draw=None) -> None:
        if self.deadline is not None and time.monotonic() > self.deadline:
            self.expired = True
            raise KeyboardInterrupt("sampling deadline exceeded")


def build_count_model(inputs: RegressionInputs, family: str, expected_covariates: int = 1) -> pm.Model:
    """Build the pymc model for the pre-intervention window.

    Linear predictor: intercept + offset + free terms (Normal(0, 1)) +
    penalized terms under a regularized horseshoe (Piironen & Vehtari, 2017).
    Predictors are expected on a standardised scale.
    """
    pre = inputs.pre_mask
    y_pre = np.rint(inputs.y[pre]).astype("int64")
    offset_pre = inputs.offset[pre]
    free = inputs.free
    penalized = list(inputs.penalized)

    coords = {"free": free, "penalized": penalized}
    with pm.Model(coords=coords) as model:
        baseline = float(np.log(y_pre.mean() + 0.5) - offset_pre.mean())
        intercept = pm.Normal("intercept", mu=baseline, sigma=2.0)
        eta = intercept + offset_pre

        if free:
            beta_free = pm.Normal("beta_free", mu=0.0, sigma=1.0, dims="free")
            eta = eta + pm.math.dot(inputs.design.loc[pre, free].to_numpy(dtype=float), beta_free)

        if penalized:
            n_obs, n_pen = len(y_pre), len(penalized)
            p0 = min(max(expected_covariates, 1), n_pen)
            tau0 = p0 / max(n_pen - p0, 1) / np.sqrt(n_obs)
            tau = pm.HalfStudentT("tau", nu=3, sigma=tau0)
            lam = pm.HalfCauchy("lam", beta=1.0, dims="penalized")
            # Slab with 4 degrees of freedom and unit scale
            c2 = pm.InverseGamma("c2", alpha=2.0, beta=2.0)
            lam_tilde = pm.math.sqrt(c2 * lam**2 / (c2 + tau**2 * lam**2))
            z = pm.Normal("z", mu=0.0, sigma=1.0, dims="penalized")
            beta_pen = pm.Deterministic("beta_penalized", z * tau * lam_tilde, dims="penalized")
            eta = eta + pm.math.dot(inputs.design.loc[pre, penalized].to_numpy(dtype=float), beta_pen)

        mu = pm.math.exp(eta)
        if family == "poisson":
            pm.Poisson("y", mu=mu, observed=y_pre)
        else:
            phi = pm.HalfNormal("overdispersion", sigma=1.0)
            pm.NegativeBinomial("y", mu=mu, alpha=1.0 / phi, observed=y_pre)

    return model


def sample_posterior(model: pm.Model, context: AnalysisContext, seed: int) -> az.InferenceData:
    """Run NUTS with the context's sampler settings.

    Raises:
        FitTimeoutError: If the sampling deadline passes before completion.
    """
    deadline = SamplingDeadline(context.timeout)
    try:
        with model:
            idata = pm.sample(
                draws=context.draws,
                tune=context.burn_in,
                chains=context.chains,
                cores=1,
                random_seed=seed,
                target_accept=context.target_accept,
                progressbar=False,
                compute_convergence_checks=False,
                idata_kwargs={"log_likelihood": True},
                callback=deadline,
            )
    except KeyboardInterrupt:
        if deadline.expired:
            raise FitTimeoutError(f"Sampling exceeded the {context.timeout}s deadline")
        raise
    except Exception as e:
        if deadline.expired:
            raise FitTimeoutError(f"Sampling exceeded the {context.timeout}s deadline") from e
        raise

    if deadline.expired:
        raise FitTimeoutError(f"Sampling exceeded the {context.timeout}s deadline")
    return idata


def posterior_draws(idata: az.InferenceData, inputs: RegressionInputs) -> pd.DataFrame:
    """Flatten chains into one row per draw with one column per model term."""
    posterior = idata.posterior.stack(sample=("chain", "draw"))
    columns: Dict[str, np.ndarray] = {"intercept": posterior["intercept"].to_numpy()}

    if inputs.free:
        beta = posterior["beta_free"].transpose("sample", "free").to_numpy()
        for i, name in enumerate(inputs.free):
            columns[name] = beta[:, i]
    if inputs.penalized:
        beta = posterior["beta_penalized"].transpose("sample", "penalized").to_numpy()
        for i, name in enumerate(inputs.penalized):
            columns[name] = beta[:, i]
    if "overdispersion" in posterior:
        columns["overdispersion"] = posterior["overdispersion"].to_numpy()

    return pd.DataFrame(columns)


def predict_counts(
    samples: pd.DataFrame, inputs: RegressionInputs, family: str, rng: np.random.Generator
) -> np.ndarray:
    """Posterior predictive counts over the full range, shape (n_draws, n_periods)."""
    terms = list(inputs.design.columns)
    eta = samples["intercept"].to_numpy()[:, None] + inputs.offset[None, :]
    if terms:
        eta = eta + samples[terms].to_numpy() @ inputs.design[terms].to_numpy(dtype=float).T
    mu = np.exp(np.minimum(eta, _MAX_LOG_RATE))

    if family == "poisson":
        return rng.poisson(mu).astype(float)

    alpha = 1.0 / samples["overdispersion"].to_numpy()[:, None]
    rates = rng.gamma(shape=alpha, scale=mu / alpha)
    return rng.poisson(rates).astype(float)


def convergence_warnings(idata: az.InferenceData, context: AnalysisContext) -> List[str]:
    """Non-convergence messages from divergences and R-hat."""
    messages = []

    divergences = int(idata.sample_stats["diverging"].sum())
    if divergences:
        messages.append(f"{divergences} divergent transitions after tuning")

    if context.chains > 1:
        rhat = az.rhat(idata.posterior)
        worst = max(float(np.nanmax(rhat[name].to_numpy())) for name in rhat.data_vars)
        if worst > context.max_rhat:
            messages.append(f"max R-hat {worst:.3f} exceeds {context.max_rhat}")

    return messages


def waic_deviance(idata: az.InferenceData) -> float:
    """WAIC on the deviance scale (-2 * elpd); lower is better."""
    with warnings.catch_warnings():
        # arviz warns when p_waic is large for some observations
        warnings.simplefilter("ignore", UserWarning)
        result = az.waic(idata)
    return float(-2.0 * result.elpd_waic)


def fit_bayesian_counterfactual(
    stratum: StratumSeries,
    variant: ModelVariant,
    design: pd.DataFrame,
    context: AnalysisContext,
    penalized: Sequence[str] = (),
    selectable: Sequence[str] = (),
    metadata: Optional[Dict[str, Any]] = None,
) -> FittedModel:
    """Fit a Bayesian count regression to the pre-period and project it.

    Args:
        stratum: Stratum being modelled.
        variant: Variant tag of the produced FittedModel.
        design: Full-range predictors on a standardised scale (no intercept).
        context: Run context (family, sampler settings, intervals).
        penalized: Columns under the horseshoe prior.
        selectable: Columns whose credible interval decides "informative".
        metadata: Extra metadata stored on the FittedModel.

    Returns:
        FittedModel: Counterfactual predictive draws over the full range.
    """
    seed = derive_seed(context.random_seed, stratum.name, variant.value, *sorted(design.columns))
    inputs = RegressionInputs(
        y=stratum.outcome.to_numpy(dtype=float),
        design=design,
        penalized=tuple(penalized),
        offset=stratum.log_offset(),
        pre_mask=stratum.pre_mask(context.intervention_date),
    )

    logger.info(
        f"Sampling {variant.value} model for stratum '{stratum.name}': "
        f"{design.shape[1]} predictors, draws={context.draws}, tune={context.burn_in}, chains={context.chains}"
    )
    model = build_count_model(inputs, context.family, context.expected_covariates)
    idata = sample_posterior(model, context, seed)

    samples = posterior_draws(idata, inputs)
    draws = predict_counts(samples, inputs, context.family, np.random.default_rng(seed))

    coefficients = summarize_coefficients(samples, context.interval)
    tail = (1.0 - context.inclusion_level) / 2.0
    informative = []
    coefficients["informative"] = False
    for name in selectable:
        lower, upper = samples[name].quantile([tail, 1.0 - tail])
        if lower > 0 or upper < 0:
            informative.append(name)
            coefficients.loc[name, "informative"] = True

    fit_warnings = convergence_warnings(idata, context)
    for message in fit_warnings:
        logger.warning(f"{variant.value} model for stratum '{stratum.name}' may be unreliable: {message}")

    return FittedModel(
        stratum=stratum.name,
        variant=variant,
        dates=stratum.index,
        observed=inputs.y,
        draws=draws,
        coefficients=coefficients,
        score=waic_deviance(idata),
        score_name="waic",
        warnings=tuple(fit_warnings),
        metadata={
            **(metadata or {}),
            "informative_covariates": informative,
            "n_pre_periods": int(inputs.pre_mask.sum()),
            "seed": seed,
        },
    )

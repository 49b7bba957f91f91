"""Synthetic Control Adapter - Bayesian count regression on STL+PCA components ("pca")."""

import logging
from typing import Optional, Sequence

import pandas as pd

from ...core.design import find_degenerate_covariates, seasonal_dummies, standardize
from ...core.series import StratumSeries
from ...core.transforms import transform_covariates
from ..base import FitTimeoutError, FittedModel, ModelExclusion, ModelInterface, ModelVariant, NoInformativeCovariateError
from ..bayesian import fit_bayesian_counterfactual
from ..factory import MODEL_REGISTRY
from .transforms import decompose_trends, reduce_covariates


@MODEL_REGISTRY.register_decorator(ModelVariant.PCA)
class SyntheticControlAdapter(ModelInterface):
    """Estimates the counterfactual from a few synthetic controls.

    Usable covariates are transformed, smoothed to their STL trend and reduced
    with PCA fitted on the pre-period. The retained components enter the
    count regression with Normal priors next to the seasonal dummies.

    Constraints:
    - At least one covariate must survive degeneracy checks
    - Covariate trends must vary over the pre-intervention period
    """

    variant = ModelVariant.PCA

    def __init__(self):
        """Initialize the SyntheticControlAdapter."""
        self.logger = logging.getLogger(__name__)
        self.is_connected = False
        self.context = None

    def fit(self, stratum: StratumSeries, exclude: Optional[Sequence[str]] = None) -> FittedModel:
        """Fit the synthetic-control regression to one stratum.

        Args:
            stratum: Validated series of the stratum.
            exclude: Covariates to leave out before the reduction.

        Returns:
            FittedModel: Counterfactual draws; metadata carries the loadings
                and explained variance of the retained components.

        Raises:
            NoInformativeCovariateError: If no usable covariate or component remains.
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

            pre_mask = stratum.pre_mask(self.context.intervention_date)
            candidates = stratum.covariates.drop(columns=[c for c in (exclude or []) if c in stratum.covariates])
            dropped = find_degenerate_covariates(candidates, pre_mask, self.context)
            usable = [name for name in candidates.columns if name not in dropped]
            if not usable:
                raise NoInformativeCovariateError(
                    f"Stratum '{stratum.name}' has no usable covariates for the pca model"
                )

            trends = decompose_trends(
                transform_covariates(candidates[usable], self.context),
                self.context.n_seasons,
                robust=self.context.stl_robust,
            )
            try:
                reduced = reduce_covariates(trends, pre_mask, self.context)
            except ValueError as e:
                raise NoInformativeCovariateError(f"Stratum '{stratum.name}': {e}") from e

            self.logger.info(
                f"Fitting pca model for stratum '{stratum.name}': {reduced.n_components} components "
                f"from {len(usable)} covariates, explained variance "
                f"{reduced.explained_variance_ratio.sum():.3f}"
            )
            design = pd.concat(
                [
                    seasonal_dummies(stratum.index, self.context.n_seasons),
                    standardize(reduced.components, pre_mask),
                ],
                axis=1,
            )
            fitted = fit_bayesian_counterfactual(
                stratum,
                self.variant,
                design,
                self.context,
                selectable=reduced.component_names,
                metadata={
                    "retained_covariates": usable,
                    "dropped_covariates": dropped,
                    "n_components": reduced.n_components,
                    "explained_variance_ratio": reduced.explained_variance_ratio.tolist(),
                    "loadings": reduced.loadings,
                },
            )

            self.logger.info(f"Pca model for stratum '{stratum.name}' complete")
            return fitted

        except (ModelExclusion, FitTimeoutError):
            raise
        except Exception as e:
            self.logger.error(f"Error fitting SyntheticControlAdapter: {e}")
            raise RuntimeError(f"Model fitting failed: {e}") from e

"""Covariate Regression Adapter - variable-selecting Bayesian count regression ("full")."""

import logging
from typing import Dict, List, Optional, Sequence

import pandas as pd

from ...core.design import find_degenerate_covariates, seasonal_dummies, standardize
from ...core.series import StratumSeries
from ...core.transforms import transform_covariates
from ..base import FitTimeoutError, FittedModel, ModelExclusion, ModelInterface, ModelVariant, NoInformativeCovariateError
from ..bayesian import fit_bayesian_counterfactual
from ..factory import MODEL_REGISTRY


@MODEL_REGISTRY.register_decorator(ModelVariant.FULL)
class CovariateRegressionAdapter(ModelInterface):
    """Counterfactual from all usable control series under a shrinkage prior.

    Every non-degenerate covariate enters the regression (transformed, then
    standardised on the pre-period) under a regularized horseshoe prior, which
    shrinks uninformative controls towards zero. Seasonal dummies carry Normal
    priors. There is no time trend: the controls carry the trend.

    Constraints:
    - At least one covariate must survive degeneracy checks
    - At least two seasonal cycles before the intervention
    """

    variant = ModelVariant.FULL

    def __init__(self):
        """Initialize the CovariateRegressionAdapter."""
        self.logger = logging.getLogger(__name__)
        self.is_connected = False
        self.context = None

    def fit(self, stratum: StratumSeries, exclude: Optional[Sequence[str]] = None) -> FittedModel:
        """Fit the covariate regression to one stratum.

        Args:
            stratum: Validated series of the stratum.
            exclude: Covariates to leave out before fitting.

        Returns:
            FittedModel: Counterfactual draws; ``metadata["informative_covariates"]``
                lists the covariates whose credible interval excludes zero.

        Raises:
            NoInformativeCovariateError: If no usable covariate remains.
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

            excluded = list(exclude or [])
            retained, dropped = self._usable_covariates(stratum, excluded)
            covariates = self._prepare_covariates(stratum, retained)
            design = pd.concat([seasonal_dummies(stratum.index, self.context.n_seasons), covariates], axis=1)

            self.logger.info(
                f"Fitting full model for stratum '{stratum.name}' with {len(retained)} covariates"
            )
            fitted = fit_bayesian_counterfactual(
                stratum,
                self.variant,
                design,
                self.context,
                penalized=retained,
                selectable=retained,
                metadata={
                    "retained_covariates": retained,
                    "dropped_covariates": dropped,
                    "excluded_covariates": excluded,
                },
            )

            self.logger.info(
                f"Full model for stratum '{stratum.name}' complete: "
                f"{len(fitted.metadata['informative_covariates'])} informative covariates"
            )
            return fitted

        except (ModelExclusion, FitTimeoutError):
            raise
        except Exception as e:
            self.logger.error(f"Error fitting CovariateRegressionAdapter: {e}")
            raise RuntimeError(f"Model fitting failed: {e}") from e

    def _usable_covariates(self, stratum: StratumSeries, excluded: List[str]):
        """Split candidate covariates into retained names and {dropped: reason}."""
        candidates = stratum.covariates.drop(columns=[c for c in excluded if c in stratum.covariates])
        pre_mask = stratum.pre_mask(self.context.intervention_date)
        dropped: Dict[str, str] = find_degenerate_covariates(candidates, pre_mask, self.context)
        for name, reason in dropped.items():
            self.logger.warning(f"Stratum '{stratum.name}': dropping covariate '{name}' ({reason})")

        retained = [name for name in candidates.columns if name not in dropped]
        if not retained:
            raise NoInformativeCovariateError(
                f"Stratum '{stratum.name}' has no usable covariates for the full model"
            )
        return retained, dropped

    def _prepare_covariates(self, stratum: StratumSeries, names: List[str]) -> pd.DataFrame:
        transformed = transform_covariates(stratum.covariates[names], self.context)
        return standardize(transformed, stratum.pre_mask(self.context.intervention_date))

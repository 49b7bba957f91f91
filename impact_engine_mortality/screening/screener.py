"""
Covariate screener.

Fits one negative-binomial regression per (stratum, covariate) on the
pre-intervention window and reports how strongly each control series tracks
the outcome. The screen is diagnostic only; it never feeds impact estimates.
"""

import logging
import warnings
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd
from statsmodels.discrete.discrete_model import NegativeBinomial
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from ..core.context import AnalysisContext
from ..core.design import DegenerateCovariateError, check_covariate, is_full_rank, seasonal_dummies
from ..core.series import StratumSeries
from ..core.transforms import get_transform

STATUS_OK = "ok"
STATUS_EXCLUDED = "excluded"

SCREENING_COLUMNS = ["stratum", "covariate", "status", "rate_ratio", "lower", "upper", "aic", "reason"]


@dataclass
class ScreeningResult:
    """Outcome of screening one covariate in one stratum.

    Attributes:
        stratum: Stratum name.
        covariate: Covariate name.
        status: "ok" or "excluded".
        rate_ratio: exp(beta) per unit of log(covariate + offset).
        lower: Lower confidence bound of the rate ratio.
        upper: Upper confidence bound of the rate ratio.
        aic: Akaike information criterion of the fit.
        reason: Why the covariate was excluded, if it was.
    """

    stratum: str
    covariate: str
    status: str
    rate_ratio: float = np.nan
    lower: float = np.nan
    upper: float = np.nan
    aic: float = np.nan
    reason: Optional[str] = None

    @classmethod
    def excluded(cls, stratum: str, covariate: str, reason: str) -> "ScreeningResult":
        return cls(stratum=stratum, covariate=covariate, status=STATUS_EXCLUDED, reason=reason)


class CovariateScreener:
    """Per-covariate negative-binomial screen of one stratum.

    Model: count ~ seasonal dummies + log(covariate + offset), with
    log(denominator) as offset when configured, fitted by maximum likelihood
    with the overdispersion parameter estimated. Confidence bounds use
    ``level``, by default the run's reported interval.
    """

    def __init__(self, context: AnalysisContext, level: Optional[float] = None):
        self.context = context
        self.level = context.interval if level is None else level
        self.logger = logging.getLogger(__name__)

    def screen_covariate(self, stratum: StratumSeries, covariate: str) -> ScreeningResult:
        """Screen one covariate.

        Degenerate covariates, rank-deficient designs and failed or
        non-converged optimisations give an "excluded" result instead of an
        exception, so one bad covariate never stops its siblings.
        """
        pre_mask = stratum.pre_mask(self.context.intervention_date)
        log_context = self.context.with_overrides(log_covariates=True)
        try:
            check_covariate(covariate, stratum.covariates[covariate], pre_mask, log_context)
        except DegenerateCovariateError as e:
            return self._exclude(stratum.name, covariate, e.reason)

        log_covariate = get_transform("log")(stratum.covariates[[covariate]], self.context.covariate_offset)
        exog = pd.concat(
            [
                pd.DataFrame({"const": 1.0}, index=stratum.index),
                seasonal_dummies(stratum.index, self.context.n_seasons),
                log_covariate,
            ],
            axis=1,
        ).loc[pre_mask]
        if not is_full_rank(exog.to_numpy()):
            return self._exclude(stratum.name, covariate, "rank-deficient design")

        try:
            model = NegativeBinomial(
                stratum.outcome.to_numpy(dtype=float)[pre_mask],
                exog,
                offset=stratum.log_offset()[pre_mask],
            )
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                results = model.fit(disp=False, maxiter=500)
        except Exception as e:
            return self._exclude(stratum.name, covariate, f"fit failed: {e}")

        if not results.mle_retvals.get("converged", True):
            return self._exclude(stratum.name, covariate, "optimisation did not converge")

        beta = float(results.params[covariate])
        lower, upper = results.conf_int(alpha=1.0 - self.level).loc[covariate]
        if not np.isfinite([beta, lower, upper]).all():
            return self._exclude(stratum.name, covariate, "non-finite estimate")

        return ScreeningResult(
            stratum=stratum.name,
            covariate=covariate,
            status=STATUS_OK,
            rate_ratio=float(np.exp(beta)),
            lower=float(np.exp(lower)),
            upper=float(np.exp(upper)),
            aic=float(results.aic),
        )

    def screen(self, stratum: StratumSeries) -> pd.DataFrame:
        """Screen every covariate of a stratum and return the ranked table."""
        self.logger.info(f"Screening {len(stratum.covariate_names)} covariates for stratum '{stratum.name}'")
        return rank_screening(self.screen_covariate(stratum, name) for name in stratum.covariate_names)

    def _exclude(self, stratum: str, covariate: str, reason: str) -> ScreeningResult:
        self.logger.warning(f"Stratum '{stratum}': covariate '{covariate}' excluded from screening ({reason})")
        return ScreeningResult.excluded(stratum, covariate, reason)


def rank_screening(results: Iterable[ScreeningResult]) -> pd.DataFrame:
    """Screening table ordered by AIC ascending, excluded rows last."""
    rows: List[dict] = [asdict(result) for result in results]
    table = pd.DataFrame(rows, columns=SCREENING_COLUMNS)
    table["_excluded"] = table["status"] != STATUS_OK
    table = table.sort_values(["_excluded", "aic"], kind="mergesort", na_position="last")
    return table.drop(columns="_excluded").reset_index(drop=True)

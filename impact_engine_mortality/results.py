"""Result containers of one impact analysis run and their comparison tables."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .core.context import AnalysisContext
from .impact.aggregator import ImpactSummary, cumulative_prevented
from .models.base import FittedModel

STATUS_OK = "ok"
STATUS_EXCLUDED = "excluded"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class VariantResult:
    """Outcome of one (stratum, variant) fit.

    Attributes:
        stratum: Stratum name.
        variant: Variant name, including "best".
        status: "ok", "excluded" (variant not applicable) or "failed".
        fitted: The fit when status is "ok".
        impact: Aggregates of ``fitted`` when status is "ok".
        reason: Exclusion or failure message.
    """

    stratum: str
    variant: str
    status: str
    fitted: Optional[FittedModel] = None
    impact: Optional[ImpactSummary] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


@dataclass
class ImpactResults:
    """Everything produced by ``evaluate_impact``.

    Attributes:
        context: Run context the results were computed with.
        variants: stratum -> variant name -> VariantResult.
        screening: stratum -> ranked covariate screening table.
        sensitivity: stratum -> leave-top-covariates-out table for "full".
    """

    context: AnalysisContext
    variants: Dict[str, Dict[str, VariantResult]] = field(default_factory=dict)
    screening: Dict[str, pd.DataFrame] = field(default_factory=dict)
    sensitivity: Dict[str, pd.DataFrame] = field(default_factory=dict)

    @property
    def strata(self) -> List[str]:
        return list(self.variants.keys())

    def get(self, stratum: str, variant: str) -> VariantResult:
        """Result of one (stratum, variant); raises KeyError if it was not run."""
        return self.variants[stratum][variant]

    def rate_ratio_table(self) -> pd.DataFrame:
        """Evaluation-window rate ratio of every (stratum, variant).

        Variants that did not fit appear with NaN estimates, their status
        and reason.
        """
        rows = []
        for stratum, results in self.variants.items():
            for variant, result in results.items():
                row = {
                    "stratum": stratum,
                    "variant": variant,
                    "status": result.status,
                    "rate_ratio": np.nan,
                    "lower": np.nan,
                    "upper": np.nan,
                    "reliable": None,
                    "selected_from": None,
                    "reason": result.reason,
                }
                if result.ok:
                    evaluation = result.impact.evaluation
                    row.update(
                        rate_ratio=evaluation["rate_ratio"],
                        lower=evaluation["lower"],
                        upper=evaluation["upper"],
                        reliable=result.fitted.reliable,
                        selected_from=result.fitted.metadata.get("selected_from"),
                    )
                rows.append(row)
        return pd.DataFrame(rows)

    def prevented_table(self, end=None, variant: str = "best") -> pd.DataFrame:
        """Cumulative prevented cases at ``end`` (default evaluation end) per stratum.

        Raises:
            InvalidAggregationRequest: If ``end`` is outside the observed range.
        """
        rows = []
        for stratum, results in self.variants.items():
            result = results.get(variant)
            row = {"stratum": stratum, "variant": variant, "median": np.nan, "lower": np.nan, "upper": np.nan}
            if result is not None and result.ok:
                if end is None:
                    prevented = result.impact.prevented
                else:
                    prevented = cumulative_prevented(result.fitted, self.context, end=end)
                row.update(prevented.total)
            rows.append(row)
        return pd.DataFrame(rows)

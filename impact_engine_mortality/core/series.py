"""Series registry: per-stratum outcome, covariates and denominator on one time index."""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

import numpy as np
import pandas as pd

from .context import AnalysisContext
from .contracts import stratum_frame_schema

logger = logging.getLogger(__name__)


class MalformedInputError(ValueError):
    """Input data violates the series contract; no fit is attempted."""


# Observations per year implied by an inferred frequency (anchor suffix stripped)
_SEASONS_BY_FREQUENCY = {"MS": 12, "M": 12, "ME": 12, "QS": 4, "Q": 4, "QE": 4, "YS": 1, "AS": 1, "Y": 1, "YE": 1, "A": 1}


def seasons_per_year(frequency: str) -> Optional[int]:
    """Observations per year of monthly, quarterly or annual data; None for other frequencies."""
    return _SEASONS_BY_FREQUENCY.get(frequency.split("-")[0])


def _check_index(index: pd.Index, label: str) -> str:
    """Validate a time index and return its inferred frequency string."""
    if not isinstance(index, pd.DatetimeIndex):
        raise MalformedInputError(f"{label}: time index must be a DatetimeIndex, got {type(index).__name__}")
    if len(index) < 3:
        raise MalformedInputError(f"{label}: at least 3 observations are required, got {len(index)}")
    if not index.is_unique:
        duplicated = index[index.duplicated()].unique().tolist()
        raise MalformedInputError(f"{label}: duplicated timestamps {duplicated[:5]}")
    if not index.is_monotonic_increasing:
        raise MalformedInputError(f"{label}: timestamps are not strictly increasing")

    freq = pd.infer_freq(index)
    if freq is None:
        raise MalformedInputError(f"{label}: time index is irregular or has gaps")
    expected = pd.date_range(index[0], periods=len(index), freq=freq)
    if not expected.equals(index):
        raise MalformedInputError(f"{label}: time index has gaps for frequency '{freq}'")
    return freq


@dataclass(frozen=True)
class StratumSeries:
    """Outcome, covariates and optional denominator of one stratum.

    All members share one strictly increasing, gap-free DatetimeIndex.
    Instances are validated on construction and never mutated afterwards.

    Attributes:
        name: Stratum label (e.g., an age band).
        outcome: Observed counts.
        covariates: Candidate control series, one column each.
        denominator: Population at risk, or None.
    """

    name: str
    outcome: pd.Series
    covariates: pd.DataFrame
    denominator: Optional[pd.Series] = None

    def __post_init__(self):
        label = f"stratum '{self.name}'"
        _check_index(self.outcome.index, label)

        if not self.covariates.columns.is_unique:
            duplicated = self.covariates.columns[self.covariates.columns.duplicated()].tolist()
            raise MalformedInputError(f"{label}: duplicated covariate names {duplicated}")
        if not self.covariates.index.equals(self.outcome.index):
            raise MalformedInputError(f"{label}: covariate index is not aligned with the outcome index")
        if self.denominator is not None and not self.denominator.index.equals(self.outcome.index):
            raise MalformedInputError(f"{label}: denominator index is not aligned with the outcome index")

        values = self.outcome.to_numpy(dtype=float)
        if np.isnan(values).any():
            raise MalformedInputError(f"{label}: outcome contains missing values")
        if (values < 0).any():
            raise MalformedInputError(f"{label}: outcome contains negative counts")
        if self.denominator is not None:
            denominator = self.denominator.to_numpy(dtype=float)
            if np.isnan(denominator).any() or (denominator <= 0).any():
                raise MalformedInputError(f"{label}: denominator must be positive and complete")

    @property
    def index(self) -> pd.DatetimeIndex:
        return self.outcome.index

    @property
    def frequency(self) -> str:
        """Frequency string inferred from the (gap-free) index, e.g. "MS" or "QS-OCT"."""
        return pd.infer_freq(self.index)

    @property
    def covariate_names(self) -> List[str]:
        return list(self.covariates.columns)

    def log_offset(self) -> np.ndarray:
        """log(denominator), or zeros when no denominator is configured."""
        if self.denominator is None:
            return np.zeros(len(self.index))
        return np.log(self.denominator.to_numpy(dtype=float))

    def pre_mask(self, intervention_date: pd.Timestamp) -> np.ndarray:
        """Boolean mask of pre-intervention timestamps."""
        return np.asarray(self.index < intervention_date)

    def without_covariates(self, names: List[str]) -> "StratumSeries":
        """Copy of the stratum with the named covariates removed."""
        return StratumSeries(
            name=self.name,
            outcome=self.outcome,
            covariates=self.covariates.drop(columns=list(names)),
            denominator=self.denominator,
        )


class SeriesRegistry:
    """Holds the validated StratumSeries of one analysis run.

    Pure data holder: it performs no modelling. Construction validates every
    stratum, its inferred frequency against ``n_seasons`` and the period
    boundaries against the observed range, so a malformed input is rejected
    before any fit starts.
    """

    def __init__(self, strata: Dict[str, StratumSeries], context: AnalysisContext):
        if not strata:
            raise MalformedInputError("No strata supplied")
        self._strata = dict(strata)
        self.context = context
        for stratum in self._strata.values():
            self._validate_seasonality(stratum)
            self._validate_periods(stratum)

    @classmethod
    def from_frame(cls, data: pd.DataFrame, context: AnalysisContext) -> "SeriesRegistry":
        """Build the registry from a long frame (one row per stratum and timestamp).

        Rows are taken in the order given; they are not sorted, so
        non-monotonic timestamps are reported rather than silently fixed.

        Args:
            data: Long-format DataFrame with group, date, outcome and covariate columns.
            context: Run context naming the columns.

        Returns:
            SeriesRegistry: One StratumSeries per group value.

        Raises:
            MalformedInputError: If the frame violates the series contract.
        """
        if not data.columns.is_unique:
            duplicated = data.columns[data.columns.duplicated()].tolist()
            raise MalformedInputError(f"Duplicated column names {duplicated}")

        try:
            stratum_frame_schema(context).validate(data)
        except ValueError as e:
            raise MalformedInputError(str(e)) from e

        covariate_columns = list(context.covariate_columns) or cls._infer_covariates(data, context)
        if len(set(covariate_columns)) != len(covariate_columns):
            raise MalformedInputError(f"Covariate names must be unique, got {covariate_columns}")

        try:
            dates = pd.to_datetime(data[context.date_column])
        except (ValueError, TypeError) as e:
            raise MalformedInputError(f"Column '{context.date_column}' is not a valid timestamp: {e}") from e

        strata: Dict[str, StratumSeries] = {}
        for name, rows in data.groupby(context.group_column, sort=False):
            index = pd.DatetimeIndex(dates.loc[rows.index], name=context.date_column)
            denominator = None
            if context.denominator_column:
                denominator = pd.Series(
                    rows[context.denominator_column].to_numpy(dtype=float),
                    index=index,
                    name=context.denominator_column,
                )
            strata[str(name)] = StratumSeries(
                name=str(name),
                outcome=pd.Series(rows[context.outcome_column].to_numpy(dtype=float), index=index, name="outcome"),
                covariates=pd.DataFrame(rows[covariate_columns].to_numpy(dtype=float), index=index, columns=covariate_columns),
                denominator=denominator,
            )

        logger.info(f"Registered {len(strata)} strata with {len(covariate_columns)} candidate covariates")
        return cls(strata, context)

    @staticmethod
    def _infer_covariates(data: pd.DataFrame, context: AnalysisContext) -> List[str]:
        reserved = {context.group_column, context.date_column, context.outcome_column, context.denominator_column}
        numeric = data.select_dtypes(include=["number"]).columns
        return [col for col in numeric if col not in reserved]

    def _validate_seasonality(self, stratum: StratumSeries) -> None:
        frequency = stratum.frequency
        expected = seasons_per_year(frequency)
        if expected is not None and expected != self.context.n_seasons:
            raise MalformedInputError(
                f"stratum '{stratum.name}': n_seasons={self.context.n_seasons} does not match "
                f"the inferred frequency '{frequency}' ({expected} observations per year)"
            )

    def _validate_periods(self, stratum: StratumSeries) -> None:
        # intervention_date <= eval_start <= eval_end <= last observation
        context = self.context
        first, last = stratum.index[0], stratum.index[-1]
        if not first < context.intervention_date <= last:
            raise MalformedInputError(
                f"stratum '{stratum.name}': intervention date {context.intervention_date.date()} "
                f"must fall after the first and within the observed range {first.date()}..{last.date()}"
            )
        if not context.intervention_date <= context.eval_start <= last:
            raise MalformedInputError(
                f"stratum '{stratum.name}': evaluation start {context.eval_start.date()} must fall between "
                f"the intervention date {context.intervention_date.date()} and the last observation {last.date()}"
            )
        if context.eval_end is not None and not context.eval_start <= context.eval_end <= last:
            raise MalformedInputError(
                f"stratum '{stratum.name}': evaluation end {context.eval_end.date()} must fall between "
                f"the evaluation start {context.eval_start.date()} and the last observation {last.date()}"
            )

    @property
    def strata(self) -> List[str]:
        return list(self._strata.keys())

    def __getitem__(self, name: str) -> StratumSeries:
        return self._strata[name]

    def __iter__(self) -> Iterator[StratumSeries]:
        return iter(self._strata.values())

    def __len__(self) -> int:
        return len(self._strata)

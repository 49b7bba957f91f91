"""Tests for SeriesRegistry and StratumSeries input validation."""

import numpy as np
import pandas as pd
import pytest
from conftest import INTERVENTION, make_context, make_frame, make_quarterly_frame, make_stratum_frame

from impact_engine_mortality.core import MalformedInputError, SeriesRegistry, StratumSeries
from impact_engine_mortality.core.series import seasons_per_year


class TestSeriesRegistry:
    """Construction from a long frame."""

    def test_one_stratum_per_group(self, context):
        registry = SeriesRegistry.from_frame(make_frame(strata=("0-64", "65+")), context)
        assert registry.strata == ["0-64", "65+"]
        assert len(registry) == 2
        stratum = registry["65+"]
        assert stratum.covariate_names == ["other_causes", "noise"]
        assert stratum.frequency == "MS"
        assert [s.name for s in registry] == ["0-64", "65+"]

    def test_covariates_inferred_when_not_configured(self):
        context = make_context(covariate_columns=())
        registry = SeriesRegistry.from_frame(make_frame(), context)
        assert registry["65+"].covariate_names == ["other_causes", "noise"]

    def test_denominator_becomes_log_offset(self):
        frame = make_frame()
        frame["population"] = 1000.0
        context = make_context(denominator_column="population")
        stratum = SeriesRegistry.from_frame(frame, context)["65+"]
        np.testing.assert_allclose(stratum.log_offset(), np.log(1000.0))

    def test_no_denominator_gives_zero_offset(self, stratum):
        assert not stratum.log_offset().any()

    def test_missing_column(self, context):
        frame = make_frame().drop(columns=["noise"])
        with pytest.raises(MalformedInputError, match="Missing required columns"):
            SeriesRegistry.from_frame(frame, context)

    def test_non_monotonic_timestamps(self, context):
        frame = make_frame().iloc[::-1].reset_index(drop=True)
        with pytest.raises(MalformedInputError, match="not strictly increasing"):
            SeriesRegistry.from_frame(frame, context)

    def test_duplicated_timestamps(self, context):
        frame = make_frame()
        frame = pd.concat([frame.iloc[:1], frame], ignore_index=True)
        with pytest.raises(MalformedInputError, match="duplicated timestamps"):
            SeriesRegistry.from_frame(frame, context)

    def test_gap_in_index(self, context):
        frame = make_frame().drop(index=[10, 11]).reset_index(drop=True)
        with pytest.raises(MalformedInputError, match="irregular or has gaps|has gaps"):
            SeriesRegistry.from_frame(frame, context)

    def test_negative_counts(self, context):
        frame = make_frame()
        frame.loc[5, "deaths"] = -1
        with pytest.raises(MalformedInputError, match="negative counts"):
            SeriesRegistry.from_frame(frame, context)

    def test_missing_counts(self, context):
        frame = make_frame()
        frame.loc[5, "deaths"] = np.nan
        with pytest.raises(MalformedInputError, match="missing values"):
            SeriesRegistry.from_frame(frame, context)

    def test_eval_end_after_last_observation(self):
        context = make_context(eval_end="2030-01-01")
        with pytest.raises(MalformedInputError, match="evaluation end"):
            SeriesRegistry.from_frame(make_frame(), context)

    def test_eval_start_after_last_observation(self):
        context = make_context(eval_start="2018-01-01")
        with pytest.raises(MalformedInputError, match="evaluation start"):
            SeriesRegistry.from_frame(make_frame(), context)

    def test_eval_start_before_intervention(self):
        context = make_context(eval_start="2014-06-01")
        with pytest.raises(MalformedInputError, match="evaluation start"):
            SeriesRegistry.from_frame(make_frame(), context)

    def test_eval_end_before_eval_start(self):
        context = make_context(eval_start="2016-01-01", eval_end="2015-06-01")
        with pytest.raises(MalformedInputError, match="evaluation end"):
            SeriesRegistry.from_frame(make_frame(), context)

    def test_intervention_outside_range(self):
        context = make_context(intervention_date="2005-01-01")
        with pytest.raises(MalformedInputError, match="intervention date"):
            SeriesRegistry.from_frame(make_frame(), context)

    def test_duplicated_covariate_names(self):
        context = make_context(covariate_columns=("noise", "noise"))
        with pytest.raises(MalformedInputError, match="unique"):
            SeriesRegistry.from_frame(make_frame(), context)


class TestSeasonality:
    """n_seasons must agree with the frequency of the index."""

    def test_monthly_data_with_quarterly_seasons(self):
        with pytest.raises(MalformedInputError, match="n_seasons=4"):
            SeriesRegistry.from_frame(make_frame(), make_context(n_seasons=4))

    def test_quarterly_data_with_monthly_seasons(self):
        with pytest.raises(MalformedInputError, match="n_seasons=12"):
            SeriesRegistry.from_frame(make_quarterly_frame(), make_context())

    def test_quarterly_data(self):
        stratum = SeriesRegistry.from_frame(make_quarterly_frame(), make_context(n_seasons=4))["65+"]
        assert stratum.frequency.startswith("QS")
        assert len(stratum.index) == 28
        assert stratum.pre_mask(INTERVENTION).sum() == 20

    @pytest.mark.parametrize(
        "frequency, expected",
        [("MS", 12), ("ME", 12), ("QS-OCT", 4), ("QE-DEC", 4), ("YS-JAN", 1), ("W-SUN", None), ("D", None)],
    )
    def test_seasons_per_year(self, frequency, expected):
        assert seasons_per_year(frequency) == expected


class TestStratumSeries:
    """Direct construction of a stratum."""

    def test_misaligned_covariates(self):
        frame = make_stratum_frame()["frame"].set_index("date")
        with pytest.raises(MalformedInputError, match="not aligned"):
            StratumSeries(
                name="65+",
                outcome=frame["deaths"],
                covariates=frame[["noise"]].iloc[1:],
            )

    def test_without_covariates(self, stratum):
        reduced = stratum.without_covariates(["noise"])
        assert reduced.covariate_names == ["other_causes"]
        assert stratum.covariate_names == ["other_causes", "noise"]

    def test_pre_mask(self, stratum, context):
        mask = stratum.pre_mask(context.intervention_date)
        assert mask.sum() == 60
        assert not mask[60:].any()

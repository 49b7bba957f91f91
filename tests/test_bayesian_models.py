"""Tests for the pymc-backed variants on the synthetic vaccine scenario.

60 pre-intervention months, 24 post-intervention months, and an outcome rate
halved after the intervention. Sampler settings are small to bound runtime.
"""

import arviz as az
import numpy as np
import pytest
from conftest import make_context, make_stratum_frame

from impact_engine_mortality.core import SeriesRegistry
from impact_engine_mortality.impact import ImpactSummary, cumulative_prevented, evaluation_rate_ratio
from impact_engine_mortality.models import FitTimeoutError, ModelsManager, NoInformativeCovariateError
from impact_engine_mortality.models.bayesian import convergence_warnings
from impact_engine_mortality.results import ImpactResults, VariantResult


@pytest.fixture(scope="module")
def scenario():
    return make_stratum_frame(seed=1)


@pytest.fixture(scope="module")
def context():
    return make_context()


@pytest.fixture(scope="module")
def stratum(scenario, context):
    return SeriesRegistry.from_frame(scenario["frame"], context)["65+"]


@pytest.fixture(scope="module")
def manager(context):
    return ModelsManager(context)


@pytest.fixture(scope="module")
def full_fit(manager, stratum):
    return manager.fit_variant(stratum, "full")


@pytest.fixture(scope="module")
def time_fit(manager, stratum):
    return manager.fit_variant(stratum, "time")


class TestCovariateRegression:
    """The "full" variant on the synthetic scenario."""

    def test_selects_related_covariate(self, full_fit):
        assert "other_causes" in full_fit.metadata["informative_covariates"]
        assert full_fit.coefficients.loc["other_causes", "informative"]
        assert full_fit.metadata["retained_covariates"] == ["other_causes", "noise"]

    def test_result_shape(self, full_fit, context):
        assert full_fit.variant.value == "full"
        assert full_fit.draws.shape == (context.draws * context.chains, 84)
        assert full_fit.score_name == "waic"
        assert np.isfinite(full_fit.score)
        assert not full_fit.draws.flags.writeable

    def test_cumulative_prevented_close_to_truth(self, full_fit, scenario, context):
        post = scenario["post"]
        observed = scenario["frame"]["deaths"].to_numpy()
        truth = float((scenario["counterfactual_rate"][post] - observed[post]).sum())

        total = cumulative_prevented(full_fit, context).total
        assert total["median"] == pytest.approx(truth, rel=0.15)
        assert total["lower"] <= truth <= total["upper"]

    def test_evaluation_rate_ratio_near_half(self, full_fit, context):
        result = evaluation_rate_ratio(full_fit, context)
        assert result["rate_ratio"] == pytest.approx(0.5, abs=0.08)
        assert result["lower"] < result["rate_ratio"] < result["upper"]

    def test_excluding_covariate_drops_it(self, manager, stratum):
        fitted = manager.fit_variant(stratum, "full", exclude=["noise"])
        assert fitted.metadata["retained_covariates"] == ["other_causes"]
        assert fitted.metadata["excluded_covariates"] == ["noise"]
        assert "noise" not in fitted.coefficients.index


class TestTimeTrend:
    """The "time" variant."""

    def test_no_systematic_pre_period_bias(self, time_fit, context):
        prediction = time_fit.prediction(context.interval)
        pre = prediction.index < context.intervention_date
        residual = (prediction.loc[pre, "pred_median"] - prediction.loc[pre, "observed"]).mean()
        width = (prediction.loc[pre, "pred_upper"] - prediction.loc[pre, "pred_lower"]).mean()
        assert abs(residual) < width

    def test_seeded_fit_is_idempotent(self, time_fit, manager, stratum):
        again = manager.fit_variant(stratum, "time")
        np.testing.assert_array_equal(again.draws, time_fit.draws)
        assert again.score == time_fit.score

    def test_trend_term_reported(self, time_fit):
        assert "time" in time_fit.coefficients.index
        assert time_fit.metadata["informative_covariates"] == []


class TestSyntheticControl:
    """The "pca" variant."""

    def test_fit(self, manager, stratum, context):
        fitted = manager.fit_variant(stratum, "pca")
        assert fitted.variant.value == "pca"
        assert fitted.metadata["n_components"] >= 1
        assert fitted.metadata["loadings"].shape[1] == 2
        assert fitted.draws.shape == (context.draws * context.chains, 84)


class TestExclusions:
    """Variants that cannot be built are excluded, not failed."""

    @pytest.mark.parametrize("variant", ["full", "pca"])
    def test_degenerate_covariates(self, manager, context, variant):
        frame = make_stratum_frame(degenerate=True)["frame"]
        degenerate = SeriesRegistry.from_frame(frame, context)["65+"]
        with pytest.raises(NoInformativeCovariateError):
            manager.fit_variant(degenerate, variant)

    def test_all_covariates_excluded(self, manager, stratum):
        with pytest.raises(NoInformativeCovariateError):
            manager.fit_variant(stratum, "full", exclude=["other_causes", "noise"])


def test_timeout_raises(stratum):
    context = make_context(timeout=1e-3, burn_in=2000, draws=2000)
    with pytest.raises(FitTimeoutError):
        ModelsManager(context).fit_variant(stratum, "time")


class TestConvergence:
    """Non-convergence is reported on the fit, which is still returned."""

    def test_warnings_from_divergences_and_rhat(self):
        rng = np.random.default_rng(0)
        # Two chains centred far apart cannot agree
        beta = np.stack([rng.normal(0.0, 1.0, 100), rng.normal(5.0, 1.0, 100)])
        diverging = np.zeros((2, 100), dtype=bool)
        diverging[0, :3] = True
        idata = az.from_dict(posterior={"beta": beta}, sample_stats={"diverging": diverging})

        messages = convergence_warnings(idata, make_context(chains=2))
        assert messages[0] == "3 divergent transitions after tuning"
        assert "R-hat" in messages[1]

    def test_single_chain_skips_rhat(self):
        idata = az.from_dict(
            posterior={"beta": np.random.default_rng(0).normal(size=(1, 100))},
            sample_stats={"diverging": np.zeros((1, 100), dtype=bool)},
        )
        assert convergence_warnings(idata, make_context(chains=1)) == []

    def test_short_sampler_is_unreliable(self, stratum):
        context = make_context(burn_in=5, draws=20, max_rhat=1.001)
        fitted = ModelsManager(context).fit_variant(stratum, "time")

        assert fitted.reliable is False
        assert any("R-hat" in message or "divergent" in message for message in fitted.warnings)
        assert fitted.draws.shape == (40, 84)

        results = ImpactResults(
            context,
            variants={
                "65+": {
                    "time": VariantResult(
                        "65+", "time", "ok", fitted=fitted, impact=ImpactSummary.from_fitted(fitted, context)
                    )
                }
            },
        )
        assert results.rate_ratio_table()["reliable"].tolist() == [False]

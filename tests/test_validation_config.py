"""Tests for load_config and AnalysisContext construction."""

import json

import pandas as pd
import pytest

from impact_engine_mortality.core import AnalysisContext, ConfigValidationError, deep_merge, get_defaults, load_config

_MINIMAL_VALID_CONFIG = {
    "DATA": {"outcome_column": "deaths"},
    "PERIODS": {"intervention_date": "2015-01-01"},
}


def test_load_config_from_dict_valid():
    """load_config accepts a pre-parsed dict and returns merged config."""
    result = load_config(_MINIMAL_VALID_CONFIG)
    assert result["DATA"]["outcome_column"] == "deaths"
    assert result["MEASUREMENT"]["MODELS"] == ["full", "pca", "time", "its"]
    assert result["SAMPLER"]["draws"] == 1000


def test_load_config_none_raises():
    """load_config(None) raises ConfigValidationError - required fields are null."""
    with pytest.raises(ConfigValidationError, match="outcome_column"):
        load_config(None)


def test_load_config_yaml_file(tmp_path):
    """Unquoted YAML dates are accepted."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "DATA:\n  outcome_column: deaths\nPERIODS:\n  intervention_date: 2015-01-01\n  eval_end: 2016-12-01\n"
    )
    result = load_config(path)
    context = AnalysisContext.from_config(result)
    assert context.eval_end == pd.Timestamp("2016-12-01")


def test_load_config_json_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(_MINIMAL_VALID_CONFIG))
    assert load_config(str(path))["PERIODS"]["intervention_date"] == "2015-01-01"


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigValidationError, match="not found"):
        load_config(tmp_path / "missing.yaml")


def test_defaults_file_matches_known_sections():
    defaults = get_defaults()
    assert set(defaults) == {"DATA", "PERIODS", "MEASUREMENT", "SAMPLER", "EXECUTION", "SENSITIVITY"}
    assert defaults["MEASUREMENT"]["BEST_PRECEDENCE"] == ["full", "pca", "time"]


class TestParameterValidation:
    """Parameter-level validation collects every problem."""

    def _invalid(self, **sections):
        return deep_merge(_MINIMAL_VALID_CONFIG, sections)

    def test_unknown_model(self):
        with pytest.raises(ConfigValidationError, match="Unknown MEASUREMENT.MODELS"):
            load_config(self._invalid(MEASUREMENT={"MODELS": ["full", "arima"]}))

    def test_best_precedence_rejects_its(self):
        with pytest.raises(ConfigValidationError, match="BEST_PRECEDENCE"):
            load_config(self._invalid(MEASUREMENT={"BEST_PRECEDENCE": ["its", "time"]}))

    def test_period_ordering(self):
        config = self._invalid(PERIODS={"eval_start": "2014-01-01"})
        with pytest.raises(ConfigValidationError, match="intervention_date <= eval_start"):
            load_config(config)

    def test_bad_date_format(self):
        with pytest.raises(ConfigValidationError, match="Invalid date format"):
            load_config(self._invalid(PERIODS={"intervention_date": "01/01/2015"}))

    def test_family(self):
        with pytest.raises(ConfigValidationError, match="family"):
            load_config(self._invalid(MEASUREMENT={"PARAMS": {"family": "gaussian"}}))

    def test_multiple_errors_reported_together(self):
        config = self._invalid(SAMPLER={"draws": 0, "chains": -1}, EXECUTION={"executor": "cluster"})
        with pytest.raises(ConfigValidationError) as excinfo:
            load_config(config)
        message = str(excinfo.value)
        assert "SAMPLER.draws" in message
        assert "SAMPLER.chains" in message
        assert "EXECUTION.executor" in message

    def test_year_start_month_range(self):
        with pytest.raises(ConfigValidationError, match="year_start_month"):
            load_config(self._invalid(PERIODS={"year_start_month": 13}))

    @pytest.mark.parametrize(
        "sampler, field",
        [
            ({"target_accept": 1.7}, "SAMPLER.target_accept"),
            ({"target_accept": 0}, "SAMPLER.target_accept"),
            ({"random_seed": None}, "SAMPLER.random_seed"),
            ({"random_seed": -3}, "SAMPLER.random_seed"),
            ({"random_seed": 1.5}, "SAMPLER.random_seed"),
            ({"max_rhat": 0.99}, "SAMPLER.max_rhat"),
        ],
    )
    def test_sampler_ranges(self, sampler, field):
        with pytest.raises(ConfigValidationError, match=field):
            load_config(self._invalid(SAMPLER=sampler))

    def test_expected_covariates_positive(self):
        with pytest.raises(ConfigValidationError, match="expected_covariates"):
            load_config(self._invalid(MEASUREMENT={"PARAMS": {"expected_covariates": 0}}))

    def test_sensitivity_settings(self):
        config = self._invalid(SENSITIVITY={"enabled": "yes", "n_drop": 0})
        with pytest.raises(ConfigValidationError) as excinfo:
            load_config(config)
        message = str(excinfo.value)
        assert "SENSITIVITY.enabled" in message
        assert "SENSITIVITY.n_drop" in message

    def test_null_seed_rejected_before_context(self):
        """A null seed is a validation error, not a TypeError in the context."""
        with pytest.raises(ConfigValidationError, match="random_seed"):
            AnalysisContext.from_source(self._invalid(SAMPLER={"random_seed": None}))


class TestAnalysisContext:
    """AnalysisContext conversion from the merged config."""

    def test_from_config_defaults(self):
        context = AnalysisContext.from_config(load_config(_MINIMAL_VALID_CONFIG))
        assert context.intervention_date == pd.Timestamp("2015-01-01")
        assert context.eval_start == context.intervention_date
        assert context.eval_end is None
        assert context.models == ("full", "pca", "time", "its")
        assert context.family == "negative_binomial"
        assert context.timeout is None

    def test_context_is_immutable(self):
        context = AnalysisContext.from_source(_MINIMAL_VALID_CONFIG)
        with pytest.raises(AttributeError):
            context.draws = 10

    def test_with_overrides(self):
        context = AnalysisContext.from_source(_MINIMAL_VALID_CONFIG)
        changed = context.with_overrides(draws=50, eval_end="2016-06-01")
        assert changed.draws == 50
        assert changed.eval_end == pd.Timestamp("2016-06-01")
        assert context.draws == 1000

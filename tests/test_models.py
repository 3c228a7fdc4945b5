"""
Tests for randslopes.models module.
"""

import numpy as np
import pandas as pd
import pytest

from randslopes.exceptions import ConfigurationError
from randslopes.models import (
    SimulationConfig,
    Dataset,
    FittedModel,
    RandomEffects,
    information_criteria,
)


def make_config(**overrides):
    values = dict(
        n_subjects=10, n_sessions=4,
        baseline_mean=0.0, slope_mean=1.0,
        intercept_sd=2.0, slope_sd=0.5,
        correlation=0.3, residual_sd=1.0,
        seed=1
    )
    values.update(overrides)
    return SimulationConfig(**values)


class TestSimulationConfig:
    """Tests for SimulationConfig dataclass."""

    def test_creation(self):
        """Test basic config creation."""
        config = make_config()

        assert config.n_subjects == 10
        assert config.n_sessions == 4
        assert config.n_observations == 40
        assert config.seed == 1

    def test_covariance_matrix(self):
        """Test covariance uses variances on the diagonal and rho·sd·sd off it."""
        config = make_config(intercept_sd=50.0, slope_sd=25.0, correlation=0.2)

        expected = np.array([[2500.0, 250.0], [250.0, 625.0]])
        np.testing.assert_allclose(config.covariance, expected)

    @pytest.mark.parametrize("correlation", [-1.5, 1.01, np.nan])
    def test_correlation_out_of_range(self, correlation):
        """Test correlation outside [-1, 1] is rejected."""
        with pytest.raises(ConfigurationError):
            make_config(correlation=correlation)

    def test_correlation_bounds_allowed(self):
        """Test rho = ±1 is a valid (semi-definite) configuration."""
        assert make_config(correlation=1.0).correlation == 1.0
        assert make_config(correlation=-1.0).correlation == -1.0

    @pytest.mark.parametrize("field", ["n_subjects", "n_sessions"])
    @pytest.mark.parametrize("value", [0, -3])
    def test_non_positive_sizes(self, field, value):
        """Test non-positive subject/session counts are rejected."""
        with pytest.raises(ConfigurationError):
            make_config(**{field: value})

    def test_non_integer_size(self):
        """Test fractional counts are rejected."""
        with pytest.raises(ConfigurationError):
            make_config(n_subjects=2.5)

    @pytest.mark.parametrize("field", ["intercept_sd", "slope_sd", "residual_sd"])
    def test_negative_sd(self, field):
        """Test negative standard deviations are rejected."""
        with pytest.raises(ConfigurationError):
            make_config(**{field: -1.0})

    def test_configuration_error_is_value_error(self):
        """Test ConfigurationError can be caught as ValueError."""
        with pytest.raises(ValueError):
            make_config(correlation=2.0)

    def test_dict_round_trip(self):
        """Test to_dict / from_dict preserve every field."""
        config = make_config()
        assert SimulationConfig.from_dict(config.to_dict()) == config

    def test_from_dict_unknown_field(self):
        """Test unknown fields are reported."""
        values = make_config().to_dict()
        values['n_groups'] = 3

        with pytest.raises(ConfigurationError, match="n_groups"):
            SimulationConfig.from_dict(values)


class TestDataset:
    """Tests for the Dataset wrapper."""

    def test_properties(self, line_dataset):
        """Test size and subject bookkeeping."""
        assert len(line_dataset) == 12
        assert line_dataset.n_observations == 12
        assert line_dataset.n_subjects == 3
        np.testing.assert_array_equal(line_dataset.subjects, [1, 2, 3])
        assert list(line_dataset.observations_per_subject) == [4, 4, 4]

    def test_missing_columns(self):
        """Test frames without subject/session/value are rejected."""
        with pytest.raises(ValueError, match="missing required columns"):
            Dataset(pd.DataFrame({'subject': [1], 'value': [1.0]}))

    def test_frame_is_a_copy(self, line_dataset):
        """Test modifying the returned frame does not modify the dataset."""
        frame = line_dataset.frame
        frame.loc[0, 'value'] = -999.0

        assert line_dataset.frame.loc[0, 'value'] == 10.0

    def test_source_frame_is_copied(self):
        """Test modifying the input frame after construction has no effect."""
        frame = pd.DataFrame({'subject': [1, 1], 'session': [0, 1], 'value': [1.0, 2.0]})
        dataset = Dataset(frame)
        frame.loc[0, 'value'] = 100.0

        assert dataset.values[0] == 1.0

    def test_with_column(self, line_dataset):
        """Test with_column returns a new dataset and leaves the original alone."""
        flags = np.arange(len(line_dataset)) % 2 == 0
        derived = line_dataset.with_column('even_row', flags)

        assert 'even_row' in derived.frame.columns
        assert 'even_row' not in line_dataset.frame.columns
        np.testing.assert_array_equal(derived.values, line_dataset.values)

    def test_with_column_rejects_core_columns(self, line_dataset):
        """Test core columns cannot be overwritten."""
        with pytest.raises(ValueError):
            line_dataset.with_column('value', np.zeros(len(line_dataset)))

    def test_with_column_length_mismatch(self, line_dataset):
        """Test derived columns must match the number of rows."""
        with pytest.raises(ValueError):
            line_dataset.with_column('fitted', np.zeros(3))

    def test_groups_order(self, line_dataset):
        """Test groups are yielded in order of first appearance."""
        subjects = [subject for subject, _ in line_dataset.groups()]
        assert subjects == [1, 2, 3]

    def test_csv_round_trip(self, small_dataset, tmp_path):
        """Test to_csv / from_csv preserve the long-format data."""
        path = tmp_path / "data.csv"
        small_dataset.to_csv(path)
        loaded = Dataset.from_csv(path)

        pd.testing.assert_frame_equal(loaded.frame, small_dataset.frame)

    def test_from_csv_missing_columns(self, tmp_path):
        """Test loading a CSV without a value column fails."""
        path = tmp_path / "bad.csv"
        pd.DataFrame({'subject': [1], 'session': [0]}).to_csv(path, index=False)

        with pytest.raises(ValueError):
            Dataset.from_csv(path)


class TestFittedModel:
    """Tests for FittedModel derived quantities."""

    @pytest.fixture
    def model(self):
        return FittedModel(
            label='random_slope',
            method='ML',
            params={'intercept': 600.0, 'slope': -8.0},
            std_errors={'intercept': 9.0, 'slope': 4.5},
            residual_sd=30.0,
            log_likelihood=-750.0,
            n_params=6,
            n_obs=150,
            random_effects=RandomEffects(intercept_sd=50.0, slope_sd=25.0, correlation=0.2),
        )

    def test_aic(self, model):
        """Test AIC = -2 logLik + 2k."""
        assert model.aic == pytest.approx(1500.0 + 12.0)

    def test_bic(self, model):
        """Test BIC = -2 logLik + k log n."""
        assert model.bic == pytest.approx(1500.0 + 6 * np.log(150))

    def test_shortcuts(self, model):
        """Test slope/intercept shortcuts."""
        assert model.slope == -8.0
        assert model.slope_se == 4.5
        assert model.intercept == 600.0
        assert model.intercept_se == 9.0

    def test_str(self, model):
        """Test the text summary names the model and its estimates."""
        text = str(model)
        assert 'Random intercept + slope' in text
        assert 'corr' in text
        assert 'AIC' in text

    def test_str_shows_messages(self, model):
        """Test fit messages appear as notes in the text summary."""
        model.messages = ("The MLE may be on the boundary of the parameter space.",)
        assert 'note: The MLE may be on the boundary' in str(model)

    def test_matches_information_criteria(self, model):
        """Test the properties use the shared AIC/BIC helper."""
        assert (model.aic, model.bic) == information_criteria(-750.0, 6, 150)

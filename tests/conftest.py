"""
Shared pytest fixtures for the randslopes test suite.
"""

import numpy as np
import pandas as pd
import pytest

from randslopes.analysis import compare_models
from randslopes.models import SimulationConfig, Dataset
from randslopes.simulation import simulate_repeated_measures


@pytest.fixture(scope="session")
def reference_config():
    """Reference scenario: 30 subjects × 5 sessions, correlated random slopes."""
    return SimulationConfig(
        n_subjects=30,
        n_sessions=5,
        baseline_mean=600.0,
        slope_mean=-10.0,
        intercept_sd=50.0,
        slope_sd=25.0,
        correlation=0.2,
        residual_sd=30.0,
        seed=314
    )


@pytest.fixture(scope="session")
def reference_dataset(reference_config):
    return simulate_repeated_measures(reference_config)


@pytest.fixture(scope="session")
def reference_report(reference_dataset):
    """Full four-variant comparison of the reference dataset (fitted once)."""
    return compare_models(reference_dataset)


@pytest.fixture
def small_config():
    """Small configuration for fast tests."""
    return SimulationConfig(
        n_subjects=12,
        n_sessions=4,
        baseline_mean=100.0,
        slope_mean=2.0,
        intercept_sd=10.0,
        slope_sd=3.0,
        correlation=-0.3,
        residual_sd=5.0,
        seed=7
    )


@pytest.fixture
def small_dataset(small_config):
    return simulate_repeated_measures(small_config)


@pytest.fixture(scope="session")
def no_slope_variance_dataset():
    """Many subjects, random intercepts only (slope_sd = 0)."""
    config = SimulationConfig(
        n_subjects=200,
        n_sessions=5,
        baseline_mean=600.0,
        slope_mean=-10.0,
        intercept_sd=50.0,
        slope_sd=0.0,
        correlation=0.0,
        residual_sd=30.0,
        seed=2024
    )
    return simulate_repeated_measures(config)


@pytest.fixture
def single_observation_dataset(small_dataset):
    """small_dataset with subject 3 reduced to its first session."""
    frame = small_dataset.frame
    keep = ~((frame['subject'] == 3) & (frame['session'] > 0))
    return Dataset(frame[keep])


@pytest.fixture
def line_dataset():
    """Three subjects on exact lines, no noise."""
    rows = []
    for subject, (intercept, slope) in enumerate([(10.0, 1.0), (20.0, -2.0), (0.0, 0.5)], start=1):
        for session in range(4):
            rows.append({'subject': subject, 'session': session,
                         'value': intercept + slope * session})
    return Dataset(pd.DataFrame(rows))


@pytest.fixture
def mock_study_results():
    """Hand-made simulation study output for summary tests."""
    return pd.DataFrame({
        'replicate': np.arange(4),
        'slope_random_intercept': [-10.0, -9.0, -11.0, -10.0],
        'slope_se_random_intercept': [0.5, 0.5, 0.5, 0.5],
        'slope_random_slope': [-10.0, -9.0, -11.0, -10.0],
        'slope_se_random_slope': [2.0, 2.0, 2.0, 2.0],
        'aic_random_intercept': [100.0, 101.0, 102.0, 103.0],
        'aic_random_slope': [90.0, 91.0, 92.0, 93.0],
        'lrt_statistic': [12.0, 0.5, 20.0, 8.0],
        'lrt_p_value': [0.002, 0.78, 0.00005, 0.018],
        'converged_random_intercept': [True] * 4,
        'converged_random_slope': [True] * 4,
    })

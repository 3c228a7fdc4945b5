"""
Synthetic repeated-measures generator.

Each subject i gets one joint draw of (b0_i, b1_i) from a bivariate normal
with mean zero and covariance

    [[sd_int²,             rho·sd_int·sd_slope],
     [rho·sd_int·sd_slope, sd_slope²          ]]

and each observation is

    value_ij = baseline + b0_i + (slope + b1_i) · session_j + eps_ij,
    eps_ij ~ N(0, sd_residual²)

with session_j = 0, 1, ..., n_sessions - 1.
"""

from typing import Optional, Union

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError
from .models import SimulationConfig, Dataset


RandomSource = Union[np.random.Generator, int, None]


def make_rng(rng: RandomSource = None, seed: Optional[int] = None) -> np.random.Generator:
    """Return ``rng`` if it is a Generator, else a new seeded Generator."""
    if isinstance(rng, np.random.Generator):
        return rng
    if rng is not None:
        return np.random.default_rng(rng)
    return np.random.default_rng(seed)


def covariance_factor(covariance: np.ndarray, tol: float = 1e-10) -> np.ndarray:
    """
    Factor L with L @ L.T == covariance.

    Uses the Cholesky factor when the matrix is positive definite and the
    eigen-decomposition factor when it is only semi-definite (e.g. a zero SD).

    Raises:
        ConfigurationError: if the matrix is not square, not symmetric, or
            has a negative eigenvalue
    """
    cov = np.asarray(covariance, dtype=float)
    if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
        raise ConfigurationError(f"Covariance must be a square matrix, got shape {cov.shape}")
    if not np.all(np.isfinite(cov)):
        raise ConfigurationError("Covariance contains non-finite entries")

    scale = max(1.0, np.max(np.abs(cov)))
    if not np.allclose(cov, cov.T, atol=tol * scale):
        raise ConfigurationError("Covariance matrix is not symmetric")

    eigvals, eigvecs = np.linalg.eigh(cov)
    if eigvals.min() < -tol * scale:
        raise ConfigurationError(
            f"Covariance matrix is not positive semi-definite "
            f"(smallest eigenvalue {eigvals.min():.3g})"
        )

    try:
        return np.linalg.cholesky(cov)
    except np.linalg.LinAlgError:
        return eigvecs * np.sqrt(np.clip(eigvals, 0.0, None))


def correlated_normal(rng: np.random.Generator, covariance: np.ndarray,
                      size: int) -> np.ndarray:
    """
    Draw ``size`` zero-mean samples from a multivariate normal.

    Returns:
        Array of shape (size, dim)
    """
    factor = covariance_factor(covariance)
    z = rng.standard_normal((size, factor.shape[0]))
    return z @ factor.T


def draw_subject_effects(config: SimulationConfig,
                         rng: np.random.Generator) -> pd.DataFrame:
    """
    One (intercept offset, slope offset) draw per subject.

    Returns:
        DataFrame with columns subject, intercept_offset, slope_offset
    """
    draws = correlated_normal(rng, config.covariance, config.n_subjects)
    return pd.DataFrame({
        'subject': np.arange(1, config.n_subjects + 1),
        'intercept_offset': draws[:, 0],
        'slope_offset': draws[:, 1],
    })


def simulate_repeated_measures(config: SimulationConfig,
                               rng: RandomSource = None) -> Dataset:
    """
    Simulate a repeated-measures Dataset.

    Args:
        config: Simulation parameters (validated before any draw)
        rng: numpy Generator or integer seed; defaults to ``config.seed``

    Returns:
        Dataset of n_subjects × n_sessions rows, subject-major order
    """
    config.validate()
    rng = make_rng(rng, config.seed)

    effects = draw_subject_effects(config, rng)
    noise = rng.normal(0.0, config.residual_sd, size=(config.n_subjects, config.n_sessions))

    sessions = np.arange(config.n_sessions)
    intercepts = config.baseline_mean + effects['intercept_offset'].to_numpy()
    slopes = config.slope_mean + effects['slope_offset'].to_numpy()

    # Rows: subject-major, session-minor
    values = intercepts[:, None] + slopes[:, None] * sessions[None, :] + noise

    frame = pd.DataFrame({
        'subject': np.repeat(effects['subject'].to_numpy(), config.n_sessions),
        'session': np.tile(sessions, config.n_subjects),
        'value': values.ravel(),
    })

    return Dataset(frame, effects=effects, config=config)

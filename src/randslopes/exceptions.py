"""
Exceptions and warnings raised by randslopes.
"""

from typing import Optional


class RandSlopesError(Exception):
    """Base class for randslopes errors"""


class ConfigurationError(RandSlopesError, ValueError):
    """Invalid simulation configuration (sizes, SDs, correlation, covariance)."""


class InsufficientDataError(RandSlopesError, ValueError):
    """
    A group has fewer observations than parameters to estimate.

    Attributes:
        subject: Offending subject id (None when the problem is dataset-wide)
        n_observations: Number of usable observations found
        n_params: Number of parameters that had to be estimated
    """

    def __init__(self, message: str, subject: Optional[int] = None,
                 n_observations: Optional[int] = None,
                 n_params: Optional[int] = None):
        super().__init__(message)
        self.subject = subject
        self.n_observations = n_observations
        self.n_params = n_params


class ConvergenceWarning(UserWarning):
    """Mixed-model optimizer did not reach a stable optimum; estimates kept."""

"""
Data structures for simulated repeated-measures data and fitted models.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError


# Model variants, ordered from least to most flexible
FULL_POOLING = 'full_pooling'
NO_POOLING = 'no_pooling'
RANDOM_INTERCEPT = 'random_intercept'
RANDOM_SLOPE = 'random_slope'

VARIANTS = (FULL_POOLING, NO_POOLING, RANDOM_INTERCEPT, RANDOM_SLOPE)

VARIANT_NAMES = {
    FULL_POOLING: 'Full pooling',
    NO_POOLING: 'No pooling',
    RANDOM_INTERCEPT: 'Random intercept',
    RANDOM_SLOPE: 'Random intercept + slope',
}

CORE_COLUMNS = ('subject', 'session', 'value')


def information_criteria(log_likelihood: float, n_params: int,
                         n_obs: int) -> Tuple[float, float]:
    """
    Returns:
        aic, bic
    """
    aic = -2 * log_likelihood + 2 * n_params
    bic = -2 * log_likelihood + n_params * np.log(n_obs)
    return aic, bic


@dataclass
class SimulationConfig:
    """Parameters for the synthetic repeated-measures generator"""
    n_subjects: int  # Number of subjects, ids 1..n_subjects
    n_sessions: int  # Sessions per subject, indexed 0..n_sessions-1
    baseline_mean: float  # Fixed intercept
    slope_mean: float  # Fixed change per session
    intercept_sd: float  # SD of subject intercept offsets
    slope_sd: float  # SD of subject slope offsets
    correlation: float  # Intercept-slope correlation (rho)
    residual_sd: float  # SD of observation-level noise
    seed: Optional[int] = None

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ConfigurationError if any field is out of range."""
        for name in ('n_subjects', 'n_sessions'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

        for name in ('baseline_mean', 'slope_mean'):
            if not np.isfinite(getattr(self, name)):
                raise ConfigurationError(f"{name} must be finite")

        for name in ('intercept_sd', 'slope_sd', 'residual_sd'):
            value = getattr(self, name)
            if not np.isfinite(value) or value < 0:
                raise ConfigurationError(f"{name} must be finite and non-negative, got {value}")

        if not np.isfinite(self.correlation) or not -1.0 <= self.correlation <= 1.0:
            raise ConfigurationError(
                f"correlation must lie in [-1, 1], got {self.correlation}"
            )

    @property
    def n_observations(self) -> int:
        return self.n_subjects * self.n_sessions

    @property
    def covariance(self) -> np.ndarray:
        """Covariance matrix of (intercept offset, slope offset)"""
        cov_is = self.correlation * self.intercept_sd * self.slope_sd
        return np.array([
            [self.intercept_sd ** 2, cov_is],
            [cov_is, self.slope_sd ** 2],
        ])

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: dict) -> 'SimulationConfig':
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")
        return cls(**values)


class Dataset:
    """
    Long-format repeated-measures data: one row per (subject, session).

    The wrapped frame is never modified. Derived columns are added with
    ``with_column``, which returns a new Dataset.
    """

    def __init__(self, frame: pd.DataFrame,
                 effects: Optional[pd.DataFrame] = None,
                 config: Optional[SimulationConfig] = None):
        missing = [c for c in CORE_COLUMNS if c not in frame.columns]
        if missing:
            raise ValueError(f"Dataset is missing required columns: {missing}")

        self._frame = frame.reset_index(drop=True).copy()
        self._effects = None if effects is None else effects.reset_index(drop=True).copy()
        self.config = config

    def __len__(self) -> int:
        return len(self._frame)

    def __repr__(self) -> str:
        return (f"Dataset(n_subjects={self.n_subjects}, "
                f"n_observations={self.n_observations})")

    @property
    def frame(self) -> pd.DataFrame:
        """Copy of the underlying long-format frame"""
        return self._frame.copy()

    @property
    def effects(self) -> Optional[pd.DataFrame]:
        """Latent per-subject draws (simulated data only)"""
        return None if self._effects is None else self._effects.copy()

    @property
    def n_observations(self) -> int:
        return len(self._frame)

    @property
    def subjects(self) -> np.ndarray:
        """Subject ids in order of first appearance"""
        return pd.unique(self._frame['subject'])

    @property
    def n_subjects(self) -> int:
        return len(self.subjects)

    @property
    def observations_per_subject(self) -> pd.Series:
        return self._frame.groupby('subject', sort=False).size()

    @property
    def sessions(self) -> np.ndarray:
        return self._frame['session'].to_numpy(copy=True)

    @property
    def values(self) -> np.ndarray:
        return self._frame['value'].to_numpy(copy=True)

    def groups(self):
        """Iterate over (subject, sub-frame) pairs in order of appearance."""
        for subject, group in self._frame.groupby('subject', sort=False):
            yield subject, group.copy()

    def with_column(self, name: str, values) -> 'Dataset':
        """Return a new Dataset with an extra derived column."""
        if name in CORE_COLUMNS:
            raise ValueError(f"Cannot overwrite core column '{name}'")
        values = np.asarray(values)
        if len(values) != len(self._frame):
            raise ValueError(
                f"Column '{name}' has {len(values)} values, dataset has {len(self._frame)} rows"
            )
        frame = self._frame.copy()
        frame[name] = values
        return Dataset(frame, effects=self._effects, config=self.config)

    def equals(self, other: 'Dataset') -> bool:
        return isinstance(other, Dataset) and self._frame.equals(other._frame)

    def to_csv(self, filepath: str):
        self._frame.to_csv(filepath, index=False)

    @classmethod
    def from_csv(cls, filepath: str) -> 'Dataset':
        """
        Load long-format data from CSV.

        Expected format:
            subject, session, value
            1, 0, 612.3
            1, 1, 598.1
            ...
        """
        frame = pd.read_csv(filepath)
        missing = [c for c in CORE_COLUMNS if c not in frame.columns]
        if missing:
            raise ValueError(f"{filepath} is missing required columns: {missing}")
        frame['subject'] = frame['subject'].astype(int)
        frame['session'] = frame['session'].astype(int)
        frame['value'] = frame['value'].astype(float)
        return cls(frame)


@dataclass
class RandomEffects:
    """Estimated subject-level variance components"""
    intercept_sd: float
    slope_sd: Optional[float] = None
    correlation: Optional[float] = None


@dataclass
class FittedModel:
    """Result of fitting one model variant to a Dataset"""
    label: str  # One of VARIANTS
    method: str  # 'OLS', 'REML' or 'ML'
    params: Dict[str, float]  # Fixed effects: 'intercept', 'slope'
    std_errors: Dict[str, float]
    residual_sd: float
    log_likelihood: float
    n_params: int  # Includes the residual variance
    n_obs: int
    converged: bool = True
    random_effects: Optional[RandomEffects] = None
    messages: Tuple[str, ...] = ()
    subject_coefficients: Optional[pd.DataFrame] = None  # subject, intercept, slope
    fitted_values: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def aic(self) -> float:
        """Akaike Information Criterion"""
        return information_criteria(self.log_likelihood, self.n_params, self.n_obs)[0]

    @property
    def bic(self) -> float:
        """Bayesian Information Criterion"""
        return information_criteria(self.log_likelihood, self.n_params, self.n_obs)[1]

    @property
    def intercept(self) -> float:
        return self.params['intercept']

    @property
    def intercept_se(self) -> float:
        return self.std_errors['intercept']

    @property
    def slope(self) -> float:
        return self.params['slope']

    @property
    def slope_se(self) -> float:
        return self.std_errors['slope']

    def __str__(self):
        lines = [
            f"{VARIANT_NAMES.get(self.label, self.label)} ({self.method})",
            f"  intercept = {self.intercept:.3f} ± {self.intercept_se:.3f}",
            f"  slope     = {self.slope:.3f} ± {self.slope_se:.3f}",
        ]
        re = self.random_effects
        if re is not None:
            lines.append(f"  SD(intercept) = {re.intercept_sd:.3f}")
            if re.slope_sd is not None:
                lines.append(f"  SD(slope)     = {re.slope_sd:.3f}")
                lines.append(f"  corr          = {re.correlation:.3f}")
        lines.extend([
            f"  residual SD = {self.residual_sd:.3f}",
            f"  logLik = {self.log_likelihood:.2f}  (k = {self.n_params})",
            f"  AIC = {self.aic:.1f}  BIC = {self.bic:.1f}",
            f"  converged: {self.converged}",
        ])
        lines.extend(f"  note: {message}" for message in self.messages)
        return "\n".join(lines)


@dataclass
class LikelihoodRatioTest:
    """Likelihood-ratio test between two nested ML fits"""
    restricted: str
    full: str
    statistic: float
    df: int
    p_value: float
    mixture_p_value: float  # 50:50 chi-squared mixture for a variance on the boundary
    converged: bool = True  # False if a fit did not converge or logLik decreased

    def significant(self, alpha: float = 0.05) -> bool:
        return self.p_value < alpha


@dataclass
class VariantOutcome:
    """Outcome of one requested variant: converged, warning or failed"""
    label: str
    status: str
    model: Optional[FittedModel] = None
    error: Optional[str] = None

    @property
    def converged(self) -> bool:
        return self.status == 'converged'


@dataclass
class ComparisonReport:
    """Per-variant fits plus the random-slope likelihood-ratio test"""
    outcomes: Dict[str, VariantOutcome]
    ml_refits: Dict[str, FittedModel]
    lrt: Optional[LikelihoodRatioTest]
    n_obs: int
    n_subjects: int

    def __getitem__(self, label: str) -> VariantOutcome:
        return self.outcomes[label]

    def model(self, label: str) -> Optional[FittedModel]:
        """Fitted model for a variant, or None if it failed"""
        return self.outcomes[label].model

    def summary_table(self) -> pd.DataFrame:
        """One row per requested variant, in request order."""
        rows = []
        for label, outcome in self.outcomes.items():
            row = {'variant': label, 'status': outcome.status, 'error': outcome.error}
            if outcome.model is not None:
                row.update(_model_row(outcome.model))
            rows.append(row)
        return pd.DataFrame(rows, columns=['variant', 'method'] + _ROW_COLUMNS +
                            ['status', 'error'])

    def information_criteria_table(self) -> pd.DataFrame:
        """
        AIC/BIC of every fitted variant on the maximum-likelihood scale.

        REML fits are replaced by their ML refits so all rows are comparable.
        Fits with an unbounded log-likelihood (saturated no pooling) are left out.
        """
        rows = []
        for label, outcome in self.outcomes.items():
            model = outcome.model
            if model is None:
                continue
            if model.method == 'REML':
                model = self.ml_refits.get(label)
                if model is None:
                    continue
            if not np.isfinite(model.log_likelihood):
                continue
            rows.append({
                'variant': label,
                'method': model.method,
                'log_likelihood': model.log_likelihood,
                'n_params': model.n_params,
                'aic': model.aic,
                'bic': model.bic,
            })
        table = pd.DataFrame(rows, columns=['variant', 'method', 'log_likelihood',
                                            'n_params', 'aic', 'bic'])
        table['delta_aic'] = table['aic'] - table['aic'].min()
        return table

    def __str__(self):
        lines = [f"Model comparison ({self.n_subjects} subjects, {self.n_obs} observations)"]
        for outcome in self.outcomes.values():
            lines.append("")
            if outcome.model is None:
                lines.append(f"{VARIANT_NAMES.get(outcome.label, outcome.label)}: FAILED")
                lines.append(f"  {outcome.error}")
            else:
                lines.append(str(outcome.model))
        if self.lrt is not None:
            lines.extend([
                "",
                f"LRT {self.lrt.full} vs {self.lrt.restricted}: "
                f"chi2({self.lrt.df}) = {self.lrt.statistic:.2f}, "
                f"p = {self.lrt.p_value:.3g}",
            ])
            if not self.lrt.converged:
                lines.append("  (unreliable: a fit did not converge or logLik decreased)")
        return "\n".join(lines)


_ROW_COLUMNS = [
    'intercept', 'intercept_se', 'slope', 'slope_se',
    'intercept_sd', 'slope_sd', 're_correlation', 'residual_sd',
    'log_likelihood', 'n_params', 'aic', 'bic', 'converged', 'messages',
]


def _model_row(model: FittedModel) -> dict:
    re = model.random_effects
    return {
        'method': model.method,
        'intercept': model.intercept,
        'intercept_se': model.intercept_se,
        'slope': model.slope,
        'slope_se': model.slope_se,
        'intercept_sd': re.intercept_sd if re is not None else np.nan,
        'slope_sd': re.slope_sd if re is not None and re.slope_sd is not None else np.nan,
        're_correlation': (re.correlation if re is not None and re.correlation is not None
                           else np.nan),
        'residual_sd': model.residual_sd,
        'log_likelihood': model.log_likelihood,
        'n_params': model.n_params,
        'aic': model.aic,
        'bic': model.bic,
        'converged': model.converged,
        'messages': '; '.join(model.messages),
    }

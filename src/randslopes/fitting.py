"""
Model Variants for Repeated-Measures Data
=========================================

Four nested structures for value ~ session, from least to most flexible:

    (a) full pooling      one intercept and slope for everyone (OLS)
    (b) no pooling        an independent intercept/slope per subject
    (c) random intercept  shared slope, subject intercepts ~ N(0, tau0²)
    (d) random slope      subject (intercept, slope) ~ N(0, Sigma), Sigma
                          including the intercept-slope correlation

(c) and (d) are fitted with statsmodels MixedLM, by REML by default or by
maximum likelihood (reml=False) when log-likelihoods are to be compared.
Fixed-effect standard errors for (c) and (d) are sqrt(diag((X' V⁻¹ X)⁻¹))
and subject coefficients are the conditional modes, both evaluated at the
estimated variance components.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union
import warnings

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.regression.mixed_linear_model import MixedLMParams

from .exceptions import ConvergenceWarning, InsufficientDataError
from .models import (
    Dataset,
    FittedModel,
    RandomEffects,
    FULL_POOLING,
    NO_POOLING,
    RANDOM_INTERCEPT,
    RANDOM_SLOPE,
    VARIANT_NAMES,
)


FORMULA = 'value ~ session'

# Tried in order until one converges
OPTIMIZERS = ('lbfgs', 'bfgs', 'powell', 'nm')


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class SubjectFit:
    """Least-squares line for a single subject"""
    subject: int
    intercept: float
    slope: float
    rss: float  # Residual sum of squares
    n_obs: int


# =============================================================================
# HELPERS
# =============================================================================

def _fit_line(sessions: np.ndarray, values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    X = np.column_stack([np.ones(len(sessions)), sessions])
    coef, _, _, _ = np.linalg.lstsq(X, values, rcond=None)
    return coef, values - X @ coef


def _require_sessions(frame: pd.DataFrame, label: str):
    n_distinct = frame['session'].nunique()
    if n_distinct < 2:
        raise InsufficientDataError(
            f"{VARIANT_NAMES[label]} needs at least 2 distinct sessions to "
            f"estimate a slope, got {n_distinct}",
            n_observations=len(frame), n_params=2
        )


def _conditional_estimates(frame: pd.DataFrame, beta: np.ndarray, cov_re: np.ndarray,
                           scale: float, random_slope: bool):
    """
    GLS quantities at the estimated variance components.

    With V_i = Z_i G Z_i' + scale·I per subject:
        cov(beta) = (sum X_i' V_i⁻¹ X_i)⁻¹
        b_i       = G Z_i' V_i⁻¹ (y_i - X_i beta)

    G is never inverted, so a singular G (variance on the boundary) is fine.

    Returns:
        cov_fe, dict subject -> b_i, fitted values (X beta + Z b)
    """
    sessions = frame['session'].to_numpy(dtype=float)
    values = frame['value'].to_numpy(dtype=float)

    xtvx = np.zeros((2, 2))
    blups = {}
    fitted = np.empty(len(frame))
    for subject, idx in frame.groupby('subject', sort=False).indices.items():
        X = np.column_stack([np.ones(len(idx)), sessions[idx]])
        Z = X if random_slope else X[:, :1]
        V = Z @ cov_re @ Z.T + scale * np.eye(len(idx))
        xtvx += X.T @ np.linalg.solve(V, X)
        b = cov_re @ Z.T @ np.linalg.solve(V, values[idx] - X @ beta)
        blups[subject] = b
        fitted[idx] = X @ beta + Z @ b

    return np.linalg.inv(xtvx), blups, fitted


# =============================================================================
# (a) FULL POOLING
# =============================================================================

def fit_full_pooling(dataset: Dataset) -> FittedModel:
    """
    Ordinary least squares of value on session, ignoring subject identity.
    """
    frame = dataset.frame
    _require_sessions(frame, FULL_POOLING)
    if len(frame) <= 2:
        raise InsufficientDataError(
            f"Full pooling needs more than 2 observations, got {len(frame)}",
            n_observations=len(frame), n_params=3
        )

    result = smf.ols(FORMULA, data=frame).fit()

    params = {'intercept': float(result.params['Intercept']),
              'slope': float(result.params['session'])}
    std_errors = {'intercept': float(result.bse['Intercept']),
                  'slope': float(result.bse['session'])}

    subjects = dataset.subjects
    coefficients = pd.DataFrame({
        'subject': subjects,
        'intercept': params['intercept'],
        'slope': params['slope'],
    })

    return FittedModel(
        label=FULL_POOLING,
        method='OLS',
        params=params,
        std_errors=std_errors,
        residual_sd=float(np.sqrt(result.scale)),
        log_likelihood=float(result.llf),
        n_params=3,
        n_obs=len(frame),
        subject_coefficients=coefficients,
        fitted_values=np.asarray(result.fittedvalues),
    )


# =============================================================================
# (b) NO POOLING
# =============================================================================

def fit_per_subject(dataset: Dataset) -> Dict[int, Union[SubjectFit, InsufficientDataError]]:
    """
    Fit a separate line to every subject.

    Subjects with fewer than 2 observations (or fewer than 2 distinct
    sessions) are reported as an InsufficientDataError in place of a fit;
    the other subjects are unaffected.

    Returns:
        Mapping subject -> SubjectFit or InsufficientDataError, in order of
        first appearance
    """
    fits = {}
    for subject, group in dataset.groups():
        subject = int(subject)
        n_obs = len(group)
        n_distinct = group['session'].nunique()
        if n_obs < 2 or n_distinct < 2:
            fits[subject] = InsufficientDataError(
                f"Subject {subject} has {n_obs} observation(s) in {n_distinct} "
                f"distinct session(s); at least 2 are needed to fit an intercept "
                f"and a slope",
                subject=subject, n_observations=n_obs, n_params=2
            )
            continue

        coef, resid = _fit_line(group['session'].to_numpy(dtype=float),
                                group['value'].to_numpy(dtype=float))
        fits[subject] = SubjectFit(
            subject=subject,
            intercept=float(coef[0]),
            slope=float(coef[1]),
            rss=float(np.sum(resid ** 2)),
            n_obs=n_obs,
        )
    return fits


def fit_no_pooling(dataset: Dataset) -> FittedModel:
    """
    Independent intercept/slope per subject.

    The fixed-effect summary is the mean of the per-subject estimates with
    standard error sd/sqrt(N). The log-likelihood is that of the joint model
    value ~ subject * session with one residual variance (2N + 1 parameters).

    With exactly two observations per subject every line is determined
    exactly: the coefficients are returned with a zero residual SD and an
    infinite log-likelihood, and a message saying so.

    Raises:
        InsufficientDataError: if any subject cannot be fitted
    """
    fits = fit_per_subject(dataset)
    failures = [f for f in fits.values() if isinstance(f, InsufficientDataError)]
    if failures:
        raise failures[0]

    n_groups = len(fits)
    n_obs = dataset.n_observations
    n_params = 2 * n_groups + 1
    residual_df = n_obs - 2 * n_groups

    coefficients = pd.DataFrame({
        'subject': [f.subject for f in fits.values()],
        'intercept': [f.intercept for f in fits.values()],
        'slope': [f.slope for f in fits.values()],
    })

    rss = sum(f.rss for f in fits.values())
    messages = ()
    if residual_df == 0 or rss == 0:
        # Lines pass through every observation: sigma -> 0, logLik -> +inf
        residual_sd = 0.0
        log_likelihood = np.inf
        messages = (
            f"No pooling is saturated ({n_obs} observations, {2 * n_groups} "
            f"coefficients); residual SD is 0 and the log-likelihood is unbounded",
        )
    else:
        residual_sd = np.sqrt(rss / residual_df)
        log_likelihood = -0.5 * n_obs * (np.log(2 * np.pi * rss / n_obs) + 1)

    if n_groups > 1:
        std_errors = {
            'intercept': float(coefficients['intercept'].std(ddof=1) / np.sqrt(n_groups)),
            'slope': float(coefficients['slope'].std(ddof=1) / np.sqrt(n_groups)),
        }
    else:
        std_errors = {'intercept': np.nan, 'slope': np.nan}

    frame = dataset.frame
    lookup = coefficients.set_index('subject')
    fitted = (frame['subject'].map(lookup['intercept']) +
              frame['subject'].map(lookup['slope']) * frame['session'])

    return FittedModel(
        label=NO_POOLING,
        method='OLS',
        params={'intercept': float(coefficients['intercept'].mean()),
                'slope': float(coefficients['slope'].mean())},
        std_errors=std_errors,
        residual_sd=float(residual_sd),
        log_likelihood=float(log_likelihood),
        n_params=n_params,
        n_obs=n_obs,
        messages=messages,
        subject_coefficients=coefficients,
        fitted_values=fitted.to_numpy(dtype=float),
    )


# =============================================================================
# (c), (d) PARTIAL POOLING
# =============================================================================

def _run_mixedlm(model, reml: bool, method, start_params=None):
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        result = model.fit(reml=reml, method=method, start_params=start_params)
    return result, tuple(str(w.message) for w in caught)


def _embedded_start(restricted: FittedModel) -> MixedLMParams:
    """
    Random-slope starting point at the random-intercept optimum.

    MixedLM works with covariances relative to the residual variance, and
    packs them through a Cholesky factor, so the slope variance starts at a
    negligible positive value instead of exactly zero.
    """
    scale = restricted.residual_sd ** 2
    cov_re = np.diag([restricted.random_effects.intercept_sd ** 2 / scale, 1e-8])
    fe_params = np.array([restricted.intercept, restricted.slope])
    return MixedLMParams.from_components(fe_params=fe_params, cov_re=cov_re)


def _fit_mixed(dataset: Dataset, label: str, random_slope: bool, reml: bool,
               method: Optional[Union[str, Sequence[str]]] = None,
               restricted: Optional[FittedModel] = None) -> FittedModel:
    frame = dataset.frame
    name = VARIANT_NAMES[label]
    n_groups = frame['subject'].nunique()
    if n_groups < 2:
        raise InsufficientDataError(
            f"{name} needs at least 2 subjects to estimate a variance, got {n_groups}",
            n_observations=len(frame), n_params=4 if not random_slope else 6
        )
    _require_sessions(frame, label)

    re_formula = '~session' if random_slope else '1'
    model = smf.mixedlm(FORMULA, frame, groups=frame['subject'], re_formula=re_formula)

    if method is None:
        method = list(OPTIMIZERS)
    fit_method = 'REML' if reml else 'ML'

    result, messages = _run_mixedlm(model, reml, method)

    # (d) nests (c): an optimum below (c)'s is a local one, restart from (c)
    if (restricted is not None and restricted.method == fit_method
            and restricted.random_effects is not None
            and restricted.residual_sd > 0
            and result.llf < restricted.log_likelihood):
        retry, retry_messages = _run_mixedlm(model, reml, method,
                                             start_params=_embedded_start(restricted))
        if retry.llf > result.llf:
            result = retry
            messages = messages + retry_messages
        messages = messages + (
            f"Restarted from the {VARIANT_NAMES[restricted.label].lower()} optimum",)

    converged = bool(result.converged)
    if not converged:
        warnings.warn(
            f"{name} ({fit_method}) did not converge; estimates may be unreliable",
            ConvergenceWarning,
            stacklevel=3
        )

    fe = result.fe_params
    scale = float(result.scale)
    cov_re = np.asarray(result.cov_re, dtype=float)

    beta = np.array([fe['Intercept'], fe['session']], dtype=float)
    cov_fe, blups, fitted = _conditional_estimates(frame, beta, cov_re, scale, random_slope)
    std_errors = {'intercept': float(np.sqrt(cov_fe[0, 0])),
                  'slope': float(np.sqrt(cov_fe[1, 1]))}

    intercept_var = max(cov_re[0, 0], 0.0)
    if random_slope:
        slope_var = max(cov_re[1, 1], 0.0)
        if intercept_var > 0 and slope_var > 0:
            correlation = float(np.clip(cov_re[0, 1] / np.sqrt(intercept_var * slope_var),
                                        -1.0, 1.0))
        else:
            correlation = 0.0  # Undefined when a variance is zero
        random_effects = RandomEffects(intercept_sd=float(np.sqrt(intercept_var)),
                                       slope_sd=float(np.sqrt(slope_var)),
                                       correlation=correlation)
    else:
        random_effects = RandomEffects(intercept_sd=float(np.sqrt(intercept_var)))

    # Conditional (BLUP) coefficients per subject
    subjects = dataset.subjects
    coefficients = pd.DataFrame({
        'subject': subjects,
        'intercept': [beta[0] + blups[s][0] for s in subjects],
        'slope': [beta[1] + (blups[s][1] if random_slope else 0.0) for s in subjects],
    })

    return FittedModel(
        label=label,
        method=fit_method,
        params={'intercept': float(fe['Intercept']), 'slope': float(fe['session'])},
        std_errors=std_errors,
        residual_sd=float(np.sqrt(scale)),
        log_likelihood=float(result.llf),
        n_params=6 if random_slope else 4,
        n_obs=len(frame),
        converged=converged,
        random_effects=random_effects,
        messages=tuple(dict.fromkeys(messages)),
        subject_coefficients=coefficients,
        fitted_values=fitted,
    )


def fit_random_intercept(dataset: Dataset, reml: bool = True,
                         method: Optional[Union[str, Sequence[str]]] = None) -> FittedModel:
    """
    Mixed model with a shared slope and subject-varying intercepts.

    Args:
        dataset: Long-format data
        reml: REML (True) or maximum likelihood (False)
        method: Optimizer(s) passed to MixedLM.fit (None = OPTIMIZERS)
    """
    return _fit_mixed(dataset, RANDOM_INTERCEPT, random_slope=False,
                      reml=reml, method=method)


def fit_random_slope(dataset: Dataset, reml: bool = True,
                     method: Optional[Union[str, Sequence[str]]] = None,
                     restricted: Optional[FittedModel] = None) -> FittedModel:
    """
    Mixed model with correlated subject-varying intercepts and slopes.

    Passing the random-intercept fit of the same dataset and criterion as
    ``restricted`` guarantees logLik(d) >= logLik(c): if the optimizer stops
    below it, the fit is restarted from the random-intercept optimum with
    zero slope variance.
    """
    return _fit_mixed(dataset, RANDOM_SLOPE, random_slope=True,
                      reml=reml, method=method, restricted=restricted)


FITTERS = {
    FULL_POOLING: lambda dataset, reml: fit_full_pooling(dataset),
    NO_POOLING: lambda dataset, reml: fit_no_pooling(dataset),
    RANDOM_INTERCEPT: lambda dataset, reml: fit_random_intercept(dataset, reml=reml),
    RANDOM_SLOPE: lambda dataset, reml: fit_random_slope(dataset, reml=reml),
}

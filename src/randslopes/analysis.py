"""
Nested model comparison for repeated-measures data.

The random-slope model (d) nests the random-intercept model (c): setting
the slope variance and the intercept-slope covariance to zero recovers (c).
Both are refitted by maximum likelihood so that

    LR = 2·(logLik(d) − logLik(c))  ~  chi²(df = 6 − 4 = 2)

is a valid comparison. Because the slope variance is tested on the boundary
of its parameter space, the naive chi²(2) p-value is conservative; the
50:50 mixture of chi²(1) and chi²(2) is reported alongside.
"""

from typing import Dict, Iterable
import warnings

import numpy as np
import pandas as pd
from scipy import stats

from .exceptions import ConvergenceWarning, InsufficientDataError
from .fitting import FITTERS, fit_random_intercept, fit_random_slope
from .models import (
    ComparisonReport,
    Dataset,
    FittedModel,
    LikelihoodRatioTest,
    VariantOutcome,
    VARIANTS,
    RANDOM_INTERCEPT,
    RANDOM_SLOPE,
)


def likelihood_ratio_test(restricted: FittedModel, full: FittedModel) -> LikelihoodRatioTest:
    """
    Likelihood-ratio test of a restricted model against a model nesting it.

    A negative log-likelihood difference beyond rounding means the larger
    model stopped at a worse optimum. The statistic is still reported as 0,
    but the test is flagged converged=False and a ConvergenceWarning is raised.

    Raises:
        ValueError: if either fit used REML, or the models are not ordered
            by parameter count
    """
    for model in (restricted, full):
        if model.method == 'REML':
            raise ValueError(
                f"{model.label} was fitted by REML; refit with reml=False "
                f"before a likelihood-ratio test"
            )
    df = full.n_params - restricted.n_params
    if df <= 0:
        raise ValueError(
            f"{full.label} ({full.n_params} parameters) does not extend "
            f"{restricted.label} ({restricted.n_params} parameters)"
        )

    raw = 2 * (full.log_likelihood - restricted.log_likelihood)
    tol = 1e-6 * max(1.0, abs(restricted.log_likelihood))
    converged = restricted.converged and full.converged
    if raw < -tol:
        converged = False
        warnings.warn(
            f"{full.label} has a lower log-likelihood than the nested "
            f"{restricted.label} ({full.log_likelihood:.3f} < "
            f"{restricted.log_likelihood:.3f}); the likelihood-ratio test is unreliable",
            ConvergenceWarning,
            stacklevel=2
        )

    statistic = max(0.0, raw)
    p_value = stats.chi2.sf(statistic, df)
    mixture_p_value = 0.5 * stats.chi2.sf(statistic, df) + 0.5 * stats.chi2.sf(statistic, df - 1)

    return LikelihoodRatioTest(
        restricted=restricted.label,
        full=full.label,
        statistic=float(statistic),
        df=int(df),
        p_value=float(p_value),
        mixture_p_value=float(mixture_p_value),
        converged=converged,
    )


def _outcome(label: str, model: FittedModel) -> VariantOutcome:
    # A saturated fit is returned but not counted as a clean success
    ok = model.converged and np.isfinite(model.log_likelihood)
    return VariantOutcome(label=label, status='converged' if ok else 'warning', model=model)


def _fit_variant(dataset: Dataset, label: str, reml: bool, fitted: dict) -> VariantOutcome:
    try:
        if label == RANDOM_SLOPE:
            restricted = fitted.get(RANDOM_INTERCEPT)
            model = fit_random_slope(dataset, reml=reml,
                                     restricted=restricted.model if restricted else None)
        else:
            model = FITTERS[label](dataset, reml)
    except (InsufficientDataError, np.linalg.LinAlgError) as e:
        return VariantOutcome(label=label, status='failed', error=str(e))
    return _outcome(label, model)


def compare_models(dataset: Dataset, reml: bool = True,
                   variants: Iterable[str] = VARIANTS) -> ComparisonReport:
    """
    Fit each requested variant and compare them.

    The random-intercept model is fitted before the random-slope model
    whatever the requested order, so that (d) can be restarted from (c)'s
    optimum if its own optimizer stops below it.

    Args:
        dataset: Long-format repeated-measures data
        reml: Fit the mixed models by REML for reporting; they are always
            refitted by ML for the likelihood-ratio test
        variants: Subset of VARIANTS, reported in the order given

    Returns:
        ComparisonReport in which every requested variant appears, including
        failed ones
    """
    variants = list(variants)
    unknown = [v for v in variants if v not in FITTERS]
    if unknown:
        raise ValueError(f"Unknown model variants: {unknown}")

    fitted = {}
    for label in sorted(variants, key=VARIANTS.index):
        fitted[label] = _fit_variant(dataset, label, reml, fitted)
    outcomes = {label: fitted[label] for label in variants}

    ml_refits = {}
    for label in (RANDOM_INTERCEPT, RANDOM_SLOPE):
        if label not in outcomes or outcomes[label].model is None:
            continue
        if not reml:
            ml_refits[label] = outcomes[label].model
            continue
        try:
            if label == RANDOM_INTERCEPT:
                ml_refits[label] = fit_random_intercept(dataset, reml=False)
            else:
                ml_refits[label] = fit_random_slope(
                    dataset, reml=False, restricted=ml_refits.get(RANDOM_INTERCEPT))
        except (InsufficientDataError, np.linalg.LinAlgError):
            continue

    lrt = None
    if RANDOM_INTERCEPT in ml_refits and RANDOM_SLOPE in ml_refits:
        lrt = likelihood_ratio_test(ml_refits[RANDOM_INTERCEPT], ml_refits[RANDOM_SLOPE])

    return ComparisonReport(
        outcomes=outcomes,
        ml_refits=ml_refits,
        lrt=lrt,
        n_obs=dataset.n_observations,
        n_subjects=dataset.n_subjects,
    )


def compare_standard_errors(report: ComparisonReport) -> dict:
    """
    Fixed slope under the random-intercept and random-slope models.

    Returns dictionary with both estimates and SEs, the difference in
    estimates, and the SE inflation ratio SE(d) / SE(c).
    """
    ri = report.model(RANDOM_INTERCEPT)
    rs = report.model(RANDOM_SLOPE)
    if ri is None or rs is None:
        raise ValueError("Both mixed models must have been fitted successfully")

    return {
        'slope_random_intercept': ri.slope,
        'slope_se_random_intercept': ri.slope_se,
        'slope_random_slope': rs.slope,
        'slope_se_random_slope': rs.slope_se,
        'slope_difference': rs.slope - ri.slope,
        'se_ratio': rs.slope_se / ri.slope_se,
    }


def summarize_simulation_study(results: pd.DataFrame, true_slope: float,
                               alpha: float = 0.05) -> Dict[str, dict]:
    """
    Operating characteristics of the slope test under (c) and (d).

    Args:
        results: Output of ensemble.run_simulation_study
        true_slope: Slope used to generate the data
        alpha: Significance level

    Returns:
        Dictionary keyed by variant with:
            - mean_estimate, empirical_sd, mean_se
            - coverage (of the true slope by the 1-alpha Wald interval)
            - rejection_rate (of H0: slope = 0)
        plus 'lrt' with power (rejection rate) and mean statistic.
    """
    z_crit = stats.norm.ppf(1 - alpha / 2)
    summary = {}

    for label in (RANDOM_INTERCEPT, RANDOM_SLOPE):
        est = results[f'slope_{label}'].to_numpy()
        se = results[f'slope_se_{label}'].to_numpy()
        lower, upper = est - z_crit * se, est + z_crit * se
        summary[label] = {
            'mean_estimate': float(np.mean(est)),
            'empirical_sd': float(np.std(est, ddof=1)) if len(est) > 1 else np.nan,
            'mean_se': float(np.mean(se)),
            'coverage': float(np.mean((lower <= true_slope) & (true_slope <= upper))),
            'rejection_rate': float(np.mean(np.abs(est / se) > z_crit)),
        }

    p_values = results['lrt_p_value'].dropna().to_numpy()
    summary['lrt'] = {
        'n': int(len(p_values)),
        'power': float(np.mean(p_values < alpha)) if len(p_values) else np.nan,
        'mean_statistic': float(results['lrt_statistic'].mean()),
    }
    return summary

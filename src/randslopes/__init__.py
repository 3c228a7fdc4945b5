"""
randslopes - Why Mixed-Effects Models Need Random Slopes
========================================================

Simulate repeated measures with correlated subject-level random intercepts
and slopes, then fit four nested structures to the same data:

    (a) full pooling      value ~ session, subjects ignored
    (b) no pooling        one line per subject
    (c) random intercept  value ~ session + (1 | subject)
    (d) random slope      value ~ session + (1 + session | subject)

The fixed slope barely moves between (c) and (d); its standard error does.
When subjects differ in their slopes, (c) understates the uncertainty of the
average slope. (d) is preferred by AIC and by a likelihood-ratio test on
maximum-likelihood refits.
"""

__version__ = "0.1.0"

# Errors and warnings
from .exceptions import (
    RandSlopesError,
    ConfigurationError,
    InsufficientDataError,
    ConvergenceWarning,
)

# Data structures
from .models import (
    SimulationConfig,
    Dataset,
    FittedModel,
    RandomEffects,
    LikelihoodRatioTest,
    VariantOutcome,
    ComparisonReport,
    VARIANTS,
    VARIANT_NAMES,
    FULL_POOLING,
    NO_POOLING,
    RANDOM_INTERCEPT,
    RANDOM_SLOPE,
    information_criteria,
)

# Generator
from .simulation import (
    simulate_repeated_measures,
    draw_subject_effects,
    correlated_normal,
    covariance_factor,
    make_rng,
)

# Model variants
from .fitting import (
    SubjectFit,
    fit_full_pooling,
    fit_per_subject,
    fit_no_pooling,
    fit_random_intercept,
    fit_random_slope,
)

# Comparison
from .analysis import (
    likelihood_ratio_test,
    compare_models,
    compare_standard_errors,
    summarize_simulation_study,
)

# Simulation study
from .ensemble import run_simulation_study

# Plotting functions
from .plotting import (
    plot_subject_trajectories,
    plot_pooling_comparison,
    plot_information_criteria,
    plot_simulation_study,
)

__all__ = [
    # Version
    "__version__",
    # Errors
    "RandSlopesError",
    "ConfigurationError",
    "InsufficientDataError",
    "ConvergenceWarning",
    # Data structures
    "SimulationConfig",
    "Dataset",
    "FittedModel",
    "RandomEffects",
    "LikelihoodRatioTest",
    "VariantOutcome",
    "ComparisonReport",
    "VARIANTS",
    "VARIANT_NAMES",
    "FULL_POOLING",
    "NO_POOLING",
    "RANDOM_INTERCEPT",
    "RANDOM_SLOPE",
    # Generator
    "simulate_repeated_measures",
    "draw_subject_effects",
    "correlated_normal",
    "covariance_factor",
    "make_rng",
    # Model variants
    "SubjectFit",
    "fit_full_pooling",
    "fit_per_subject",
    "fit_no_pooling",
    "fit_random_intercept",
    "fit_random_slope",
    "information_criteria",
    # Comparison
    "likelihood_ratio_test",
    "compare_models",
    "compare_standard_errors",
    "summarize_simulation_study",
    # Simulation study
    "run_simulation_study",
    # Plotting
    "plot_subject_trajectories",
    "plot_pooling_comparison",
    "plot_information_criteria",
    "plot_simulation_study",
]

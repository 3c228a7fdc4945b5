"""
CLI entry point for the randslopes package.

Allows running as:
    python -m randslopes
    randslopes (CLI command)
"""

import argparse
from pathlib import Path

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from .analysis import compare_models, compare_standard_errors, summarize_simulation_study
from .ensemble import run_simulation_study
from .models import Dataset, SimulationConfig
from .plotting import (
    plot_subject_trajectories,
    plot_pooling_comparison,
    plot_information_criteria,
    plot_simulation_study,
)
from .simulation import simulate_repeated_measures


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='randslopes',
        description='Simulate repeated measures and compare pooling / mixed-effects models'
    )
    parser.add_argument('--subjects', type=int, default=30, help='Number of subjects')
    parser.add_argument('--sessions', type=int, default=5, help='Sessions per subject')
    parser.add_argument('--baseline', type=float, default=600.0, help='Fixed intercept')
    parser.add_argument('--slope', type=float, default=-10.0, help='Fixed slope per session')
    parser.add_argument('--intercept-sd', type=float, default=50.0,
                        help='SD of subject intercepts')
    parser.add_argument('--slope-sd', type=float, default=25.0, help='SD of subject slopes')
    parser.add_argument('--correlation', type=float, default=0.2,
                        help='Intercept-slope correlation')
    parser.add_argument('--residual-sd', type=float, default=30.0, help='Residual SD')
    parser.add_argument('--seed', type=int, default=314, help='Random seed')
    parser.add_argument('--data', type=str, default=None,
                        help='Fit a long-format CSV (subject, session, value) instead of simulating')
    parser.add_argument('--ml', action='store_true',
                        help='Report maximum-likelihood instead of REML mixed fits')
    parser.add_argument('--n-reps', type=int, default=0,
                        help='Replicates for a simulation study (0 = skip)')
    parser.add_argument('--output', type=str, default=None,
                        help='Directory for figures and CSV output')
    return parser


def main(argv=None):
    """
    Simulate (or load) a dataset, compare the four models, print the report.
    """
    args = build_parser().parse_args(argv)

    print("=" * 70)
    print("RANDOM SLOPES: NESTED MODEL COMPARISON")
    print("=" * 70)

    config = SimulationConfig(
        n_subjects=args.subjects,
        n_sessions=args.sessions,
        baseline_mean=args.baseline,
        slope_mean=args.slope,
        intercept_sd=args.intercept_sd,
        slope_sd=args.slope_sd,
        correlation=args.correlation,
        residual_sd=args.residual_sd,
        seed=args.seed,
    )

    if args.data is not None:
        dataset = Dataset.from_csv(args.data)
        print(f"\nLoaded {args.data}")
    else:
        dataset = simulate_repeated_measures(config)
        print(f"\nSimulated data:")
        for name, value in config.to_dict().items():
            print(f"  {name:<14} = {value}")
    print(f"  {dataset.n_subjects} subjects, {dataset.n_observations} observations")

    # -------------------------------------------------------------------------
    # Fit and compare
    # -------------------------------------------------------------------------
    print("\n" + "-" * 40)
    print("Fitting models...")
    report = compare_models(dataset, reml=not args.ml)
    print(report)

    print("\n" + "-" * 40)
    print("Information criteria (ML scale):")
    print(report.information_criteria_table().to_string(index=False, float_format='%.2f'))

    try:
        se = compare_standard_errors(report)
    except ValueError:
        se = None
    if se is not None:
        print(f"\nSlope SE inflation, random slope vs random intercept: "
              f"{se['slope_se_random_intercept']:.2f} -> {se['slope_se_random_slope']:.2f} "
              f"(x{se['se_ratio']:.2f})")

    # -------------------------------------------------------------------------
    # Simulation study
    # -------------------------------------------------------------------------
    study = None
    if args.n_reps > 0:
        print("\n" + "-" * 40)
        print(f"Running {args.n_reps} simulate-and-fit replicates...")
        study = run_simulation_study(config, n_reps=args.n_reps, reml=not args.ml)
        summary = summarize_simulation_study(study, true_slope=config.slope_mean)
        for label in ('random_intercept', 'random_slope'):
            s = summary[label]
            print(f"  {label:<17} mean SE = {s['mean_se']:.2f}, "
                  f"empirical SD = {s['empirical_sd']:.2f}, "
                  f"coverage = {s['coverage'] * 100:.1f}%")
        print(f"  LRT power = {summary['lrt']['power'] * 100:.1f}%")

    # -------------------------------------------------------------------------
    # Outputs
    # -------------------------------------------------------------------------
    if args.output is not None:
        output = Path(args.output)
        output.mkdir(parents=True, exist_ok=True)
        print("\n" + "-" * 40)
        print("Saving outputs...")

        dataset.to_csv(output / 'dataset.csv')
        report.summary_table().to_csv(output / 'summary.csv', index=False)
        print(f"  Saved: {output / 'dataset.csv'}")
        print(f"  Saved: {output / 'summary.csv'}")

        figures = {
            'figure_trajectories.png': plot_subject_trajectories(dataset),
            'figure_pooling.png': plot_pooling_comparison(dataset, report),
            'figure_information_criteria.png': plot_information_criteria(report),
        }
        if study is not None:
            study.to_csv(output / 'simulation_study.csv', index=False)
            figures['figure_simulation_study.png'] = plot_simulation_study(
                study, true_slope=config.slope_mean)

        for name, fig in figures.items():
            fig.savefig(output / name, dpi=150, bbox_inches='tight')
            plt.close(fig)
            print(f"  Saved: {output / name}")

    print("\n" + "=" * 70)
    print("COMPARISON COMPLETE")
    print("=" * 70)

    return report


if __name__ == "__main__":
    main()

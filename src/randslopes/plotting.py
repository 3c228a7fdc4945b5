"""
Visualization of simulated datasets and model comparisons.
"""

from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from .analysis import summarize_simulation_study
from .models import (
    ComparisonReport,
    Dataset,
    VARIANT_NAMES,
    FULL_POOLING,
    NO_POOLING,
    RANDOM_INTERCEPT,
    RANDOM_SLOPE,
)


VARIANT_STYLES = {
    FULL_POOLING: dict(color='gray', linestyle=':'),
    NO_POOLING: dict(color='crimson', linestyle='--'),
    RANDOM_INTERCEPT: dict(color='darkorange', linestyle='-.'),
    RANDOM_SLOPE: dict(color='#4472C4', linestyle='-'),
}


def plot_subject_trajectories(dataset: Dataset,
                              n_show: Optional[int] = None,
                              figsize: Tuple[int, int] = (12, 5)) -> plt.Figure:
    """
    Spaghetti plot of per-subject trajectories and per-subject OLS slopes.
    """
    frame = dataset.frame
    subjects = dataset.subjects if n_show is None else dataset.subjects[:n_show]

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    # Left panel: raw trajectories
    ax1 = axes[0]
    alpha = min(0.8, 10 / max(len(subjects), 1))
    for i, subject in enumerate(subjects):
        group = frame[frame['subject'] == subject]
        label = 'Subjects' if i == 0 else None
        ax1.plot(group['session'], group['value'], 'o-', color='black',
                 alpha=alpha, linewidth=0.8, markersize=3, label=label)

    mean_by_session = frame.groupby('session')['value'].mean()
    ax1.plot(mean_by_session.index, mean_by_session.values, color='crimson',
             linewidth=2.5, label='Session mean')

    ax1.set_xlabel('Session', fontsize=12)
    ax1.set_ylabel('Value', fontsize=12)
    ax1.set_title(f'Trajectories (n={dataset.n_subjects})', fontsize=12)
    ax1.legend(loc='best')
    ax1.grid(True, alpha=0.3)

    # Right panel: distribution of per-subject slopes
    ax2 = axes[1]
    slopes = []
    for _, group in dataset.groups():
        if group['session'].nunique() >= 2:
            slopes.append(np.polyfit(group['session'], group['value'], 1)[0])
    slopes = np.array(slopes)

    if len(slopes) > 0:
        ax2.hist(slopes, bins=min(20, max(len(slopes) // 2, 1)), alpha=0.7,
                 color='#4A90D9', edgecolor='white', label='Per-subject OLS slope')
        ax2.axvline(np.mean(slopes), color='darkblue', linewidth=2,
                    label=f'Mean = {np.mean(slopes):.2f}')

    ax2.set_xlabel('Slope (per session)', fontsize=12)
    ax2.set_ylabel('Subjects', fontsize=12)
    ax2.set_title('Between-Subject Slope Variability', fontsize=12)
    ax2.legend(fontsize=9)
    ax2.grid(True, alpha=0.3)

    plt.tight_layout()
    return fig


def plot_pooling_comparison(dataset: Dataset,
                            report: ComparisonReport,
                            subjects: Optional[Sequence[int]] = None,
                            n_cols: int = 4,
                            figsize: Optional[Tuple[int, int]] = None) -> plt.Figure:
    """
    Per-subject panels with the fitted line of every successful variant.

    Args:
        dataset: Data that produced the report
        report: Output of analysis.compare_models
        subjects: Subjects to show (default: first 8)
    """
    if subjects is None:
        subjects = list(dataset.subjects[:8])

    n_rows = int(np.ceil(len(subjects) / n_cols))
    if figsize is None:
        figsize = (3 * n_cols, 2.6 * n_rows)

    fig, axes = plt.subplots(n_rows, n_cols, figsize=figsize,
                             sharex=True, sharey=True, squeeze=False)
    frame = dataset.frame
    session_grid = np.linspace(frame['session'].min(), frame['session'].max(), 20)

    for ax, subject in zip(axes.ravel(), subjects):
        group = frame[frame['subject'] == subject]
        ax.plot(group['session'], group['value'], 'ko', markersize=4)

        for label, outcome in report.outcomes.items():
            model = outcome.model
            if model is None or model.subject_coefficients is None:
                continue
            coefs = model.subject_coefficients.set_index('subject')
            if subject not in coefs.index:
                continue
            line = coefs.loc[subject, 'intercept'] + coefs.loc[subject, 'slope'] * session_grid
            ax.plot(session_grid, line, linewidth=1.5,
                    label=VARIANT_NAMES.get(label, label), **VARIANT_STYLES.get(label, {}))

        ax.set_title(f'Subject {subject}', fontsize=10)
        ax.grid(True, alpha=0.3)

    for ax in axes.ravel()[len(subjects):]:
        ax.axis('off')

    handles, labels = axes.ravel()[0].get_legend_handles_labels()
    if handles:
        fig.legend(handles, labels, loc='lower center', ncol=len(labels), fontsize=9)

    fig.suptitle('Full, No and Partial Pooling', fontsize=14, fontweight='bold')
    plt.tight_layout(rect=(0, 0.05, 1, 0.97))
    return fig


def plot_information_criteria(report: ComparisonReport,
                              figsize: Tuple[int, int] = (12, 5)) -> plt.Figure:
    """
    AIC per variant (ML scale) with a table of fixed slope estimates.
    """
    fig, axes = plt.subplots(1, 2, figsize=figsize)

    # Left panel: AIC bars
    ax1 = axes[0]
    table = report.information_criteria_table()
    colors = [VARIANT_STYLES.get(v, {}).get('color', 'gray') for v in table['variant']]
    names = [VARIANT_NAMES.get(v, v) for v in table['variant']]
    ax1.barh(names, table['aic'], color=colors, alpha=0.8)
    if len(table) > 0:
        span = table['aic'].max() - table['aic'].min()
        ax1.set_xlim(table['aic'].min() - 0.1 * span - 1, table['aic'].max() + 0.1 * span + 1)
    ax1.invert_yaxis()
    ax1.set_xlabel('AIC (maximum likelihood)', fontsize=12)
    ax1.set_title('Information Criteria', fontsize=12)
    ax1.grid(True, alpha=0.3, axis='x')

    # Right panel: estimates table
    ax2 = axes[1]
    ax2.axis('off')

    summary = report.summary_table()
    table_data = [['Model', 'Slope', 'SE', 'Status']]
    for _, row in summary.iterrows():
        if pd.isna(row['slope']):
            table_data.append([VARIANT_NAMES.get(row['variant'], row['variant']),
                               '-', '-', row['status']])
        else:
            table_data.append([VARIANT_NAMES.get(row['variant'], row['variant']),
                               f"{row['slope']:.2f}", f"{row['slope_se']:.2f}",
                               row['status']])
    if report.lrt is not None:
        table_data.append(['LRT (d vs c)', f'χ²={report.lrt.statistic:.1f}',
                           f'df={report.lrt.df}', f'p={report.lrt.p_value:.2g}'])

    mpl_table = ax2.table(cellText=table_data, loc='center', cellLoc='center',
                          colWidths=[0.4, 0.2, 0.2, 0.2])
    mpl_table.auto_set_font_size(False)
    mpl_table.set_fontsize(10)
    mpl_table.scale(1, 1.5)

    for j in range(4):
        mpl_table[(0, j)].set_facecolor('#4472C4')
        mpl_table[(0, j)].set_text_props(color='white', weight='bold')

    ax2.set_title('Fixed Slope Estimates', fontsize=12, pad=20)

    plt.tight_layout()
    return fig


def plot_simulation_study(results: pd.DataFrame, true_slope: float,
                          alpha: float = 0.05,
                          figsize: Tuple[int, int] = (12, 5)) -> plt.Figure:
    """
    Sampling distribution of the slope vs the reported standard errors.
    """
    summary = summarize_simulation_study(results, true_slope, alpha=alpha)

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    # Left panel: estimates (identical point estimates, different SEs)
    ax1 = axes[0]
    estimates = results[f'slope_{RANDOM_SLOPE}']
    ax1.hist(estimates, bins=30, density=True, alpha=0.7, color='steelblue',
             edgecolor='white', label='Slope estimates')
    ax1.axvline(true_slope, color='black', linestyle='--', linewidth=2,
                label=f'True slope = {true_slope:g}')
    ax1.set_xlabel('Fixed slope estimate', fontsize=12)
    ax1.set_ylabel('Density', fontsize=12)
    ax1.set_title(f'Sampling Distribution (n={len(results)})', fontsize=12)
    ax1.legend()
    ax1.grid(True, alpha=0.3)

    # Right panel: empirical SD vs mean reported SE
    ax2 = axes[1]
    labels = [RANDOM_INTERCEPT, RANDOM_SLOPE]
    x = np.arange(len(labels))
    empirical = [summary[label]['empirical_sd'] for label in labels]
    reported = [summary[label]['mean_se'] for label in labels]
    ax2.bar(x - 0.2, empirical, width=0.4, color='gray', label='Empirical SD')
    ax2.bar(x + 0.2, reported, width=0.4,
            color=[VARIANT_STYLES[label]['color'] for label in labels], label='Mean SE')
    for xi, label in zip(x, labels):
        ax2.text(xi, max(empirical[xi], reported[xi]) * 1.02,
                 f"coverage {summary[label]['coverage'] * 100:.0f}%",
                 ha='center', fontsize=9)
    ax2.set_xticks(x)
    ax2.set_xticklabels([VARIANT_NAMES[label] for label in labels])
    ax2.set_ylabel('Slope uncertainty', fontsize=12)
    ax2.set_title('Reported vs Actual Uncertainty', fontsize=12)
    ax2.legend()
    ax2.grid(True, alpha=0.3, axis='y')

    plt.tight_layout()
    return fig

"""
Figures for the theophylline spline analysis.

- Raw concentrations against time
- Fitted spline curve over the raw data
- LOESS-smoothed fitted curve over the raw data
- Prior and posterior density overlay for one coefficient

Each function returns the matplotlib Figure and saves it when given a path.
"""

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns

from prior_posterior import POSTERIOR, PRIOR


TIME_BREAK = 2
DENSITY_COLOURS = {PRIOR: 'blue', POSTERIOR: 'green'}


def _time_axis(ax, time):
    """Ticks every TIME_BREAK hours across the observed range."""
    upper = np.ceil(np.max(time) / TIME_BREAK) * TIME_BREAK
    ax.set_xticks(np.arange(0, upper + TIME_BREAK, TIME_BREAK))


def _finish(fig, output_path):
    fig.tight_layout()
    if output_path is not None:
        fig.savefig(output_path, dpi=150)
    return fig


def plot_raw_data(df, time='Time', response='conc', output_path=None):
    fig, ax = plt.subplots(figsize=(7, 4.5))
    ax.scatter(df[time], df[response], s=14, color='black')
    _time_axis(ax, df[time])
    ax.set_xlabel(time)
    ax.set_ylabel(response)
    return _finish(fig, output_path)


def plot_fitted_curve(fitted, output_path=None):
    """
    Observed points with the fitted means, joined in time order.

    Args:
        fitted: FittedModel
        output_path: Optional file to save the figure to
    """
    spec = fitted.spec
    table = fitted.fitted.sort_values(spec.time, kind='stable')

    fig, ax = plt.subplots(figsize=(7, 4.5))
    ax.scatter(table[spec.time], table[spec.response], s=14, color='black',
               label='Observed')
    ax.plot(table[spec.time], table['Estimate'], color='black', lw=1,
            label='Fitted')
    _time_axis(ax, table[spec.time])
    ax.set_xlabel(spec.time)
    ax.set_ylabel(spec.response)
    ax.legend(frameon=False)
    return _finish(fig, output_path)


def plot_smoothed_curve(df, curve, time='Time', response='conc', output_path=None):
    """
    Observed points with the LOESS-smoothed fitted curve.

    Args:
        df: Observation table
        curve: SmoothedCurve
    """
    value_name = curve.table.columns[1]

    fig, ax = plt.subplots(figsize=(7, 4.5))
    ax.scatter(df[time], df[response], s=14, color='black', label='Observed')
    ax.plot(curve.table[time], curve.table[value_name], color='black', lw=2,
            label=f'LOESS (span={curve.effective_span:.2g})')
    _time_axis(ax, df[time])
    ax.set_xlabel(time)
    ax.set_ylabel(response)
    ax.legend(frameon=False)
    return _finish(fig, output_path)


def plot_prior_posterior(combined, coefficient, output_path=None):
    """
    Filled density overlay of prior and posterior draws.

    Args:
        combined: Output of prior_posterior.compare_distributions
        coefficient: Coefficient name for the title
    """
    with sns.axes_style('white'):
        fig, ax = plt.subplots(figsize=(7, 4.5))
        sns.kdeplot(data=combined, x='Parameter', hue='Type', fill=True,
                    alpha=0.6, common_norm=False, palette=DENSITY_COLOURS, ax=ax)
        sns.despine(fig)
    ax.set_title(f"Prior and Posterior Distributions: {coefficient}")
    ax.set_xlabel("Parameter Value")
    ax.set_ylabel("Density")
    return _finish(fig, output_path)


def close(fig):
    plt.close(fig)

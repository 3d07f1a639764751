"""
Prior versus posterior comparison for individual coefficients.

For a named coefficient, fresh draws from its declared prior are stacked
with its posterior draws and labelled by origin, ready for a density
overlay. The two sets are independent in length: nothing is joined or
interpolated.

Interpretation:
- Posterior much narrower than the prior: the data informed the coefficient
- Posterior close to the prior: the coefficient is driven by the prior
"""

import numpy as np
import pandas as pd
from scipy.integrate import trapezoid
from scipy.stats import gaussian_kde

from exceptions import ConfigurationError, UnknownCoefficientError


N_PRIOR_DRAWS = 1000
PRIOR = 'Prior'
POSTERIOR = 'Posterior'


def posterior_column(fitted, coefficient):
    """
    All posterior draws of one coefficient.

    Raises:
        UnknownCoefficientError: if the coefficient is not in the model
    """
    if coefficient not in fitted.draws.columns:
        raise UnknownCoefficientError(
            f"Unknown coefficient '{coefficient}'; available: "
            f"{', '.join(fitted.draws.columns)}")
    return fitted.draws[coefficient].values


def compare_distributions(fitted, coefficient, prior, n_draws=N_PRIOR_DRAWS,
                          seed=None, positive=False):
    """
    Combine prior and posterior draws of a coefficient.

    Args:
        fitted: FittedModel
        coefficient: Coefficient name, e.g. 'b_bsTime1'
        prior: Prior the coefficient was given
        n_draws: Number of prior draws
        seed: Seed for the prior draws
        positive: Draw from the zero-truncated prior (sd, sigma classes)

    Returns:
        DataFrame with columns Parameter and Type ('Prior' or 'Posterior'),
        prior rows first
    """
    if n_draws < 1:
        raise ConfigurationError(f"Need at least one prior draw, got {n_draws}")

    posterior = posterior_column(fitted, coefficient)
    prior_draws = prior.draw(n_draws, seed=seed, positive=positive)

    return pd.concat([
        pd.DataFrame({'Parameter': prior_draws, 'Type': PRIOR}),
        pd.DataFrame({'Parameter': posterior, 'Type': POSTERIOR}),
    ], ignore_index=True)


def compare_spline_coefficients(fitted, n_draws=N_PRIOR_DRAWS, seed=None):
    """
    Prior/posterior comparison for every spline coefficient.

    Args:
        fitted: FittedModel
        n_draws: Number of prior draws per coefficient
        seed: Seed; each coefficient gets its own independent stream

    Returns:
        Dictionary of coefficient name -> combined DataFrame
    """
    names = fitted.spec.spline_coefficients
    seeds = np.random.SeedSequence(seed).spawn(len(names))

    results = {}
    for name, child in zip(names, seeds):
        prior, positive = fitted.spec.prior_for_coefficient(name)
        results[name] = compare_distributions(
            fitted, name, prior, n_draws=n_draws,
            seed=np.random.default_rng(child), positive=positive
        )
    return results


def density_overlap(combined, n_grid=512):
    """
    Overlap coefficient of the prior and posterior densities.

    Computed as the integral of min(p_prior, p_posterior) over a common grid
    using Gaussian kernel density estimates. 1 means identical densities,
    0 means disjoint ones.

    Args:
        combined: Output of compare_distributions
        n_grid: Number of grid points

    Returns:
        Float in [0, 1]
    """
    prior = combined.loc[combined['Type'] == PRIOR, 'Parameter'].values
    posterior = combined.loc[combined['Type'] == POSTERIOR, 'Parameter'].values

    grid = np.linspace(combined['Parameter'].min(), combined['Parameter'].max(), n_grid)
    p_prior = gaussian_kde(prior)(grid)
    p_posterior = gaussian_kde(posterior)(grid)

    overlap = trapezoid(np.minimum(p_prior, p_posterior), grid)
    return float(np.clip(overlap, 0, 1))

"""
Bayesian hierarchical B-spline regression of theophylline concentration.

Model: conc = Intercept + B(Time) b_s + Wt*b_Wt + Dose*b_Dose + r[Subject] + eps

Where:
- B(Time) = cubic B-spline basis of time with an interior knot at 1 h
- b_s = spline coefficients (one per basis column)
- r[Subject] ~ Normal(0, sd_Subject) = subject-level random intercept
- eps ~ Normal(0, sigma) = residual error

Population-level columns are centred before sampling; b_Intercept is
reported back on the uncentred scale. Coefficient names follow brms
(b_Intercept, b_bsTime1, ..., sd_Subject__Intercept, sigma,
r_Subject[<level>,Intercept]).

Sampler problems (divergences, R-hat above 1.01, bulk ESS below 400) do not
stop the analysis: they are attached to the FittedModel and emitted as
SamplerWarning.
"""

import warnings
from dataclasses import dataclass
from time import monotonic

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
from patsy import bs
from scipy.stats import median_abs_deviation

from data_utils import load_data
from exceptions import (AlignmentError, ConfigurationError,
                        FitBudgetExceededError, SamplerWarning)
from model_spec import ModelSpecification, Prior


RHAT_MAX = 1.01
ESS_MIN = 400
HDI_PROB = 0.95


def spline_basis(time, knots, degree=3, bounds=None):
    """
    Evaluate a B-spline basis (without intercept column).

    Boundary knots are fixed by `bounds` so that new time points are
    evaluated on the same basis as the data the model was fitted to.

    Args:
        time: Array of time points
        knots: Interior knot positions
        degree: Polynomial degree
        bounds: (lower, upper) boundary knots; defaults to the range of time

    Returns:
        Array of shape (len(time), len(knots) + degree)
    """
    time = np.asarray(time, dtype=float)
    if bounds is None:
        bounds = (time.min(), time.max())
    lower, upper = float(bounds[0]), float(bounds[1])

    if time.min() < lower or time.max() > upper:
        raise ConfigurationError(
            f"Time points must lie within the spline bounds [{lower:g}, {upper:g}]")

    return bs(time, knots=[float(k) for k in knots], degree=int(degree),
              lower_bound=lower, upper_bound=upper)


def build_design(df, spec):
    """
    Prepare the population-level design matrix and group codes.

    Args:
        df: Observation table
        spec: ModelSpecification

    Returns:
        Dictionary with X (DataFrame, one column per population term),
        y, group_idx, levels and bounds
    """
    time = df[spec.time].values.astype(float)
    bounds = (time.min(), time.max())

    X = pd.DataFrame(
        spline_basis(time, spec.knots, spec.degree, bounds),
        columns=spec.spline_terms, index=df.index
    )
    for cov in spec.covariates:
        X[cov] = df[cov].values.astype(float)

    if spec.group is not None:
        group_idx, levels = pd.factorize(df[spec.group], sort=True)
    else:
        group_idx, levels = None, None

    return {
        'X': X,
        'y': df[spec.response].values.astype(float),
        'group_idx': group_idx,
        'levels': levels,
        'bounds': bounds,
    }


def default_intercept_prior(y):
    """Weakly informative prior centred on the data, as brms does."""
    scale = max(2.5, median_abs_deviation(y, scale='normal'))
    return Prior('student_t', (3, np.median(y), scale))


def prior_variable(name, prior, positive=False, dims=None):
    """
    Create a PyMC random variable from a Prior.

    Positive coefficient classes get the zero-truncated version of the prior.
    Must be called inside a model context.
    """
    p = prior.kwargs

    if prior.family == 'exponential':
        return pm.Exponential(name, lam=p['rate'], dims=dims)

    if positive and p['mu'] == 0:
        if prior.family == 'normal':
            return pm.HalfNormal(name, sigma=p['sigma'], dims=dims)
        if prior.family == 'student_t':
            return pm.HalfStudentT(name, nu=p['nu'], sigma=p['sigma'], dims=dims)
        return pm.HalfCauchy(name, beta=p['sigma'], dims=dims)

    if positive:
        if prior.family == 'normal':
            dist = pm.Normal.dist(mu=p['mu'], sigma=p['sigma'])
        elif prior.family == 'student_t':
            dist = pm.StudentT.dist(nu=p['nu'], mu=p['mu'], sigma=p['sigma'])
        else:
            dist = pm.Cauchy.dist(alpha=p['mu'], beta=p['sigma'])
        return pm.Truncated(name, dist, lower=0, dims=dims)

    if prior.family == 'normal':
        return pm.Normal(name, mu=p['mu'], sigma=p['sigma'], dims=dims)
    if prior.family == 'student_t':
        return pm.StudentT(name, nu=p['nu'], mu=p['mu'], sigma=p['sigma'], dims=dims)
    return pm.Cauchy(name, alpha=p['mu'], beta=p['sigma'], dims=dims)


def budget_callback(max_seconds):
    """
    Sampler callback enforcing a wall-clock ceiling.

    Returns:
        Callable for pm.sample(callback=...), or None without a ceiling
    """
    if max_seconds is None:
        return None

    start = monotonic()

    def callback(trace, draw):
        elapsed = monotonic() - start
        if elapsed > max_seconds:
            raise FitBudgetExceededError(
                f"Fit did not complete in budget ({elapsed:.1f}s > {max_seconds:g}s)")

    return callback


def run_inference(design, spec):
    """
    Run Bayesian inference for the hierarchical spline model.

    Args:
        design: Output of build_design
        spec: ModelSpecification

    Returns:
        PyMC InferenceData object with posterior samples
    """
    sampler = spec.sampler
    X = design['X']
    y = design['y']

    X_mean = X.values.mean(axis=0)
    X_centred = X.values - X_mean

    intercept_prior = spec.prior_for('Intercept') or default_intercept_prior(y)

    coords = {'term': list(X.columns), 'obs_id': np.arange(len(y))}
    if spec.group is not None:
        coords[spec.group] = [str(level) for level in design['levels']]

    with pm.Model(coords=coords) as model:
        # Priors
        b = prior_variable('b', spec.prior_for('b'), dims='term')
        intercept_c = prior_variable('Intercept_c', intercept_prior)
        sigma = prior_variable('sigma', spec.prior_for('sigma'), positive=True)

        mu = intercept_c + pm.math.dot(X_centred, b)

        # Subject-level intercepts, non-centred
        if spec.group is not None:
            sd = prior_variable('sd', spec.prior_for('sd'), positive=True)
            z = pm.Normal('z', mu=0, sigma=1, dims=spec.group)
            r = pm.Deterministic('r', z * sd, dims=spec.group)
            mu = mu + r[design['group_idx']]

        pm.Deterministic('Intercept', intercept_c - pm.math.dot(X_mean, b))
        mu = pm.Deterministic('mu', mu, dims='obs_id')

        # Likelihood
        pm.Normal('obs', mu=mu, sigma=sigma, observed=y, dims='obs_id')

        # Sample
        trace = pm.sample(
            draws=sampler.draws, tune=sampler.warmup,
            chains=sampler.chains, cores=sampler.cores,
            target_accept=sampler.target_accept, random_seed=sampler.seed,
            callback=budget_callback(sampler.max_seconds),
            progressbar=True, return_inferencedata=True
        )

    return trace


def posterior_draws(trace, spec, design):
    """
    Flatten the posterior into one row per draw, one column per coefficient.

    Returns:
        DataFrame with chains * (iterations - warmup) rows
    """
    post = trace.posterior
    terms = list(design['X'].columns)

    draws = {'b_Intercept': post['Intercept'].values.flatten()}

    b = post['b'].values.reshape(-1, len(terms))
    for i, term in enumerate(terms):
        draws[f'b_{term}'] = b[:, i]

    if spec.group is not None:
        draws[f'sd_{spec.group}__Intercept'] = post['sd'].values.flatten()

    draws['sigma'] = post['sigma'].values.flatten()

    if spec.group is not None:
        levels = design['levels']
        r = post['r'].values.reshape(-1, len(levels))
        for j, level in enumerate(levels):
            draws[f'r_{spec.group}[{level},Intercept]'] = r[:, j]

    return pd.DataFrame(draws)


def summarize(trace, spec, design):
    """
    Point estimates, 95% HDI and convergence diagnostics per coefficient.

    Returns:
        DataFrame indexed by coefficient name (brms naming)
    """
    var_names = ['Intercept', 'b', 'sigma']
    rename = {'Intercept': 'b_Intercept', 'sigma': 'sigma'}
    for term in design['X'].columns:
        rename[f'b[{term}]'] = f'b_{term}'
    if spec.group is not None:
        var_names.append('sd')
        rename['sd'] = f'sd_{spec.group}__Intercept'

    n_chains = trace.posterior.sizes['chain']
    with warnings.catch_warnings():
        if n_chains == 1:
            # R-hat is undefined for a single chain
            warnings.filterwarnings('ignore', message='Shape validation failed',
                                    category=UserWarning)
            warnings.simplefilter('ignore', RuntimeWarning)
        summary = az.summary(trace, var_names=var_names, hdi_prob=HDI_PROB)

    return summary.rename(index=rename)


def fitted_values(trace, df, spec):
    """
    Posterior mean concentration per observation.

    Returns:
        DataFrame aligned row-for-row with df: the observation columns plus
        Estimate, Est.Error, Q2.5 and Q97.5
    """
    mu = trace.posterior['mu'].values.reshape(-1, len(df))

    fitted = df[[spec.time, spec.response]].copy()
    if spec.group is not None:
        fitted.insert(0, spec.group, df[spec.group].values)
    fitted['Estimate'] = mu.mean(axis=0)
    fitted['Est.Error'] = mu.std(axis=0, ddof=1)
    fitted['Q2.5'] = np.percentile(mu, 2.5, axis=0)
    fitted['Q97.5'] = np.percentile(mu, 97.5, axis=0)
    return fitted


def check_diagnostics(trace, summary):
    """
    Collect sampler warnings.

    Args:
        trace: InferenceData
        summary: Output of summarize

    Returns:
        List of warning messages (empty if the sampler looks healthy)
    """
    messages = []

    n_divergent = int(trace.sample_stats['diverging'].values.sum())
    if n_divergent > 0:
        messages.append(
            f"{n_divergent} divergent transitions after warm-up; "
            f"consider increasing target_accept")

    n_chains = trace.posterior.sizes['chain']
    if n_chains > 1:
        high_rhat = summary.index[summary['r_hat'] > RHAT_MAX].tolist()
        if high_rhat:
            messages.append(f"R-hat above {RHAT_MAX} for: {', '.join(high_rhat)}")

    low_ess = summary.index[summary['ess_bulk'] < ESS_MIN].tolist()
    if low_ess:
        messages.append(f"Bulk ESS below {ESS_MIN} for: {', '.join(low_ess)}")

    return messages


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Result of fitting; read-only.

    Attributes:
        spec: ModelSpecification that was fitted
        summary: Per-coefficient mean, sd, HDI, R-hat and ESS
        fitted: Per-observation fitted values, in input order
        draws: One row per posterior draw, one column per coefficient
        warnings: Sampler diagnostics
        bounds: Boundary knots of the spline basis
        covariate_means: Observed mean of each covariate
        trace: Underlying InferenceData
    """

    spec: ModelSpecification
    summary: pd.DataFrame
    fitted: pd.DataFrame
    draws: pd.DataFrame
    warnings: tuple
    bounds: tuple
    covariate_means: dict
    trace: object = None

    @property
    def low_confidence(self):
        return len(self.warnings) > 0

    @property
    def coefficients(self):
        return list(self.draws.columns)

    def population_curve(self, times=None, n_points=200):
        """
        Population-level curve at the mean covariate values.

        Args:
            times: Time points within the fitted range; defaults to a grid
            n_points: Size of the default grid

        Returns:
            DataFrame with the time column and Estimate
        """
        if times is None:
            times = np.linspace(self.bounds[0], self.bounds[1], n_points)
        times = np.asarray(times, dtype=float)

        means = self.draws.mean()
        basis = spline_basis(times, self.spec.knots, self.spec.degree, self.bounds)
        b_spline = means[self.spec.spline_coefficients].values

        estimate = means['b_Intercept'] + basis @ b_spline
        for cov in self.spec.covariates:
            estimate = estimate + means[f'b_{cov}'] * self.covariate_means[cov]

        return pd.DataFrame({self.spec.time: times, 'Estimate': estimate})

    def segment_slopes(self):
        """
        Secant slope of the population curve on each inter-knot segment.

        Returns:
            DataFrame with start, end and slope per segment
        """
        edges = np.array([self.bounds[0], *self.spec.knots, self.bounds[1]])
        curve = self.population_curve(edges)['Estimate'].values
        return pd.DataFrame({
            'start': edges[:-1],
            'end': edges[1:],
            'slope': np.diff(curve) / np.diff(edges),
        })


def fit_model(df, spec=None):
    """
    Fit the hierarchical spline model.

    Args:
        df: Observation table
        spec: ModelSpecification (defaults reproduce the original analysis)

    Returns:
        FittedModel

    Raises:
        ConfigurationError: invalid specification, rejected before sampling
        FitBudgetExceededError: wall-clock ceiling exceeded
        AlignmentError: fitted values do not align with the observations
    """
    spec = spec or ModelSpecification()
    spec.validate_against(df)

    sampler = spec.sampler
    print(f"Model: {spec.formula}")
    print(f"  {len(df)} observations"
          + (f", {df[spec.group].nunique()} levels of {spec.group}" if spec.group else ""))
    print(f"  {sampler.chains} chains x {sampler.iterations} iterations "
          f"({sampler.warmup} warm-up), target_accept={sampler.target_accept}")

    design = build_design(df, spec)
    trace = run_inference(design, spec)

    draws = posterior_draws(trace, spec, design)
    fitted = fitted_values(trace, df, spec)
    if len(fitted) != len(df) or not fitted.index.equals(df.index):
        raise AlignmentError(
            f"Fitted values have {len(fitted)} rows for {len(df)} observations")

    summary = summarize(trace, spec, design)
    messages = check_diagnostics(trace, summary)
    for message in messages:
        warnings.warn(message, SamplerWarning, stacklevel=2)

    return FittedModel(
        spec=spec,
        summary=summary,
        fitted=fitted,
        draws=draws,
        warnings=tuple(messages),
        bounds=design['bounds'],
        covariate_means={cov: df[cov].mean() for cov in spec.covariates},
        trace=trace,
    )


def print_summary(fitted):
    """Print each coefficient with its 95% HDI."""
    lo, hi = f'hdi_{(1 - HDI_PROB) / 2 * 100:g}%', f'hdi_{(1 + HDI_PROB) / 2 * 100:g}%'
    for name, row in fitted.summary.iterrows():
        excludes_zero = not (row[lo] <= 0 <= row[hi])
        flag = "CI excludes 0" if excludes_zero else ""
        print(f"  {name:<24} = {row['mean']:8.3f} +/- {row['sd']:.3f} "
              f"[{row[lo]:.3f}, {row[hi]:.3f}]  {flag}")

    if fitted.low_confidence:
        print("  WARNING: low-confidence fit")
        for message in fitted.warnings:
            print(f"    - {message}")


def main(data_path=None, output_path=None, spec=None):
    """
    Fit the spline model and report the coefficients.

    Args:
        data_path: Optional CSV with the observations (default: R's Theoph)
        output_path: Optional path to save the coefficient summary CSV
        spec: Optional ModelSpecification
    """
    print("Loading data...")
    df = load_data(data_path)

    print(f"\n{'='*60}")
    print("Hierarchical B-spline model")
    print(f"{'='*60}")

    fitted = fit_model(df, spec)

    print(f"\n{'-'*40}")
    print_summary(fitted)

    print("\nSegment slopes (population curve):")
    for _, row in fitted.segment_slopes().iterrows():
        print(f"  [{row['start']:g}, {row['end']:g}] h: {row['slope']:+.3f} per hour")

    if output_path:
        fitted.summary.to_csv(output_path)
        print(f"\nSummary saved to: {output_path}")

    return fitted


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description='Fit the hierarchical spline model')
    parser.add_argument('data_path', type=str, nargs='?', default=None,
                        help='CSV with Subject, Time, conc, Wt, Dose (default: R Theoph)')
    parser.add_argument('--output', type=str, help='Output CSV path', default=None)

    args = parser.parse_args()
    main(args.data_path, args.output)

"""
Plain-text report of a fitted spline model.

Describes the model and sampler settings, then each population-level
coefficient by its posterior median, 95% credible interval and probability
of direction (the posterior probability that the coefficient has the sign of
its median), followed by the sampler diagnostics.
"""

import numpy as np


def probability_of_direction(samples):
    """Share of draws with the same sign as the median."""
    samples = np.asarray(samples)
    return float(max(np.mean(samples > 0), np.mean(samples < 0)))


def _join(names):
    if len(names) == 1:
        return names[0]
    return f"{', '.join(names[:-1])} and {names[-1]}"


def describe_coefficient(name, samples):
    median = np.median(samples)
    ci_low, ci_high = np.percentile(samples, [2.5, 97.5])
    pd_value = probability_of_direction(samples)
    direction = "positive" if median > 0 else "negative"
    return (f"  - {name}: Median = {median:.2f}, 95% CI [{ci_low:.2f}, {ci_high:.2f}], "
            f"{pd_value:.2%} probability of being {direction}")


def model_report(fitted):
    """
    Build the report text.

    Args:
        fitted: FittedModel

    Returns:
        Report as a single string
    """
    spec = fitted.spec
    sampler = spec.sampler
    n_obs = len(fitted.fitted)

    predictors = [spec.time] + list(spec.covariates)
    lines = [
        f"We fitted a Bayesian linear mixed model (estimated using MCMC sampling "
        f"with {sampler.chains} chains of {sampler.iterations} iterations and a "
        f"warmup of {sampler.warmup}) to predict {spec.response} with "
        f"{_join(predictors)} "
        f"(formula: {spec.formula}), on {n_obs} observations.",
    ]
    if spec.group is not None:
        lines.append(f"The model included {spec.group} as random effect "
                     f"(formula: ~1 | {spec.group}).")

    lines.append(
        f"{spec.time} entered through a degree-{spec.degree} B-spline with "
        f"knots at {', '.join(f'{k:g}' for k in spec.knots)}.")

    classes = ('b', 'sd', 'sigma') if spec.group is not None else ('b', 'sigma')
    priors = [f"{cls} ~ {spec.prior_for(cls)}" for cls in classes
              if spec.prior_for(cls) is not None]
    lines.append(f"Priors: {'; '.join(priors)}.")

    lines.append("")
    lines.append("Within this model:")
    for name in fitted.summary.index:
        lines.append(describe_coefficient(name, fitted.draws[name].values))

    lines.append("")
    if fitted.low_confidence:
        lines.append("Sampler diagnostics flagged a low-confidence fit:")
        lines.extend(f"  - {message}" for message in fitted.warnings)
    else:
        lines.append(
            "All chains converged (R-hat <= 1.01), effective sample sizes are "
            "adequate and no divergent transitions were observed.")

    return '\n'.join(lines) + '\n'

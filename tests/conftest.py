"""
Pytest configuration and shared fixtures.

Provides:
- Synthetic theophylline-like observation tables
- Tiny sampler settings for MCMC tests
- A session-wide fitted model, so the sampler runs once for all tests
- Fake traces and fitted models for tests that do not need sampling
"""

import warnings

import arviz as az
import numpy as np
import pandas as pd
import pytest

from exceptions import SamplerWarning
from model_spec import ModelSpecification, SamplerSettings
from spline_model import FittedModel, build_design, fit_model
from synthetic_validation import generate_synthetic_data


TINY_SAMPLER = SamplerSettings(chains=2, iterations=150, warmup=100, seed=1)


@pytest.fixture
def observations() -> pd.DataFrame:
    """Four subjects sampled at seven time points."""
    return generate_synthetic_data(n_subjects=4, times=[0, 0.5, 1, 2, 4, 8, 12], seed=3)


@pytest.fixture
def observations_csv(tmp_path, observations):
    file_path = tmp_path / "theoph.csv"
    observations.to_csv(file_path, index=False)
    return file_path


@pytest.fixture
def tiny_spec() -> ModelSpecification:
    return ModelSpecification(sampler=TINY_SAMPLER)


@pytest.fixture(scope="session")
def fitted_model():
    """One real MCMC fit shared by the sampler tests."""
    df = generate_synthetic_data(n_subjects=4, times=[0, 0.5, 1, 2, 4, 8, 12], seed=3)
    spec = ModelSpecification(sampler=TINY_SAMPLER)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", SamplerWarning)
        fitted = fit_model(df, spec)
    return df, fitted


def make_trace(df, spec, n_chains=2, n_draws=20, n_divergent=0, seed=0):
    """InferenceData shaped like the spline model's posterior."""
    rng = np.random.default_rng(seed)
    design = build_design(df, spec)
    terms = list(design['X'].columns)
    levels = [str(level) for level in design['levels']]
    shape = (n_chains, n_draws)

    diverging = np.zeros(shape, dtype=bool)
    diverging.flat[:n_divergent] = True

    return az.from_dict(
        posterior={
            'Intercept': rng.normal(1, 0.1, shape),
            'b': rng.normal(0, 1, shape + (len(terms),)),
            'sigma': np.abs(rng.normal(0.5, 0.05, shape)),
            'sd': np.abs(rng.normal(0.5, 0.05, shape)),
            'r': rng.normal(0, 0.5, shape + (len(levels),)),
            'mu': rng.normal(df[spec.response].values, 0.1, shape + (len(df),)),
        },
        sample_stats={'diverging': diverging},
        coords={'term': terms, spec.group: levels, 'obs_id': np.arange(len(df))},
        dims={'b': ['term'], 'r': [spec.group], 'mu': ['obs_id']},
    )


@pytest.fixture
def fake_fitted(observations, tiny_spec) -> FittedModel:
    """FittedModel with synthetic draws; no sampling involved."""
    rng = np.random.default_rng(7)
    n = 400
    draws = pd.DataFrame({'b_Intercept': rng.normal(1, 0.2, n)})
    for name in tiny_spec.spline_coefficients:
        draws[name] = rng.normal(2, 0.3, n)
    draws['b_Wt'] = rng.normal(0, 0.01, n)
    draws['b_Dose'] = rng.normal(0, 0.1, n)
    draws['sd_Subject__Intercept'] = np.abs(rng.normal(0.5, 0.1, n))
    draws['sigma'] = np.abs(rng.normal(0.3, 0.05, n))

    summary = pd.DataFrame({
        'mean': draws.mean(),
        'sd': draws.std(),
        'hdi_2.5%': draws.quantile(0.025),
        'hdi_97.5%': draws.quantile(0.975),
    })

    fitted = observations[['Subject', 'Time', 'conc']].copy()
    fitted['Estimate'] = observations['conc'].values + rng.normal(0, 0.1, len(observations))
    fitted['Est.Error'] = 0.1
    fitted['Q2.5'] = fitted['Estimate'] - 0.2
    fitted['Q97.5'] = fitted['Estimate'] + 0.2

    return FittedModel(
        spec=tiny_spec,
        summary=summary,
        fitted=fitted,
        draws=draws,
        warnings=(),
        bounds=(observations['Time'].min(), observations['Time'].max()),
        covariate_means={'Wt': observations['Wt'].mean(), 'Dose': observations['Dose'].mean()},
    )


@pytest.fixture
def trace_factory():
    return make_trace

"""
Tests for the hierarchical spline model.

The sampler runs once per session on a tiny budget (see conftest). These are
technical tests of shapes, names and alignment, not of statistical quality.
Plumbing tests replace the sampler with a fake trace.
"""

import warnings

import numpy as np
import pandas as pd
import pytest

import spline_model
from exceptions import (AlignmentError, ConfigurationError,
                        FitBudgetExceededError, SamplerWarning)
from model_spec import ModelSpecification, SamplerSettings
from spline_model import build_design, fit_model, spline_basis, summarize
from synthetic_validation import example_observations


class TestSplineBasis:
    def test_shape(self):
        basis = spline_basis(np.linspace(0, 10, 25), knots=(1,), degree=3)
        assert basis.shape == (25, 4)

    def test_fixed_bounds_reproduce_basis(self):
        time = np.array([0, 0.5, 1, 2, 4, 8, 12], dtype=float)
        full = spline_basis(time, (1,), 3, bounds=(0, 12))
        subset = spline_basis(time[2:5], (1,), 3, bounds=(0, 12))
        np.testing.assert_allclose(full[2:5], subset)

    def test_outside_bounds(self):
        with pytest.raises(ConfigurationError):
            spline_basis([0, 13], (1,), 3, bounds=(0, 12))


def test_build_design(observations, tiny_spec):
    design = build_design(observations, tiny_spec)
    assert list(design['X'].columns) == ["bsTime1", "bsTime2", "bsTime3", "bsTime4", "Wt", "Dose"]
    assert design['X'].index.equals(observations.index)
    assert list(design['levels']) == [1, 2, 3, 4]
    assert design['group_idx'].max() == 3
    assert design['bounds'] == (0.0, 12.0)


class TestFittedModel:
    def test_draws_row_count(self, fitted_model):
        _, fitted = fitted_model
        sampler = fitted.spec.sampler
        assert len(fitted.draws) == sampler.chains * (sampler.iterations - sampler.warmup)

    def test_draws_columns(self, fitted_model):
        _, fitted = fitted_model
        expected = ["b_Intercept", "b_bsTime1", "b_bsTime2", "b_bsTime3", "b_bsTime4",
                    "b_Wt", "b_Dose", "sd_Subject__Intercept", "sigma"]
        assert fitted.coefficients[:len(expected)] == expected
        assert "r_Subject[1,Intercept]" in fitted.coefficients
        assert (fitted.draws["sd_Subject__Intercept"] > 0).all()
        assert (fitted.draws["sigma"] > 0).all()

    def test_fitted_aligned_with_observations(self, fitted_model):
        df, fitted = fitted_model
        assert len(fitted.fitted) == len(df)
        assert fitted.fitted.index.equals(df.index)
        np.testing.assert_array_equal(fitted.fitted["Time"].values, df["Time"].values)
        assert {"Estimate", "Est.Error", "Q2.5", "Q97.5"} <= set(fitted.fitted.columns)
        assert (fitted.fitted["Q2.5"] <= fitted.fitted["Q97.5"]).all()

    def test_summary(self, fitted_model):
        _, fitted = fitted_model
        assert "b_bsTime1" in fitted.summary.index
        assert "sd_Subject__Intercept" in fitted.summary.index
        assert {"mean", "sd", "hdi_2.5%", "hdi_97.5%", "r_hat", "ess_bulk"} <= set(fitted.summary.columns)

    def test_tiny_run_is_flagged(self, fitted_model):
        _, fitted = fitted_model
        # 100 draws per chain cannot reach the ESS threshold
        assert fitted.low_confidence
        assert any("ESS" in message for message in fitted.warnings)

    def test_segment_slopes(self, fitted_model):
        _, fitted = fitted_model
        slopes = fitted.segment_slopes()
        assert list(slopes["start"]) == [0.0, 1.0]
        assert list(slopes["end"]) == [1.0, 12.0]

    def test_population_curve_grid(self, fitted_model):
        _, fitted = fitted_model
        curve = fitted.population_curve(n_points=50)
        assert len(curve) == 50
        assert curve["Time"].iloc[0] == 0.0
        assert curve["Time"].iloc[-1] == 12.0


def test_knot_slopes_differ():
    """Rise to t=1 then slow decay gives two distinct slopes around the knot."""
    df = example_observations()
    spec = ModelSpecification(
        knots=(1,), covariates=(), group=None,
        sampler=SamplerSettings(chains=2, iterations=700, warmup=500, seed=11),
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", SamplerWarning)
        fitted = fit_model(df, spec)

    slopes = fitted.segment_slopes()["slope"].values
    assert len(slopes) == 2
    assert slopes[0] > 0
    assert abs(slopes[0] - slopes[1]) > 1


def test_invalid_knot_rejected_before_sampling(observations, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("sampler should not run")

    monkeypatch.setattr(spline_model, "run_inference", fail)
    with pytest.raises(ConfigurationError):
        fit_model(observations, ModelSpecification(knots=(20,)))


def test_budget_exceeded(observations):
    spec = ModelSpecification(
        sampler=SamplerSettings(chains=1, iterations=200, warmup=100, seed=1, max_seconds=1e-9))
    with pytest.raises(FitBudgetExceededError, match="budget"):
        fit_model(observations, spec)


class TestWithFakeTrace:
    def test_divergences_are_warnings(self, observations, tiny_spec, trace_factory, monkeypatch):
        trace = trace_factory(observations, tiny_spec, n_divergent=3)
        monkeypatch.setattr(spline_model, "run_inference", lambda design, spec: trace)

        with pytest.warns(SamplerWarning, match="3 divergent transitions"):
            fitted = fit_model(observations, tiny_spec)

        assert fitted.low_confidence
        assert len(fitted.draws) == 2 * 20

    def test_misaligned_fitted_values(self, observations, tiny_spec, trace_factory, monkeypatch):
        trace = trace_factory(observations, tiny_spec)
        monkeypatch.setattr(spline_model, "run_inference", lambda design, spec: trace)
        original = spline_model.fitted_values

        monkeypatch.setattr(spline_model, "fitted_values",
                            lambda *args: original(*args).iloc[:-1])
        with pytest.raises(AlignmentError):
            fit_model(observations, tiny_spec)

    def test_draws_follow_trace_order(self, observations, tiny_spec, trace_factory, monkeypatch):
        trace = trace_factory(observations, tiny_spec)
        monkeypatch.setattr(spline_model, "run_inference", lambda design, spec: trace)

        fitted = fit_model(observations, tiny_spec)
        np.testing.assert_allclose(
            fitted.draws["b_Intercept"].values,
            trace.posterior["Intercept"].values.flatten())
        assert isinstance(fitted.summary, pd.DataFrame)


class TestSummaryWarnings:
    def test_arviz_warnings_reach_the_caller(self, observations, tiny_spec, trace_factory,
                                             monkeypatch):
        trace = trace_factory(observations, tiny_spec)
        design = build_design(observations, tiny_spec)
        real_summary = spline_model.az.summary

        def noisy_summary(*args, **kwargs):
            warnings.warn("hdi computed from very few draws", UserWarning)
            return real_summary(*args, **kwargs)

        monkeypatch.setattr(spline_model.az, "summary", noisy_summary)
        with pytest.warns(UserWarning, match="very few draws"):
            summarize(trace, tiny_spec, design)

    def test_single_chain_shape_warning_is_silenced(self, observations, tiny_spec,
                                                    trace_factory, monkeypatch):
        trace = trace_factory(observations, tiny_spec, n_chains=1)
        design = build_design(observations, tiny_spec)
        real_summary = spline_model.az.summary

        def single_chain_summary(*args, **kwargs):
            warnings.warn("Shape validation failed: input_shape: (1, 20)", UserWarning)
            return real_summary(*args, **kwargs)

        monkeypatch.setattr(spline_model.az, "summary", single_chain_summary)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            summary = summarize(trace, tiny_spec, design)

        assert not [w for w in caught if "Shape validation" in str(w.message)]
        assert "b_bsTime1" in summary.index

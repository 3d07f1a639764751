"""
Bayesian Hierarchical Spline Model for Theophylline Pharmacokinetics

This package fits a hierarchical B-spline regression to the theophylline
concentration-time data, smooths the fitted curve with LOESS, and compares
prior and posterior distributions of the spline coefficients.

Modules:
- data_utils: Data loading and schema checks
- model_spec: Priors, sampler settings and model specification
- spline_model: Hierarchical B-spline model (PyMC)
- loess_smoothing: LOESS smoothing of the fitted curve
- prior_posterior: Prior versus posterior draws per coefficient
- plotting: Figures
- model_report: Text report of the fitted model
- synthetic_validation: Method validation on synthetic data
- run_all_analyses: Full pipeline
"""

__version__ = "1.0.0"

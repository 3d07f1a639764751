"""
LOESS smoothing of the fitted concentration curve.

The fitted means of the spline model are noisy at time points where only
some subjects were sampled. A local regression over (Time, Estimate) gives a
smooth curve for plotting: around each time point a weighted quadratic fit
over the nearest span * n points, with tricube weights that fall to zero at
the edge of the neighbourhood. This is R's loess() with its defaults
(degree = 2, family = "gaussian", interpolated surface), through the same
netlib routines as wrapped by scikit-misc.

Small neighbourhoods: a local quadratic needs at least MIN_POINTS distinct
time points in every neighbourhood. If span * n leaves fewer than that, the
span is widened until it does and a SmoothingWarning is raised; a curve with
fewer than MIN_POINTS distinct time points in total is returned unsmoothed,
also with a warning.
"""

import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd
from skmisc.loess import loess

from exceptions import AlignmentError, ConfigurationError, SmoothingWarning


DEGREE = 2
DEFAULT_SPAN = 0.4
# Three coefficients plus the zero-weight points at either edge
MIN_POINTS = 5


@dataclass(frozen=True, eq=False)
class SmoothedCurve:
    """
    Smoothed (time, value) pairs sorted by time.

    The table index holds each point's position in the input, so
    `table.sort_index()` restores the input order.
    """

    table: pd.DataFrame
    span: float
    effective_span: float
    warnings: tuple

    def __len__(self):
        return len(self.table)


def neighbourhood_size(span, n):
    """Points in each local fit, counted as netlib loess does."""
    return min(n, int(span * n + 1e-5))


def fewest_distinct(sorted_time, size):
    """Fewest distinct values among any `size` consecutive sorted time points."""
    rank = np.concatenate([[0], np.cumsum(np.diff(sorted_time) > 0)])
    return int((rank[size - 1:] - rank[:len(rank) - size + 1]).min()) + 1


def smooth_curve(time, values, span=DEFAULT_SPAN, min_points=MIN_POINTS,
                 time_name='Time', value_name='SmoothConc'):
    """
    Smooth a (time, value) sequence with LOESS.

    Args:
        time: Time points, in any order
        values: Values at those time points
        span: Fraction of points in each local fit, in (0, 1]
        min_points: Fewest distinct time points allowed in a local fit
        time_name: Name of the time column in the result
        value_name: Name of the smoothed column in the result

    Returns:
        SmoothedCurve with one smoothed value per input point
    """
    if not 0 < span <= 1:
        raise ConfigurationError(f"Span must lie in (0, 1], got {span}")

    time = np.asarray(time, dtype=float)
    values = np.asarray(values, dtype=float)
    if time.ndim != 1 or time.shape != values.shape:
        raise ConfigurationError(
            f"Time and values must be 1-D and of equal length "
            f"({time.shape} vs {values.shape})")

    order = np.argsort(time, kind='stable')
    t, v = time[order], values[order]
    n = len(t)

    messages = []
    effective_span = span

    if n == 0 or fewest_distinct(t, n) < min_points:
        messages.append(
            f"Insufficient data for smoothing: {len(np.unique(t))} distinct time "
            f"points, need {min_points}; values returned unsmoothed")
        smoothed = v.copy()
    else:
        requested = neighbourhood_size(span, n)
        size = max(requested, 1)
        while fewest_distinct(t, size) < min_points:
            size += 1
        if size > requested:
            effective_span = size / n
            messages.append(
                f"Span {span:g} leaves fewer than {min_points} distinct time points "
                f"in a local fit; widened to {effective_span:.3g}")

        model = loess(t[:, None], v, span=effective_span, degree=DEGREE,
                      family='gaussian')
        model.fit()
        smoothed = np.asarray(model.outputs.fitted_values, dtype=float)

    for message in messages:
        warnings.warn(message, SmoothingWarning, stacklevel=2)

    table = pd.DataFrame({time_name: t, value_name: smoothed}, index=order)
    return SmoothedCurve(table=table, span=span, effective_span=effective_span,
                         warnings=tuple(messages))


def smooth_fitted(fitted, span=DEFAULT_SPAN, min_points=MIN_POINTS):
    """
    Smooth a fitted model's mean curve against time.

    Args:
        fitted: FittedModel
        span: LOESS span

    Returns:
        SmoothedCurve with one row per fitted row
    """
    time_name = fitted.spec.time
    curve = smooth_curve(fitted.fitted[time_name], fitted.fitted['Estimate'],
                         span=span, min_points=min_points, time_name=time_name)

    if len(curve) != len(fitted.fitted):
        raise AlignmentError(
            f"Smoothed curve has {len(curve)} rows for {len(fitted.fitted)} fitted values")

    return curve


def total_variation(values):
    """Sum of absolute successive differences."""
    return float(np.abs(np.diff(np.asarray(values, dtype=float))).sum())

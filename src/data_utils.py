"""
Data loading and checking utilities for the theophylline spline analysis.

This module provides the functions for loading the theophylline
pharmacokinetic observations (R's `datasets::Theoph`) and for the quick
per-subject glance used before modelling.

Columns:
- Subject: subject identifier (grouping variable)
- Time: time since the oral dose (hours)
- conc: theophylline concentration (mg/L)
- Wt: subject weight (kg)
- Dose: dose administered (mg/kg)
"""

import numpy as np
import pandas as pd
from pathlib import Path

from exceptions import DatasetUnavailableError


COLUMNS = ['Subject', 'Time', 'conc', 'Wt', 'Dose']
NON_NEGATIVE = ['Time', 'conc']
POSITIVE = ['Wt', 'Dose']


def fetch_theoph():
    """
    Fetch the theophylline dataset from the R `datasets` package.

    Returns:
        DataFrame with the Theoph observations

    Raises:
        DatasetUnavailableError: if the dataset cannot be retrieved
    """
    from statsmodels.datasets import get_rdataset

    try:
        return get_rdataset('Theoph', 'datasets').data
    except Exception as err:
        raise DatasetUnavailableError(
            f"Theoph dataset could not be fetched: {err}") from err


def load_data(data_path=None):
    """
    Load the theophylline observation table.

    The table is returned unchanged from its source: no rows are dropped,
    reordered or converted.

    Args:
        data_path: Optional path to a CSV with columns Subject, Time, conc,
            Wt, Dose. If omitted the dataset is fetched from R's `datasets`.

    Returns:
        DataFrame of observations

    Raises:
        DatasetUnavailableError: if the source is missing, unreadable or
            does not match the observation schema
    """
    if data_path is None:
        df = fetch_theoph()
    else:
        path = Path(data_path)
        if not path.is_file():
            raise DatasetUnavailableError(f"Dataset not found: {path}")
        try:
            df = pd.read_csv(path)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as err:
            raise DatasetUnavailableError(f"Dataset unreadable: {path} ({err})") from err

    return validate_observations(df)


def validate_observations(df):
    """
    Check that a table matches the observation schema.

    Args:
        df: DataFrame to check

    Returns:
        The same DataFrame, untouched

    Raises:
        DatasetUnavailableError: naming the first offending column
    """
    missing = [col for col in COLUMNS if col not in df.columns]
    if missing:
        raise DatasetUnavailableError(f"Dataset is missing columns: {missing}")

    if len(df) == 0:
        raise DatasetUnavailableError("Dataset has no observations")

    for col in COLUMNS:
        if df[col].isna().any():
            raise DatasetUnavailableError(f"Column '{col}' has missing values")

    for col in NON_NEGATIVE + POSITIVE:
        if not pd.api.types.is_numeric_dtype(df[col]):
            raise DatasetUnavailableError(f"Column '{col}' is not numeric")

    for col in NON_NEGATIVE:
        if (df[col] < 0).any():
            raise DatasetUnavailableError(f"Column '{col}' has negative values")

    for col in POSITIVE:
        if (df[col] <= 0).any():
            raise DatasetUnavailableError(f"Column '{col}' must be positive")

    duplicated = df.duplicated(['Subject', 'Time'])
    if duplicated.any():
        first = df.loc[duplicated, ['Subject', 'Time']].iloc[0]
        raise DatasetUnavailableError(
            f"Duplicate observations for Subject {first['Subject']} at Time {first['Time']:g} "
            f"({int(duplicated.sum())} duplicated rows)")

    return df


def distinct_times(df):
    """Sorted array of the distinct observed time points."""
    return np.unique(df['Time'].values)


def subject_summary(df):
    """
    Summarize each subject's profile.

    Args:
        df: Observation table

    Returns:
        DataFrame indexed by Subject with n_obs, Wt, Dose, Cmax and Tmax
    """
    rows = []
    for subject, subject_df in df.groupby('Subject', sort=True):
        peak = subject_df.loc[subject_df['conc'].idxmax()]
        rows.append({
            'Subject': subject,
            'n_obs': len(subject_df),
            'Wt': subject_df['Wt'].iloc[0],
            'Dose': subject_df['Dose'].iloc[0],
            'Cmax': peak['conc'],
            'Tmax': peak['Time'],
        })
    return pd.DataFrame(rows).set_index('Subject')

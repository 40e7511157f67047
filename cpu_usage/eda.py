"""
Exploratory Data Analysis (EDA) Module
======================================

Statistical exploration of the observation table. Plotting is intentionally
absent; everything here returns tables or dictionaries and prints summaries.

Functions:
    - compute_correlation_matrix: Pairwise correlation of numeric columns
    - rank_correlated_pairs: Feature pairs ordered by |r|
    - target_correlations: Features ordered by |r| with the target
    - outlier_overlap: Per-column outliers and how often they coincide
    - activity_profile: Share of inactive/active rows around the threshold
    - generate_eda_report: Full statistical report
"""

import logging
from typing import Dict, Any, List, Optional

import numpy as np
import pandas as pd
from scipy import stats

logger = logging.getLogger(__name__)


def compute_correlation_matrix(df: pd.DataFrame, method: str = 'pearson') -> pd.DataFrame:
    """
    Correlation matrix of all numerical columns.

    Args:
        df: DataFrame with numerical data
        method: Correlation method ('pearson', 'spearman', 'kendall')
    """
    return df.select_dtypes(include=[np.number]).corr(method=method)


def rank_correlated_pairs(
    corr_matrix: pd.DataFrame,
    top: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    List every off-diagonal pair of a correlation matrix, strongest first.

    Args:
        corr_matrix: Square correlation matrix
        top: Keep only the first `top` pairs

    Returns:
        List of {"col1", "col2", "correlation"} dicts sorted by |r| descending
    """
    columns = corr_matrix.columns
    pairs = []
    for i in range(len(columns)):
        for j in range(i + 1, len(columns)):
            corr_val = corr_matrix.iloc[i, j]
            if np.isnan(corr_val):
                continue
            pairs.append({
                "col1": columns[i],
                "col2": columns[j],
                "correlation": float(corr_val)
            })

    pairs.sort(key=lambda x: abs(x["correlation"]), reverse=True)
    return pairs[:top] if top is not None else pairs


def target_correlations(df: pd.DataFrame, target: str = "usr") -> pd.Series:
    """Correlation of each feature with the target, ordered by |r| descending."""
    corr = compute_correlation_matrix(df)[target].drop(target)
    return corr.reindex(corr.abs().sort_values(ascending=False).index)


def outlier_overlap(
    df: pd.DataFrame,
    z_threshold: float = 4.0,
    exclude: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Count outliers per column and how many rows are outlying in several columns.

    A row is an outlier in a column when its |z-score| exceeds `z_threshold`.
    Little overlap between columns means removing outlier rows would discard
    a large share of the data.

    Args:
        df: DataFrame to inspect
        z_threshold: |z| above which a value counts as an outlier
        exclude: Columns to leave out (typically the target)

    Returns:
        Dictionary with per-column counts and overlap totals
    """
    numeric = df.select_dtypes(include=[np.number])
    if exclude:
        numeric = numeric.drop(columns=[c for c in exclude if c in numeric.columns])

    with np.errstate(invalid='ignore', divide='ignore'):
        z = np.abs(stats.zscore(numeric.values, axis=0, nan_policy='omit'))
    flags = np.nan_to_num(z, nan=0.0) > z_threshold
    per_row = flags.sum(axis=1)

    rows_any = int((per_row > 0).sum())
    rows_shared = int((per_row > 1).sum())

    return {
        "per_column": dict(zip(numeric.columns, flags.sum(axis=0).astype(int).tolist())),
        "rows_with_any_outlier": rows_any,
        "rows_with_shared_outliers": rows_shared,
        "fraction_rows_affected": rows_any / len(numeric) if len(numeric) else 0.0,
        "z_threshold": z_threshold
    }


def activity_profile(y: pd.Series, threshold: float = 2.0) -> Dict[str, float]:
    """Summarize the target on each side of the activity threshold."""
    y = pd.Series(y, dtype=float)
    inactive = y[y <= threshold]
    active = y[y > threshold]
    return {
        "threshold": float(threshold),
        "n_inactive": int(len(inactive)),
        "n_active": int(len(active)),
        "fraction_inactive": float(len(inactive) / len(y)) if len(y) else 0.0,
        "mean_active": float(active.mean()) if len(active) else float('nan'),
        "std_active": float(active.std()) if len(active) > 1 else float('nan')
    }


def generate_eda_report(
    df: pd.DataFrame,
    target: str = "usr",
    threshold: float = 2.0,
    z_threshold: float = 4.0,
    top_pairs: int = 10
) -> Dict[str, Any]:
    """
    Generate the complete statistical EDA report.

    Args:
        df: Observation table including the target
        target: Target column name
        threshold: Activity threshold on the target
        z_threshold: Outlier |z| threshold
        top_pairs: Number of most-correlated feature pairs to keep

    Returns:
        Dictionary containing EDA results
    """
    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    features = df.drop(columns=[target])

    logger.info("Computing correlation matrix...")
    corr_matrix = compute_correlation_matrix(features)

    report = {
        "data_shape": df.shape,
        "columns": list(df.columns),
        "correlation_matrix": corr_matrix,
        "top_correlated_pairs": rank_correlated_pairs(corr_matrix, top=top_pairs),
        "target_correlations": target_correlations(df, target),
        "statistics": {}
    }

    logger.info("Inspecting outliers...")
    report["outliers"] = outlier_overlap(df, z_threshold=z_threshold, exclude=[target])

    logger.info("Profiling target activity...")
    report["activity"] = activity_profile(df[target], threshold)

    for col in df.select_dtypes(include=[np.number]).columns:
        report["statistics"][col] = {
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "max": float(df[col].max()),
            "skew": float(df[col].skew()),
            "kurtosis": float(df[col].kurtosis())
        }

    logger.info("=" * 60)
    logger.info("EDA COMPLETE")
    logger.info("=" * 60)

    return report


def print_correlation_insights(
    report: Dict[str, Any],
    threshold: float = 0.5
) -> None:
    """
    Print insights about strongly correlated variables, outliers and activity.

    Args:
        report: Dictionary from generate_eda_report
        threshold: Correlation threshold for "strong" correlation
    """
    print("\n" + "=" * 50)
    print("CORRELATION INSIGHTS")
    print("=" * 50)

    strong_corr = [p for p in report["top_correlated_pairs"] if abs(p["correlation"]) >= threshold]
    if strong_corr:
        print(f"\nStrong feature correlations (|r| >= {threshold}):")
        for item in strong_corr:
            direction = "positive" if item["correlation"] > 0 else "negative"
            print(f"  • {item['col1']} ↔ {item['col2']}: {item['correlation']:.3f} ({direction})")
    else:
        print(f"\nNo strong feature correlations found (|r| >= {threshold})")

    print("\nCorrelation with target:")
    for col, value in report["target_correlations"].head(5).items():
        print(f"  • {col}: {value:.3f}")

    outliers = report["outliers"]
    print(f"\nOutliers (|z| > {outliers['z_threshold']:g}):")
    print(f"  • Rows with any outlier: {outliers['rows_with_any_outlier']} "
          f"({outliers['fraction_rows_affected']:.1%})")
    print(f"  • Rows outlying in more than one column: {outliers['rows_with_shared_outliers']}")

    activity = report["activity"]
    print(f"\nActivity (threshold {activity['threshold']:g}):")
    print(f"  • Inactive rows: {activity['n_inactive']} ({activity['fraction_inactive']:.1%})")
    print(f"  • Active rows: {activity['n_active']} (mean usr {activity['mean_active']:.2f})")

    print("=" * 50 + "\n")

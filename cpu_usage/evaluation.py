"""
Model Evaluation Module
=======================

Single-pass test-set evaluation of the chosen model.

Features:
    - Normalized RMSE and the R² derived from it
    - Approximate confidence interval for R² (Olkin-Finn variance)
    - RMSE / MAE in original usr units
    - Evaluation report printing
"""

import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np
from scipy import stats
from sklearn.base import clone
from sklearn.metrics import mean_absolute_error, mean_squared_error

from .model import count_predictors

logger = logging.getLogger(__name__)


def normalized_rmse(y_true, y_pred) -> float:
    """
    sqrt(SSR / ((n - 1) * var(y_true))), with the sample variance of y_true.

    Raises:
        ValueError: If there are fewer than two rows or y_true is constant
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    n = len(y_true)
    if n < 2:
        raise ValueError("Need at least two test rows to normalize the RMSE")

    variance = np.var(y_true, ddof=1)
    if variance == 0:
        raise ValueError("Test target is constant; normalized RMSE is undefined")

    ssr = np.sum((y_true - y_pred) ** 2)
    return float(np.sqrt(ssr / ((n - 1) * variance)))


def r_squared_from_nrmse(nrmse: float) -> float:
    return 1.0 - nrmse ** 2


def r_squared_confidence_interval(
    r2: float,
    n: int,
    k: int,
    confidence_level: float = 0.95
) -> Tuple[float, float]:
    """
    Approximate confidence interval for R².

    Uses the large-sample variance
    4 R² (1 - R²)² (n - k - 1)² / ((n² - 1)(n + 3))
    with a normal quantile.

    Args:
        r2: Observed R²
        n: Sample size
        k: Number of predictors retained by the model
        confidence_level: Two-sided coverage

    Returns:
        Tuple of (lower, upper), capped at 1 above and 0 below (for R² >= 0)
    """
    if n - k - 1 <= 0:
        raise ValueError(f"Need n > k + 1 for the R² interval (n={n}, k={k})")

    r2_c = min(max(r2, 0.0), 1.0)
    variance = (4 * r2_c * (1 - r2_c) ** 2 * (n - k - 1) ** 2) / ((n ** 2 - 1) * (n + 3))
    z = stats.norm.ppf(0.5 + confidence_level / 2)
    margin = z * np.sqrt(variance)

    lower = max(r2 - margin, min(r2, 0.0))
    upper = min(r2 + margin, 1.0)
    return float(lower), float(upper)


def calculate_metrics(
    y_true,
    y_pred,
    n_predictors: int,
    confidence_level: float = 0.95
) -> Dict[str, Any]:
    """
    Calculate the evaluation metrics for one set of test predictions.

    Returns:
        Dictionary with nrmse, r2, r2 interval, rmse, mae and counts
    """
    nrmse = normalized_rmse(y_true, y_pred)
    r2 = r_squared_from_nrmse(nrmse)
    lower, upper = r_squared_confidence_interval(
        r2, len(y_true), n_predictors, confidence_level
    )

    return {
        'nrmse': nrmse,
        'r2': r2,
        'r2_ci_lower': lower,
        'r2_ci_upper': upper,
        'confidence_level': confidence_level,
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'n_predictors': int(n_predictors),
        'n_test': int(len(y_true))
    }


def evaluate_model(
    model: Any,
    X_train,
    y_train,
    X_test,
    y_test,
    confidence_level: float = 0.95,
    name: Optional[str] = None
) -> Dict[str, Any]:
    """
    Refit the chosen model on the full training set and score it on the test set.

    Args:
        model: Unfitted (or template) estimator; it is cloned before fitting
        X_train, y_train: Full training partition
        X_test, y_test: Held-out test partition
        confidence_level: Coverage of the R² interval
        name: Label used in logs and the report

    Returns:
        Dictionary containing the fitted model, test predictions and metrics
    """
    name = name or type(model).__name__

    logger.info("=" * 60)
    logger.info(f"STARTING MODEL EVALUATION: {name}")
    logger.info("=" * 60)

    fitted = clone(model).fit(X_train, y_train)
    y_pred = fitted.predict(X_test)
    metrics = calculate_metrics(y_test, y_pred, count_predictors(fitted), confidence_level)
    metrics['model_name'] = name

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    logger.info(f"  NRMSE: {metrics['nrmse']:.6f}")
    logger.info(f"  R²: {metrics['r2']:.6f}")
    logger.info("=" * 60)

    return {
        'model': fitted,
        'predictions': y_pred,
        'metrics': metrics
    }


def print_evaluation_report(metrics: Dict[str, Any]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Metrics dictionary from calculate_metrics / evaluate_model
    """
    level = metrics.get('confidence_level', 0.95)

    print("\n" + "=" * 70)
    print(f"MODEL EVALUATION REPORT: {metrics.get('model_name', 'model')}")
    print("=" * 70)
    print(f"  • Test samples: {metrics['n_test']}")
    print(f"  • Predictors retained: {metrics['n_predictors']}")
    print(f"  • RMSE (usr %): {metrics['rmse']:.4f}")
    print(f"  • MAE (usr %): {metrics['mae']:.4f}")
    print(f"  • Normalized RMSE: {metrics['nrmse']:.6f}")
    print(f"  • R²: {metrics['r2']:.6f}")
    print(f"  • {level:.0%} CI for R²: [{metrics['r2_ci_lower']:.6f}, {metrics['r2_ci_upper']:.6f}]")
    print("=" * 70 + "\n")

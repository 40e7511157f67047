"""
Model Selection Module
======================

Cross-validation loops that compare candidate models and pick a winner.

Functions:
    - select_knn_k: Leave-one-out choice of k for k-NN
    - cross_validate_classifiers: Stratified k-fold misclassification table
    - cross_validate_regressors: k-fold mean-squared-error table
    - select_glm_link: Pick the binomial link with the lowest CV error
    - pick_best: Lowest mean error wins
    - print_cv_table: Per-fold table with a mean row
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.base import clone
from sklearn.neighbors import NearestNeighbors

from .model import build_regressor
from .preprocessing import DEFAULT_SEED, make_folds

logger = logging.getLogger(__name__)

Folds = List[Tuple[np.ndarray, np.ndarray]]


def _rows(data: Any, idx: np.ndarray) -> Any:
    if isinstance(data, (pd.DataFrame, pd.Series)):
        return data.iloc[idx]
    return np.asarray(data)[idx]


def misclassification_rate(y_true, y_pred) -> float:
    return float(np.mean(np.asarray(y_true) != np.asarray(y_pred)))


def fold_mse(y_true, y_pred) -> float:
    """Sum of squared residuals divided by the fold size, in target units."""
    residuals = np.asarray(y_true, dtype=float) - np.asarray(y_pred, dtype=float)
    return float(np.sum(residuals ** 2) / len(residuals))


def select_knn_k(X, labels, max_k: int = 10) -> Tuple[int, pd.Series]:
    """
    Choose k for k-NN by leave-one-out misclassification.

    Each row is classified by majority vote of its k nearest other rows;
    an even split goes to the nearest neighbour's class.

    Args:
        X: Feature table
        labels: Binary class labels
        max_k: Largest k to try (k runs from 1 to max_k)

    Returns:
        Tuple of (best k, Series of LOO error indexed by k). Ties pick the smaller k.
    """
    X = np.asarray(X, dtype=float)
    labels = np.asarray(labels).astype(int)
    if max_k >= len(X):
        raise ValueError(f"max_k ({max_k}) must be smaller than the number of rows ({len(X)})")

    # Querying without X excludes each point from its own neighbour list
    _, neighbours = NearestNeighbors(n_neighbors=max_k).fit(X).kneighbors()
    neighbour_labels = labels[neighbours]

    errors = {}
    for k in range(1, max_k + 1):
        votes = neighbour_labels[:, :k].mean(axis=1)
        predicted = np.where(votes > 0.5, 1, np.where(votes < 0.5, 0, neighbour_labels[:, 0]))
        errors[k] = misclassification_rate(labels, predicted)

    table = pd.Series(errors, name="loo_error")
    table.index.name = "k"
    best_k = int(table.idxmin())

    logger.info(f"k-NN leave-one-out: best k={best_k} (error {table[best_k]:.4f})")
    return best_k, table


def cross_validate(
    candidates: Dict[str, Any],
    X,
    y,
    folds: Folds,
    score: Callable[[Any, Any], float]
) -> pd.DataFrame:
    """
    Fit every candidate on each training fold and score it on the held-out fold.

    Returns:
        DataFrame with one row per fold and one column per candidate
    """
    rows = []
    for fold_no, (train_idx, val_idx) in enumerate(folds, start=1):
        X_train, y_train = _rows(X, train_idx), _rows(y, train_idx)
        X_val, y_val = _rows(X, val_idx), _rows(y, val_idx)

        row = {}
        for name, estimator in candidates.items():
            fitted = clone(estimator).fit(X_train, y_train)
            row[name] = score(y_val, fitted.predict(X_val))
        rows.append(row)
        logger.debug(f"Fold {fold_no}/{len(folds)} done")

    return pd.DataFrame(
        rows,
        index=pd.RangeIndex(1, len(folds) + 1, name="fold"),
        columns=list(candidates)
    )


def cross_validate_classifiers(
    candidates: Dict[str, Any],
    X,
    labels,
    n_folds: int = 10,
    seed: int = DEFAULT_SEED
) -> pd.DataFrame:
    """Per-fold misclassification rate under stratified k-fold."""
    logger.info(f"Cross-validating {len(candidates)} classifiers over {n_folds} stratified folds")
    labels = np.asarray(labels).astype(int)
    folds = make_folds(len(labels), n_folds=n_folds, seed=seed, labels=labels)
    return cross_validate(candidates, X, labels, folds, misclassification_rate)


def cross_validate_regressors(
    candidates: Dict[str, Any],
    X,
    y,
    n_folds: int = 10,
    seed: int = DEFAULT_SEED
) -> pd.DataFrame:
    """Per-fold mean squared error (original usr units) under k-fold."""
    logger.info(f"Cross-validating {len(candidates)} regressors over {n_folds} folds")
    folds = make_folds(len(y), n_folds=n_folds, seed=seed)
    return cross_validate(candidates, X, y, folds, fold_mse)


def pick_best(cv_table: pd.DataFrame) -> str:
    """
    Name of the candidate with the lowest mean CV error.

    Ties keep the first tied candidate in column order; all of them are logged.
    """
    means = cv_table.mean()
    best_error = means.min()
    tied = means.index[np.isclose(means.values, best_error)].tolist()

    if len(tied) > 1:
        logger.info(f"Candidates tied at mean error {best_error:.6f}: {tied}; keeping '{tied[0]}'")
    else:
        logger.info(f"Best candidate: '{tied[0]}' (mean error {best_error:.6f})")

    return tied[0]


def select_glm_link(
    X,
    y,
    links: Sequence[str] = ("logit", "probit", "cloglog"),
    n_folds: int = 10,
    seed: int = DEFAULT_SEED,
    wrap: Optional[Callable[[Any], Any]] = None
) -> Tuple[str, pd.DataFrame]:
    """
    Pick the binomial GLM link with the lowest CV squared error.

    Args:
        X: Feature table
        y: Target
        links: Links to compare
        n_folds: Number of folds
        seed: Fold seed
        wrap: Optional function turning the GLM into the evaluated candidate
            (e.g. a classify-then-regress composition)

    Returns:
        Tuple of (winning link, CV table)
    """
    candidates = {}
    for link in links:
        glm = build_regressor(f"glm_{link}")
        candidates[f"glm_{link}"] = wrap(glm) if wrap is not None else glm

    table = cross_validate_regressors(candidates, X, y, n_folds=n_folds, seed=seed)
    best = pick_best(table)
    return best[len("glm_"):], table


def print_cv_table(cv_table: pd.DataFrame, title: str, metric: str = "error") -> None:
    """
    Print a per-fold CV table followed by the mean of each candidate.

    Args:
        cv_table: DataFrame from one of the cross_validate_* functions
        title: Heading for the table
        metric: Name of the per-fold metric
    """
    summary = pd.concat([cv_table, cv_table.mean().to_frame("mean").T])

    print("\n" + "=" * 70)
    print(f"{title.upper()} ({metric} per fold)")
    print("=" * 70)
    print(summary.to_string(float_format=lambda v: f"{v:.4f}"))

    best = cv_table.mean().idxmin()
    print("-" * 70)
    print(f"Lowest mean {metric}: {best} ({cv_table[best].mean():.4f})")
    print("=" * 70 + "\n")

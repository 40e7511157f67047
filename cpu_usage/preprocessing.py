"""
Data Preprocessing Module
=========================

Handles cleaning, the train/test split, cross-validation folds and the two
feature-reduction strategies.

Functions:
    - split_train_test: Seeded random train/test partition
    - make_folds: Seeded (optionally stratified) k-fold partition
    - derive_activity_label: Binary active/inactive label from the target
    - select_redundant_features: Pick the most mutually correlated columns
    - drop_redundant_features: Remove them from a table

Classes:
    - PCAReducer: Principal-component projection fitted on training rows only
    - CorrelationPruner: Correlation pruning + activity labelling
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.model_selection import KFold, StratifiedKFold
from sklearn.preprocessing import StandardScaler

from .eda import compute_correlation_matrix, rank_correlated_pairs

logger = logging.getLogger(__name__)

DEFAULT_SEED = 12345
DEFAULT_THRESHOLD = 2.0
DEFAULT_SELECTED_FEATURES = ("runqsz", "freeswap")


def split_features_target(
    df: pd.DataFrame,
    target: str = "usr"
) -> Tuple[pd.DataFrame, pd.Series]:
    """Separate the feature columns from the target column."""
    return df.drop(columns=[target]), df[target]


def check_missing(df: pd.DataFrame) -> None:
    """Raise if the table holds any missing value."""
    n_missing = int(df.isnull().sum().sum())
    if n_missing > 0:
        raise ValueError(f"Table contains {n_missing} missing values")


def split_train_test(
    n_samples: int,
    train_fraction: float = 2 / 3,
    seed: int = DEFAULT_SEED
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Randomly partition row positions into training and test sets.

    Draws round(train_fraction * n_samples) positions without replacement; the
    remaining positions form the test set. No stratification.

    Args:
        n_samples: Number of rows in the table
        train_fraction: Fraction of rows assigned to training
        seed: Random seed

    Returns:
        Tuple of (train_idx, test_idx), both sorted
    """
    if not 0 < train_fraction < 1:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")

    n_train = int(round(n_samples * train_fraction))
    if n_train < 1 or n_train >= n_samples:
        raise ValueError(
            f"Cannot split {n_samples} rows with train_fraction={train_fraction}"
        )

    rng = np.random.RandomState(seed)
    train_idx = np.sort(rng.choice(n_samples, size=n_train, replace=False))
    test_idx = np.setdiff1d(np.arange(n_samples), train_idx)

    logger.info(
        f"Train/Test split: {len(train_idx)} train samples, {len(test_idx)} test samples"
    )

    return train_idx, test_idx


def make_folds(
    n_samples: int,
    n_folds: int = 10,
    seed: int = DEFAULT_SEED,
    labels: Optional[Sequence[int]] = None
) -> List[Tuple[np.ndarray, np.ndarray]]:
    """
    Build k-fold (train, validation) position pairs.

    Every row appears in exactly one validation fold. When `labels` is given
    the folds are stratified on it.

    Args:
        n_samples: Number of rows to partition
        n_folds: Number of folds
        seed: Random seed for the shuffle
        labels: Optional class labels for stratification

    Returns:
        List of (train_idx, val_idx) tuples
    """
    if n_folds < 2 or n_folds > n_samples:
        raise ValueError(f"n_folds must be in [2, {n_samples}], got {n_folds}")

    placeholder = np.zeros(n_samples)
    if labels is None:
        splitter = KFold(n_splits=n_folds, shuffle=True, random_state=seed)
        splits = splitter.split(placeholder)
    else:
        splitter = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed)
        splits = splitter.split(placeholder, np.asarray(labels))

    return [(train_idx, val_idx) for train_idx, val_idx in splits]


def derive_activity_label(
    y: Sequence[float],
    threshold: float = DEFAULT_THRESHOLD
) -> np.ndarray:
    """
    Label a row active (1) when its target exceeds `threshold`, else inactive (0).

    The comparison is strict: a target equal to the threshold is inactive.
    """
    return (np.asarray(y, dtype=float) > threshold).astype(int)


def select_redundant_features(
    corr_matrix: pd.DataFrame,
    n_drop: int = 6,
    protected: Sequence[str] = ()
) -> List[str]:
    """
    Choose `n_drop` redundant columns from a feature correlation matrix.

    Pairs are visited by decreasing |r|. From each pair whose members are both
    still present, the member with the larger mean |r| against the other
    features is dropped. Protected columns are never dropped.

    Args:
        corr_matrix: Square correlation matrix of the features (no target)
        n_drop: Number of columns to drop
        protected: Columns that must be kept

    Returns:
        List of column names to drop, in the order they were chosen
    """
    abs_corr = corr_matrix.abs()
    n_cols = len(abs_corr.columns)
    mean_corr = (abs_corr.sum() - 1.0) / max(n_cols - 1, 1)
    protected = set(protected)

    dropped: List[str] = []
    for pair in rank_correlated_pairs(corr_matrix):
        if len(dropped) >= n_drop:
            break
        col1, col2 = pair["col1"], pair["col2"]
        if col1 in dropped or col2 in dropped:
            continue
        candidates = [c for c in (col1, col2) if c not in protected]
        if not candidates:
            continue
        drop = max(candidates, key=lambda c: mean_corr[c])
        dropped.append(drop)
        logger.info(
            f"Dropping '{drop}' (pair {col1} ↔ {col2}, r={pair['correlation']:.3f})"
        )

    if len(dropped) < n_drop:
        logger.warning(f"Only {len(dropped)} of {n_drop} redundant columns could be dropped")

    return dropped


def drop_redundant_features(
    df: pd.DataFrame,
    n_drop: int = 6,
    target: Optional[str] = "usr",
    protected: Sequence[str] = ()
) -> Tuple[pd.DataFrame, List[str]]:
    """
    Remove the `n_drop` most redundant feature columns from a table.

    The target column, if present, is excluded from the correlation ranking
    and left untouched.

    Returns:
        Tuple of (narrowed table, dropped column names)
    """
    check_missing(df)
    features = df.drop(columns=[target]) if target in df.columns else df
    dropped = select_redundant_features(
        compute_correlation_matrix(features), n_drop=n_drop, protected=protected
    )
    return df.drop(columns=dropped), dropped


class PCAReducer:
    """
    Principal-component projection of the feature columns.

    The transform is fitted on training rows only; `transform` reuses the
    fitted loadings for any later table, so test rows never influence them.
    """

    def __init__(self, n_components: int = 3, standardize: bool = False):
        """
        Args:
            n_components: Number of leading components to retain
            standardize: Scale features to unit variance before projecting
        """
        self.n_components = n_components
        self.standardize = standardize

        self.pca: Optional[PCA] = None
        self.scaler: Optional[StandardScaler] = None
        self.feature_columns: Optional[List[str]] = None
        self._is_fitted = False

    def fit(self, X: pd.DataFrame) -> 'PCAReducer':
        """Learn the loadings from the training feature table."""
        self.feature_columns = list(X.columns)
        data = X.values.astype(float)

        if self.standardize:
            self.scaler = StandardScaler().fit(data)
            data = self.scaler.transform(data)

        self.pca = PCA(n_components=self.n_components)
        self.pca.fit(data)
        self._is_fitted = True

        logger.info(
            f"Fitted PCA with {self.n_components} components: cumulative explained "
            f"variance {self.cumulative_variance_[-1]:.4f}"
        )
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        """Project a feature table onto the fitted components."""
        if not self._is_fitted:
            raise ValueError("PCAReducer must be fitted before transform. Call fit() first.")

        data = X[self.feature_columns].values.astype(float)
        if self.scaler is not None:
            data = self.scaler.transform(data)

        return pd.DataFrame(
            self.pca.transform(data),
            index=X.index,
            columns=self.component_names
        )

    def fit_transform(self, X: pd.DataFrame) -> pd.DataFrame:
        self.fit(X)
        return self.transform(X)

    @property
    def component_names(self) -> List[str]:
        return [f"PC{i + 1}" for i in range(self.n_components)]

    @property
    def explained_variance_ratio_(self) -> np.ndarray:
        if not self._is_fitted:
            raise ValueError("PCAReducer must be fitted first.")
        return self.pca.explained_variance_ratio_

    @property
    def cumulative_variance_(self) -> np.ndarray:
        return np.cumsum(self.explained_variance_ratio_)

    @property
    def loadings_(self) -> pd.DataFrame:
        """Loadings as a (features × components) table."""
        if not self._is_fitted:
            raise ValueError("PCAReducer must be fitted first.")
        return pd.DataFrame(
            self.pca.components_.T,
            index=self.feature_columns,
            columns=self.component_names
        )


class CorrelationPruner:
    """
    Correlation-based feature pruning with activity labelling.

    Drops the most mutually correlated columns (learned from training rows),
    keeps a small set of classifier features and derives the binary activity
    label from the target.
    """

    def __init__(
        self,
        n_redundant: int = 6,
        selected_features: Sequence[str] = DEFAULT_SELECTED_FEATURES,
        threshold: float = DEFAULT_THRESHOLD
    ):
        self.n_redundant = n_redundant
        self.selected_features = list(selected_features)
        self.threshold = threshold

        self.dropped_columns: Optional[List[str]] = None
        self.kept_columns: Optional[List[str]] = None
        self._is_fitted = False

    def fit(self, X: pd.DataFrame) -> 'CorrelationPruner':
        """Learn which columns to drop from the training feature table."""
        missing = [c for c in self.selected_features if c not in X.columns]
        if missing:
            raise ValueError(f"Selected features not found in table: {missing}")

        check_missing(X)
        self.dropped_columns = select_redundant_features(
            compute_correlation_matrix(X),
            n_drop=self.n_redundant,
            protected=self.selected_features
        )
        self.kept_columns = [c for c in X.columns if c not in self.dropped_columns]
        self._is_fitted = True

        logger.info(f"Pruned columns: {self.dropped_columns}")
        logger.info(f"Kept {len(self.kept_columns)} feature columns")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        """Return the pruned feature table."""
        if not self._is_fitted:
            raise ValueError("CorrelationPruner must be fitted before transform. Call fit() first.")
        return X[self.kept_columns]

    def fit_transform(self, X: pd.DataFrame) -> pd.DataFrame:
        self.fit(X)
        return self.transform(X)

    def classifier_features(self, X: pd.DataFrame) -> pd.DataFrame:
        """Return the columns the activity classifier works from."""
        return X[self.selected_features]

    def labels(self, y: Sequence[float]) -> np.ndarray:
        return derive_activity_label(y, self.threshold)

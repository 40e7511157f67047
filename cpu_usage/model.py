"""
Model Module
============

Candidate estimators for the activity classifier bank and the usr regression
bank. Every estimator follows the scikit-learn fit/predict contract so the
selection loops can clone and refit them per fold.

Estimators:
    - StepwiseOLSRegressor: OLS with AIC-driven stepwise feature selection
    - BinomialGLMRegressor: Binomial GLM (logit/probit/cloglog) on usr / 100
    - RBFNetworkRegressor: Gaussian radial-basis network on k-means centres
    - TwoStageRegressor: Classify active/inactive, regress only the active rows

Factories:
    - build_classifier_bank: LDA, QDA, k-NN, logistic regression, MLP
    - build_regressor: Regression candidates by name
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
from sklearn.base import BaseEstimator, RegressorMixin, clone
from sklearn.cluster import KMeans
from sklearn.discriminant_analysis import (
    LinearDiscriminantAnalysis,
    QuadraticDiscriminantAnalysis,
)
from sklearn.linear_model import LassoCV, LinearRegression, LogisticRegression, RidgeCV
from sklearn.metrics.pairwise import euclidean_distances
from sklearn.model_selection import KFold
from sklearn.neighbors import KNeighborsClassifier
from sklearn.neural_network import MLPClassifier, MLPRegressor
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .preprocessing import DEFAULT_SEED, DEFAULT_THRESHOLD, derive_activity_label

logger = logging.getLogger(__name__)

GLM_LINKS = {
    "logit": sm.families.links.Logit,
    "probit": sm.families.links.Probit,
    "cloglog": sm.families.links.CLogLog,
}

REGRESSOR_NAMES = ("ols_stepwise", "glm", "ridge", "lasso", "mlp", "rbf")


def _design_matrix(X: np.ndarray, columns: Sequence[int]) -> np.ndarray:
    """Intercept column followed by the chosen feature columns."""
    return np.column_stack((np.ones(len(X)), X[:, list(columns)]))


def _take_rows(X: Any, mask: np.ndarray) -> Any:
    return X.iloc[mask] if isinstance(X, (pd.DataFrame, pd.Series)) else X[mask]


def _scaled(estimator: BaseEstimator) -> Pipeline:
    return Pipeline([("scaler", StandardScaler()), ("model", estimator)])


class StepwiseOLSRegressor(RegressorMixin, BaseEstimator):
    """
    Ordinary least squares with stepwise selection on AIC.

    Starting from the full model ("both"/"backward") or the intercept-only
    model ("forward"), each step tries every single addition or removal and
    keeps the move with the lowest AIC, stopping when nothing improves.
    """

    def __init__(self, direction: str = "both", max_steps: int = 100):
        self.direction = direction
        self.max_steps = max_steps

    @staticmethod
    def _aic(X: np.ndarray, y: np.ndarray, columns: Sequence[int]) -> float:
        return sm.OLS(y, _design_matrix(X, columns)).fit().aic

    def fit(self, X, y) -> 'StepwiseOLSRegressor':
        if self.direction not in ("both", "forward", "backward"):
            raise ValueError(f"Unknown stepwise direction: {self.direction}")

        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        n_features = X.shape[1]

        selected: List[int] = [] if self.direction == "forward" else list(range(n_features))
        current_aic = self._aic(X, y, selected)

        for _ in range(self.max_steps):
            candidates = []
            if self.direction != "forward":
                for col in selected:
                    trial = [c for c in selected if c != col]
                    candidates.append((self._aic(X, y, trial), trial))
            if self.direction != "backward":
                for col in range(n_features):
                    if col not in selected:
                        trial = sorted(selected + [col])
                        candidates.append((self._aic(X, y, trial), trial))

            if not candidates:
                break
            best_aic, best = min(candidates, key=lambda c: c[0])
            if best_aic >= current_aic:
                break
            current_aic, selected = best_aic, best

        self.selected_ = selected
        self.aic_ = current_aic
        self.results_ = sm.OLS(y, _design_matrix(X, selected)).fit()
        self.n_features_in_ = n_features
        logger.debug(f"Stepwise OLS kept {len(selected)}/{n_features} features (AIC {current_aic:.1f})")
        return self

    def predict(self, X) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        return self.results_.predict(_design_matrix(X, self.selected_))

    @property
    def n_predictors_(self) -> int:
        return len(self.selected_)


class BinomialGLMRegressor(RegressorMixin, BaseEstimator):
    """
    Binomial generalized linear model for a bounded percentage target.

    The target is rescaled to a proportion (y / scale), modelled with the
    chosen link, and predictions are mapped back to the original scale.
    """

    def __init__(self, link: str = "logit", scale: float = 100.0, max_iter: int = 100):
        self.link = link
        self.scale = scale
        self.max_iter = max_iter

    def fit(self, X, y) -> 'BinomialGLMRegressor':
        if self.link not in GLM_LINKS:
            raise ValueError(f"Unknown GLM link '{self.link}'. Choose from: {list(GLM_LINKS)}")

        X = np.asarray(X, dtype=float)
        proportion = np.clip(np.asarray(y, dtype=float) / self.scale, 0.0, 1.0)
        family = sm.families.Binomial(link=GLM_LINKS[self.link]())

        self.results_ = sm.GLM(proportion, sm.add_constant(X, has_constant='add'),
                               family=family).fit(maxiter=self.max_iter)
        self.n_features_in_ = X.shape[1]
        return self

    def predict(self, X) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        return np.asarray(self.results_.predict(sm.add_constant(X, has_constant='add'))) * self.scale

    @property
    def n_predictors_(self) -> int:
        return self.n_features_in_


class RBFNetworkRegressor(RegressorMixin, BaseEstimator):
    """
    Radial-basis-function network.

    Centres come from k-means (default: round(n ** (1/3)) of them). All
    Gaussians share the width d_max / sqrt(2 * n_centers), where d_max is the
    largest distance between two centres. The output layer is fitted by
    linear least squares.
    """

    def __init__(self, n_centers: Optional[int] = None, n_init: int = 10,
                 random_state: Optional[int] = None):
        self.n_centers = n_centers
        self.n_init = n_init
        self.random_state = random_state

    def _hidden(self, X: np.ndarray) -> np.ndarray:
        sq_dist = euclidean_distances(X, self.centers_, squared=True)
        return np.exp(-sq_dist / (2.0 * self.widths_ ** 2))

    def fit(self, X, y) -> 'RBFNetworkRegressor':
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)

        n_centers = self.n_centers or max(1, int(round(len(X) ** (1.0 / 3.0))))
        n_centers = min(n_centers, len(X))

        kmeans = KMeans(n_clusters=n_centers, n_init=self.n_init, random_state=self.random_state)
        kmeans.fit(X)
        self.centers_ = kmeans.cluster_centers_

        d_max = euclidean_distances(self.centers_).max()
        width = d_max / np.sqrt(2.0 * n_centers) if d_max > 0 else 1.0
        self.widths_ = np.full(n_centers, width)

        self.output_ = LinearRegression().fit(self._hidden(X), y)
        self.n_features_in_ = X.shape[1]
        return self

    def predict(self, X) -> np.ndarray:
        return self.output_.predict(self._hidden(np.asarray(X, dtype=float)))

    @property
    def n_predictors_(self) -> int:
        return len(self.centers_)


class TwoStageRegressor(RegressorMixin, BaseEstimator):
    """
    Classify-then-regress composition.

    The classifier learns the activity label (target > threshold) from
    `classifier_features`; the regressor is fitted on truly active rows only,
    from `regressor_features`. Rows the classifier calls inactive are
    predicted as exactly 0 and never reach the regressor.
    """

    def __init__(
        self,
        classifier: Any = None,
        regressor: Any = None,
        threshold: float = DEFAULT_THRESHOLD,
        classifier_features: Optional[Sequence[str]] = None,
        regressor_features: Optional[Sequence[str]] = None
    ):
        self.classifier = classifier
        self.regressor = regressor
        self.threshold = threshold
        self.classifier_features = classifier_features
        self.regressor_features = regressor_features

    @staticmethod
    def _columns(X, columns: Optional[Sequence[str]]):
        return X if columns is None else X[list(columns)]

    def fit(self, X, y) -> 'TwoStageRegressor':
        y = np.asarray(y, dtype=float)
        labels = derive_activity_label(y, self.threshold)
        active = labels == 1
        if not active.any():
            raise ValueError(f"No rows above threshold {self.threshold}; cannot fit the regressor")

        self.classifier_ = clone(self.classifier).fit(
            self._columns(X, self.classifier_features), labels
        )
        self.regressor_ = clone(self.regressor).fit(
            _take_rows(self._columns(X, self.regressor_features), active), y[active]
        )
        return self

    def predict_activity(self, X) -> np.ndarray:
        return np.asarray(self.classifier_.predict(self._columns(X, self.classifier_features))).astype(int)

    def predict(self, X) -> np.ndarray:
        active = self.predict_activity(X) == 1
        prediction = np.zeros(len(active))
        if active.any():
            X_reg = self._columns(X, self.regressor_features)
            prediction[active] = self.regressor_.predict(_take_rows(X_reg, active))
        return prediction

    @property
    def n_predictors_(self) -> int:
        return count_predictors(self.regressor_)


def count_predictors(model: Any) -> int:
    """
    Number of predictors a fitted model retains.

    Penalized linear models count their non-zero coefficients; the custom
    estimators report their own count; anything else falls back to its
    number of input features.
    """
    if isinstance(model, Pipeline):
        model = model[-1]
    if hasattr(model, 'n_predictors_'):
        return int(model.n_predictors_)
    if hasattr(model, 'coef_'):
        return int(np.count_nonzero(model.coef_))
    if hasattr(model, 'n_features_in_'):
        return int(model.n_features_in_)
    raise ValueError(f"Cannot count predictors of {type(model).__name__}; is it fitted?")


def build_classifier_bank(
    config: Optional[Dict[str, Any]] = None,
    knn_k: int = 5,
    knn_k_scaled: int = 5,
    seed: int = DEFAULT_SEED
) -> Dict[str, Any]:
    """
    Build the activity classifier candidates.

    LDA is only used on standardized features; every other candidate is
    tried both raw and standardized.

    Args:
        config: The `classification` config section
        knn_k: Neighbours for the raw-feature k-NN (chosen by leave-one-out)
        knn_k_scaled: Neighbours for the standardized k-NN
        seed: Random state for the network

    Returns:
        Ordered dict of candidate name -> unfitted estimator
    """
    config = config or {}
    hidden = config.get('mlp_hidden', 5)
    max_iter = config.get('max_iter', 500)

    def mlp():
        return MLPClassifier(hidden_layer_sizes=(hidden,), activation='logistic', solver='lbfgs',
                             max_iter=max_iter, random_state=seed)

    return {
        "lda_scaled": _scaled(LinearDiscriminantAnalysis()),
        "qda": QuadraticDiscriminantAnalysis(),
        "qda_scaled": _scaled(QuadraticDiscriminantAnalysis()),
        "knn": KNeighborsClassifier(n_neighbors=knn_k),
        "knn_scaled": _scaled(KNeighborsClassifier(n_neighbors=knn_k_scaled)),
        "logistic": LogisticRegression(max_iter=max_iter),
        "logistic_scaled": _scaled(LogisticRegression(max_iter=max_iter)),
        "mlp": mlp(),
        "mlp_scaled": _scaled(mlp()),
    }


def build_regressor(
    name: str,
    config: Optional[Dict[str, Any]] = None,
    seed: int = DEFAULT_SEED
) -> BaseEstimator:
    """
    Build a regression candidate by name.

    Names: ols_stepwise, glm_logit, glm_probit, glm_cloglog, ridge, lasso,
    mlp, rbf. Ridge and LASSO choose their strength with an inner k-fold
    sweep on every fit.

    Args:
        name: Candidate name
        config: The `regression` config section
        seed: Random state for inner folds and networks

    Returns:
        Unfitted estimator
    """
    config = config or {}
    max_iter = config.get('max_iter', 500)

    if name == "ols_stepwise":
        return StepwiseOLSRegressor(direction=config.get('stepwise_direction', 'both'))

    if name.startswith("glm_"):
        return BinomialGLMRegressor(link=name[len("glm_"):])

    inner_cv = KFold(n_splits=config.get('inner_folds', 10), shuffle=True, random_state=seed)

    if name == "ridge":
        alphas = config.get('ridge_alphas') or np.logspace(-3, 3, 50)
        return _scaled(RidgeCV(alphas=np.asarray(alphas, dtype=float), cv=inner_cv))

    if name == "lasso":
        alphas = config.get('lasso_alphas') or np.logspace(-4, 1, 50)
        return _scaled(LassoCV(alphas=np.asarray(alphas, dtype=float), cv=inner_cv,
                               max_iter=config.get('lasso_max_iter', 10000)))

    if name == "mlp":
        return _scaled(MLPRegressor(hidden_layer_sizes=(config.get('mlp_hidden', 5),), activation='logistic',
                                    solver='lbfgs', max_iter=max_iter, random_state=seed))

    if name == "rbf":
        return _scaled(RBFNetworkRegressor(n_centers=config.get('rbf_centers'), random_state=seed))

    raise ValueError(f"Unknown regressor: {name}")


def build_two_stage(
    classifier: Any,
    regressor: Any,
    threshold: float = DEFAULT_THRESHOLD,
    classifier_features: Optional[Sequence[str]] = None,
    regressor_features: Optional[Sequence[str]] = None
) -> TwoStageRegressor:
    """Wrap a classifier and a regressor into a classify-then-regress model."""
    return TwoStageRegressor(
        classifier=classifier,
        regressor=regressor,
        threshold=threshold,
        classifier_features=list(classifier_features) if classifier_features is not None else None,
        regressor_features=list(regressor_features) if regressor_features is not None else None
    )

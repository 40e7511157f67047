"""
Test Suite for Model Module
===========================

Tests for the custom estimators, the classify-then-regress composition and
the candidate factories.
"""

import numpy as np
import pytest
from scipy.special import expit
from sklearn.base import clone
from sklearn.dummy import DummyRegressor
from sklearn.linear_model import LinearRegression
from sklearn.metrics import r2_score

from cpu_usage.model import (
    BinomialGLMRegressor,
    RBFNetworkRegressor,
    StepwiseOLSRegressor,
    TwoStageRegressor,
    build_classifier_bank,
    build_regressor,
    build_two_stage,
    count_predictors,
)
from cpu_usage.preprocessing import split_features_target


@pytest.fixture
def linear_data():
    rng = np.random.RandomState(1)
    X = rng.normal(size=(300, 6))
    y = 3.0 + 2.0 * X[:, 0] - 1.5 * X[:, 1] + rng.normal(scale=0.5, size=300)
    return X, y


class TestStepwiseOLSRegressor:

    @pytest.mark.parametrize("direction", ["both", "forward", "backward"])
    def test_keeps_informative_features(self, linear_data, direction):
        X, y = linear_data
        model = StepwiseOLSRegressor(direction=direction).fit(X, y)

        assert {0, 1} <= set(model.selected_)
        assert model.n_predictors_ == len(model.selected_)
        assert r2_score(y, model.predict(X)) > 0.9

    def test_drops_noise(self, linear_data):
        X, y = linear_data
        model = StepwiseOLSRegressor().fit(X, y)

        assert model.n_predictors_ < X.shape[1]

    def test_unknown_direction(self, linear_data):
        X, y = linear_data
        with pytest.raises(ValueError, match="direction"):
            StepwiseOLSRegressor(direction="sideways").fit(X, y)


class TestBinomialGLMRegressor:

    @pytest.fixture
    def proportion_data(self):
        rng = np.random.RandomState(2)
        X = rng.normal(size=(400, 2))
        y = 100.0 * expit(0.5 + X[:, 0] - X[:, 1])
        return X, y

    def test_logit_recovers_exact_curve(self, proportion_data):
        X, y = proportion_data
        model = BinomialGLMRegressor(link="logit").fit(X, y)

        np.testing.assert_allclose(model.predict(X), y, atol=0.5)

    @pytest.mark.parametrize("link", ["logit", "probit", "cloglog"])
    def test_predictions_bounded(self, proportion_data, link):
        X, y = proportion_data
        pred = BinomialGLMRegressor(link=link).fit(X, y).predict(X * 3)

        assert np.all(pred >= 0)
        assert np.all(pred <= 100)

    def test_unknown_link(self, proportion_data):
        X, y = proportion_data
        with pytest.raises(ValueError, match="Unknown GLM link"):
            BinomialGLMRegressor(link="cauchit").fit(X, y)

    def test_predictor_count(self, proportion_data):
        X, y = proportion_data
        assert count_predictors(BinomialGLMRegressor().fit(X, y)) == 2


class TestRBFNetworkRegressor:

    @pytest.fixture
    def sine_data(self):
        X = np.linspace(0, 2 * np.pi, 216).reshape(-1, 1)
        return X, np.sin(X).ravel()

    def test_default_centres_cube_root(self, sine_data):
        X, y = sine_data
        model = RBFNetworkRegressor(random_state=0).fit(X, y)

        assert len(model.centers_) == 6
        assert model.n_predictors_ == 6

    def test_explicit_centres(self, sine_data):
        X, y = sine_data
        assert len(RBFNetworkRegressor(n_centers=4, random_state=0).fit(X, y).centers_) == 4

    def test_fits_smooth_curve(self, sine_data):
        X, y = sine_data
        model = RBFNetworkRegressor(random_state=0).fit(X, y)

        assert r2_score(y, model.predict(X)) > 0.8
        assert np.all(model.widths_ > 0)


class TestTwoStageRegressor:
    """Tests for the classify-then-regress composition."""

    @pytest.fixture
    def frame(self, cpu_frame):
        return split_features_target(cpu_frame)

    @pytest.fixture
    def classifier(self):
        return build_classifier_bank()["lda_scaled"]

    def test_inactive_rows_predict_zero(self, frame, classifier):
        X, y = frame
        model = build_two_stage(
            classifier, DummyRegressor(strategy="constant", constant=50.0),
            classifier_features=['runqsz', 'freeswap']
        ).fit(X, y)

        activity = model.predict_activity(X)
        pred = model.predict(X)

        assert (activity == 0).any() and (activity == 1).any()
        assert np.all(pred[activity == 0] == 0.0)
        assert np.all(pred[activity == 1] == 50.0)

    @pytest.mark.parametrize("name", ["ols_stepwise", "glm_logit", "lasso", "rbf"])
    def test_zero_regardless_of_regressor(self, frame, classifier, name):
        X, y = frame
        regressor = build_regressor(name, {'inner_folds': 3})
        model = build_two_stage(classifier, regressor, classifier_features=['runqsz', 'freeswap']).fit(X, y)

        inactive = model.predict_activity(X) == 0
        assert np.all(model.predict(X)[inactive] == 0.0)

    def test_regressor_sees_active_rows_only(self, frame, classifier):
        X, y = frame
        model = build_two_stage(
            classifier, DummyRegressor(strategy="mean"),
            classifier_features=['runqsz', 'freeswap']
        ).fit(X, y)

        np.testing.assert_allclose(model.regressor_.predict(X.iloc[:1])[0], y[y > 2.0].mean())

    def test_feature_subsets(self, frame, classifier):
        X, y = frame
        model = build_two_stage(
            classifier, LinearRegression(),
            classifier_features=['runqsz', 'freeswap'],
            regressor_features=['runqsz', 'scall', 'pflt']
        ).fit(X, y)

        assert model.classifier_[-1].n_features_in_ == 2
        assert model.regressor_.n_features_in_ == 3
        assert count_predictors(model) == 3

    def test_no_active_rows(self, frame, classifier):
        X, _ = frame
        with pytest.raises(ValueError, match="No rows above threshold"):
            build_two_stage(classifier, LinearRegression()).fit(X, np.zeros(len(X)))

    def test_clone_keeps_params(self, classifier):
        model = TwoStageRegressor(classifier, LinearRegression(), threshold=5.0,
                                  classifier_features=['runqsz'])
        cloned = clone(model)

        assert cloned.threshold == 5.0
        assert cloned.classifier_features == ['runqsz']
        assert not hasattr(cloned, 'classifier_')


class TestFactories:

    def test_classifier_bank(self):
        bank = build_classifier_bank({'mlp_hidden': 5}, knn_k=3, knn_k_scaled=7)

        assert set(bank) == {
            "lda_scaled", "qda", "qda_scaled", "knn", "knn_scaled",
            "logistic", "logistic_scaled", "mlp", "mlp_scaled"
        }
        assert bank["knn"].n_neighbors == 3
        assert bank["knn_scaled"][-1].n_neighbors == 7
        assert bank["mlp"].hidden_layer_sizes == (5,)

    @pytest.mark.parametrize("name", [
        "ols_stepwise", "glm_logit", "glm_probit", "glm_cloglog", "ridge", "lasso", "mlp", "rbf"
    ])
    def test_regressor_names(self, name):
        assert build_regressor(name) is not None

    def test_glm_link_from_name(self):
        assert build_regressor("glm_cloglog").link == "cloglog"

    def test_unknown_regressor(self):
        with pytest.raises(ValueError, match="Unknown regressor"):
            build_regressor("svm")


class TestCountPredictors:

    def test_lasso_counts_nonzero(self, linear_data):
        X, y = linear_data
        model = build_regressor("lasso", {'inner_folds': 3}).fit(X, y)

        assert count_predictors(model) == np.count_nonzero(model[-1].coef_)
        assert 2 <= count_predictors(model) <= X.shape[1]

    def test_mlp_counts_inputs(self, linear_data):
        X, y = linear_data
        model = build_regressor("mlp", {'max_iter': 50}).fit(X, y)

        assert count_predictors(model) == X.shape[1]

    def test_unfitted(self):
        with pytest.raises(ValueError, match="Cannot count predictors"):
            count_predictors(StepwiseOLSRegressor())

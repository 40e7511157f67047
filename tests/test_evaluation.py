"""
Test Suite for Evaluation Module
================================
"""

import numpy as np
import pytest
from sklearn.metrics import r2_score

from cpu_usage.evaluation import (
    calculate_metrics,
    evaluate_model,
    normalized_rmse,
    print_evaluation_report,
    r_squared_confidence_interval,
    r_squared_from_nrmse,
)
from cpu_usage.model import build_regressor


@pytest.fixture
def predictions():
    rng = np.random.RandomState(8)
    y_true = rng.uniform(0, 100, size=500)
    y_pred = y_true + rng.normal(scale=5.0, size=500)
    return y_true, y_pred


class TestNormalizedRMSE:

    def test_perfect_prediction(self, predictions):
        y_true, _ = predictions

        assert normalized_rmse(y_true, y_true) == 0.0
        assert r_squared_from_nrmse(0.0) == 1.0

    def test_mean_prediction_gives_zero_r2(self, predictions):
        y_true, _ = predictions
        nrmse = normalized_rmse(y_true, np.full_like(y_true, y_true.mean()))

        assert nrmse == pytest.approx(1.0)
        assert r_squared_from_nrmse(nrmse) == pytest.approx(0.0, abs=1e-12)

    def test_matches_r2_score(self, predictions):
        y_true, y_pred = predictions

        assert r_squared_from_nrmse(normalized_rmse(y_true, y_pred)) == pytest.approx(
            r2_score(y_true, y_pred)
        )

    def test_constant_target(self):
        with pytest.raises(ValueError, match="constant"):
            normalized_rmse([5.0, 5.0, 5.0], [4.0, 5.0, 6.0])

    def test_single_row(self):
        with pytest.raises(ValueError):
            normalized_rmse([5.0], [4.0])


class TestR2ConfidenceInterval:

    def test_contains_estimate(self):
        lower, upper = r_squared_confidence_interval(0.98, n=2731, k=10)

        assert lower < 0.98 < upper <= 1.0

    def test_closed_form_width(self):
        r2, n, k = 0.9, 1000, 5
        variance = 4 * r2 * (1 - r2) ** 2 * (n - k - 1) ** 2 / ((n ** 2 - 1) * (n + 3))

        lower, upper = r_squared_confidence_interval(r2, n, k)

        assert upper - lower == pytest.approx(2 * 1.959964 * np.sqrt(variance), rel=1e-5)

    def test_narrows_with_sample_size(self):
        small = r_squared_confidence_interval(0.8, n=100, k=3)
        large = r_squared_confidence_interval(0.8, n=10000, k=3)

        assert (large[1] - large[0]) < (small[1] - small[0])

    def test_wider_at_higher_confidence(self):
        ci95 = r_squared_confidence_interval(0.8, n=300, k=3, confidence_level=0.95)
        ci99 = r_squared_confidence_interval(0.8, n=300, k=3, confidence_level=0.99)

        assert (ci99[1] - ci99[0]) > (ci95[1] - ci95[0])

    @pytest.mark.parametrize("r2", [0.0, 1.0])
    def test_degenerate_values(self, r2):
        assert r_squared_confidence_interval(r2, n=100, k=2) == (r2, r2)

    def test_too_many_predictors(self):
        with pytest.raises(ValueError):
            r_squared_confidence_interval(0.5, n=10, k=9)


class TestEvaluateModel:

    @pytest.fixture
    def split(self):
        rng = np.random.RandomState(9)
        X = rng.normal(size=(300, 4))
        y = 50 + 10 * X[:, 0] - 5 * X[:, 1] + rng.normal(scale=1.0, size=300)
        return X[:200], y[:200], X[200:], y[200:]

    def test_metrics(self, split):
        X_train, y_train, X_test, y_test = split
        template = build_regressor("ridge", {'inner_folds': 3})

        result = evaluate_model(template, X_train, y_train, X_test, y_test, name="ridge")
        metrics = result['metrics']

        assert metrics['r2'] > 0.95
        assert metrics['r2'] == pytest.approx(1 - metrics['nrmse'] ** 2)
        assert metrics['r2_ci_lower'] < metrics['r2'] < metrics['r2_ci_upper']
        assert metrics['n_test'] == 100
        assert metrics['n_predictors'] == 4
        assert len(result['predictions']) == 100

    def test_template_left_unfitted(self, split):
        X_train, y_train, X_test, y_test = split
        template = build_regressor("ridge", {'inner_folds': 3})

        evaluate_model(template, X_train, y_train, X_test, y_test)

        assert not hasattr(template[-1], 'coef_')

    def test_report(self, predictions, capsys):
        metrics = calculate_metrics(*predictions, n_predictors=3)
        metrics['model_name'] = "demo"

        print_evaluation_report(metrics)
        out = capsys.readouterr().out

        assert "MODEL EVALUATION REPORT: demo" in out
        assert "95% CI for R²" in out

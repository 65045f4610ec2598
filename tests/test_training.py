"""
Tests for cross-validated model tuning.
"""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from boxoffice.schema import ModelResult, ModelType, TuningResult
from boxoffice.training import (
    ModelTrainer,
    score_config,
    select_best,
    select_by_one_std_err,
    summarize_scores,
)
from tests.test_feature_utils import make_predictors


def make_train(n: int = 60, seed: int = 3) -> pd.DataFrame:
    frame = make_predictors(n, seed)
    frame["revenue"] = 2.0 * frame["budget"] + 1e7 * frame["number_of_oscar_winners"]
    return frame


def knn_result(k: int, mean: float, std_err: float) -> ModelResult:
    return ModelResult(model_type=ModelType.KNN, params={"n_neighbors": k}, mean_rmse=mean, std_err=std_err, n_folds=10)


class TestSelectionRules:
    """Test cases for best-configuration selection."""

    def test_select_best_minimum(self):
        results = [knn_result(1, 10.0, 1.0), knn_result(2, 8.0, 1.0), knn_result(3, 9.0, 1.0)]
        assert select_best(results).params == {"n_neighbors": 2}

    def test_select_best_skips_invalid(self):
        results = [
            ModelResult(model_type=ModelType.KNN, params={"n_neighbors": 1}, mean_rmse=float("nan")),
            knn_result(2, 8.0, 1.0),
        ]
        assert select_best(results).params == {"n_neighbors": 2}

    def test_select_best_all_invalid(self):
        with pytest.raises(ValueError):
            select_best([ModelResult(model_type=ModelType.KNN, params={"n_neighbors": 1})])

    def test_one_std_err_fewest(self):
        # Best is k=5 (8.0 +- 1.0); k=3 (8.9) is within one standard error, k=2 (9.5) is not
        results = [
            knn_result(2, 9.5, 0.5),
            knn_result(3, 8.9, 0.5),
            knn_result(5, 8.0, 1.0),
            knn_result(8, 8.5, 0.5),
        ]
        assert select_by_one_std_err(results, "n_neighbors", "fewest").params["n_neighbors"] == 3

    def test_one_std_err_most(self):
        results = [
            knn_result(2, 9.5, 0.5),
            knn_result(5, 8.0, 1.0),
            knn_result(8, 8.5, 0.5),
            knn_result(10, 9.2, 0.5),
        ]
        assert select_by_one_std_err(results, "n_neighbors", "most").params["n_neighbors"] == 8

    def test_one_std_err_unknown_preference(self):
        with pytest.raises(ValueError):
            select_by_one_std_err([knn_result(1, 1.0, 0.1)], "n_neighbors", "middle")


class TestSummarizeScores:
    """Test cases for summarize_scores."""

    def test_nan_folds_excluded(self):
        result = summarize_scores(ModelType.KNN, {"n_neighbors": 3}, np.array([2.0, np.nan, 4.0]))

        assert result.mean_rmse == pytest.approx(3.0)
        assert result.n_folds == 2
        assert result.std_err == pytest.approx(np.std([2.0, 4.0], ddof=1) / np.sqrt(2))
        assert result.fold_rmse == [2.0, None, 4.0]

    def test_all_nan(self):
        result = summarize_scores(ModelType.KNN, {}, np.array([np.nan, np.nan]))
        assert not result.is_valid
        assert result.n_folds == 0

    def test_single_fold(self):
        result = summarize_scores(ModelType.LINEAR_REGRESSION, {}, np.array([5.0]))
        assert result.mean_rmse == 5.0
        assert result.std_err == 0.0


class TestModelTrainer(unittest.TestCase):
    """Test cases for ModelTrainer class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_path = Path(tempfile.mkdtemp())
        self.config = {
            "output": {"models_dir": str(self.temp_path / "models")},
            "models": {
                "knn": {"n_neighbors": {"min": 1, "max": 10, "levels": 10}},
                "random_forest": {
                    "max_features": {"min": 1, "max": 8},
                    "n_estimators": {"min": 5, "max": 10},
                    "min_samples_leaf": {"min": 2, "max": 4},
                    "levels": 2,
                },
            },
            "performance": {"n_jobs": 1, "show_progress": False},
        }
        self.trainer = ModelTrainer(self.config)
        self.train = make_train()
        positions = np.arange(len(self.train))
        self.folds = [(positions[positions % 3 != i], positions[positions % 3 == i]) for i in range(3)]

    def test_default_grids(self):
        """Test the default grid sizes of every family."""
        trainer = ModelTrainer()
        self.assertEqual(trainer.param_grid(ModelType.LINEAR_REGRESSION), [{}])
        self.assertEqual(
            [p["n_neighbors"] for p in trainer.param_grid(ModelType.KNN)], list(range(1, 11))
        )
        forest = trainer.param_grid(ModelType.RANDOM_FOREST)
        self.assertEqual(len(forest), 216)
        self.assertEqual({p["max_features"] for p in forest}, {1, 2, 4, 5, 7, 8})

    def test_make_estimator_sets_params(self):
        estimator = self.trainer.make_estimator(ModelType.KNN, {"n_neighbors": 4})
        self.assertEqual(estimator.named_steps["model"].n_neighbors, 4)
        self.assertIn("preprocess", estimator.named_steps)

    def test_degenerate_folds_are_nan(self):
        """Test that a configuration too large for a fold scores NaN there."""
        X, y = self.trainer.split_xy(self.train)
        positions = np.arange(len(X))
        folds = [
            (positions[:50], positions[50:]),
            (positions[:5], positions[5:10]),
        ]
        estimator = self.trainer.make_estimator(ModelType.KNN, {"n_neighbors": 8})

        scores = score_config(estimator, X, y, folds)

        self.assertFalse(np.isnan(scores[0]))
        self.assertTrue(np.isnan(scores[1]))

    def test_linear_regression_recovers_linear_revenue(self):
        tuning = self.trainer.tune(ModelType.LINEAR_REGRESSION, self.train, self.folds)

        self.assertEqual(len(tuning.results), 1)
        self.assertLess(tuning.best.mean_rmse, 1.0)
        self.assertEqual(tuning.selection_rule, "min_rmse")

    def test_knn_uses_one_std_err(self):
        tuning = self.trainer.tune(ModelType.KNN, self.train, self.folds)

        self.assertEqual(len(tuning.results), 10)
        self.assertEqual(tuning.selection_rule, "one_std_err_fewest")
        best = select_best(tuning.results)
        self.assertLessEqual(tuning.best.mean_rmse, best.mean_rmse + best.std_err)
        self.assertLessEqual(tuning.best.params["n_neighbors"], best.params["n_neighbors"])

    def test_random_forest_grid(self):
        tuning = self.trainer.tune(ModelType.RANDOM_FOREST, self.train, self.folds)

        self.assertEqual(len(tuning.results), 8)
        self.assertEqual(tuning.best.mean_rmse, min(r.mean_rmse for r in tuning.results if r.is_valid))

    def test_tuning_is_persisted_and_reloaded(self):
        """Test that a second run reloads the cached result instead of refitting."""
        first = self.trainer.tune(ModelType.KNN, self.train, self.folds, fingerprint="abc")
        self.assertTrue(self.trainer.cache_path(ModelType.KNN).exists())

        with patch("boxoffice.training.score_config") as mock_score:
            second = self.trainer.tune(ModelType.KNN, self.train, self.folds, fingerprint="abc")
            mock_score.assert_not_called()

        self.assertIsInstance(second, TuningResult)
        self.assertEqual(second.best.params, first.best.params)

    def test_changed_fingerprint_retunes(self):
        self.trainer.tune(ModelType.LINEAR_REGRESSION, self.train, self.folds, fingerprint="abc")

        with patch("boxoffice.training.score_config", return_value=np.array([1.0, 2.0, 3.0])) as mock_score:
            tuning = self.trainer.tune(ModelType.LINEAR_REGRESSION, self.train, self.folds, fingerprint="xyz")
            mock_score.assert_called_once()

        self.assertEqual(tuning.data_fingerprint, "xyz")
        self.assertEqual(tuning.best.mean_rmse, 2.0)

    def test_changed_grid_retunes(self):
        self.trainer.tune(ModelType.KNN, self.train, self.folds)

        config = dict(self.config)
        config["models"] = {"knn": {"n_neighbors": {"min": 1, "max": 3, "levels": 3}}}
        tuning = ModelTrainer(config).tune(ModelType.KNN, self.train, self.folds)

        self.assertEqual(len(tuning.results), 3)

    def test_force_retunes(self):
        self.trainer.tune(ModelType.LINEAR_REGRESSION, self.train, self.folds)

        with patch("boxoffice.training.score_config", return_value=np.array([1.0, 1.0, 1.0])) as mock_score:
            self.trainer.tune(ModelType.LINEAR_REGRESSION, self.train, self.folds, force=True)
            mock_score.assert_called_once()

    def test_tune_all_families(self):
        trainer = ModelTrainer({**self.config, "models": {**self.config["models"], "families": ["linear_regression", "knn"]}})
        tunings = trainer.tune_all(self.train, self.folds)

        self.assertEqual(set(tunings), {ModelType.LINEAR_REGRESSION, ModelType.KNN})

    def scripted_knn_scores(self, estimator, X, y, folds, n_jobs=1):
        """Fold scores with a best k=5 and k=3, k=8 inside one standard error."""
        k = estimator.named_steps["model"].n_neighbors
        means = {3: 8.5, 5: 8.0, 8: 8.8}
        spread = np.sqrt(3.0) if k == 5 else 0.3
        mean = means.get(k, 12.0)
        return np.array([mean - spread, mean, mean + spread])

    def test_changed_preference_reselects_cached_results(self):
        """Test that changing the one-SE direction reselects without refitting."""
        with patch("boxoffice.training.score_config", side_effect=self.scripted_knn_scores):
            fewest = self.trainer.tune(ModelType.KNN, self.train, self.folds, fingerprint="abc")
        self.assertEqual(fewest.best.params, {"n_neighbors": 3})
        self.assertEqual(fewest.selection_rule, "one_std_err_fewest")

        config = dict(self.config)
        config["models"] = {**self.config["models"], "knn": {**self.config["models"]["knn"], "prefer": "most"}}
        trainer = ModelTrainer(config)

        with patch("boxoffice.training.score_config") as mock_score:
            most = trainer.tune(ModelType.KNN, self.train, self.folds, fingerprint="abc")
            mock_score.assert_not_called()

        self.assertEqual(most.best.params, {"n_neighbors": 8})
        self.assertEqual(most.selection_rule, "one_std_err_most")
        self.assertEqual(most.results, fewest.results)

        reloaded = trainer.load_cached(ModelType.KNN, "abc", trainer.param_grid(ModelType.KNN))
        self.assertEqual(reloaded.selection_rule, "one_std_err_most")

    def test_changed_forest_seed_retunes(self):
        self.trainer.tune(ModelType.RANDOM_FOREST, self.train, self.folds, fingerprint="abc")

        config = dict(self.config)
        config["models"] = {
            **self.config["models"],
            "random_forest": {**self.config["models"]["random_forest"], "random_state": 7},
        }
        trainer = ModelTrainer(config)

        with patch("boxoffice.training.score_config", return_value=np.array([1.0, 2.0, 3.0])) as mock_score:
            tuning = trainer.tune(ModelType.RANDOM_FOREST, self.train, self.folds, fingerprint="abc")

        self.assertEqual(mock_score.call_count, 8)
        self.assertEqual(tuning.estimator_seed, 7)

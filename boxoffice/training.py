"""
Cross-validated hyperparameter search for the revenue models.

Three model families are tuned over the same folds and the same per-fold
preprocessing:
- Linear regression (no hyperparameters)
- K-nearest-neighbours over the neighbour count, selected with the
  one-standard-error rule
- Random forest over a full regular grid of features per split, number of
  trees and minimum leaf size

Tuning results are persisted with joblib after each family and reloaded on
the next run instead of being recomputed.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import joblib
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.base import clone
from sklearn.ensemble import RandomForestRegressor
from sklearn.linear_model import LinearRegression
from sklearn.metrics import mean_squared_error
from sklearn.model_selection import ParameterGrid
from sklearn.neighbors import KNeighborsRegressor
from sklearn.pipeline import Pipeline
from tqdm import tqdm

from .feature_utils import build_preprocessor, regular_grid
from .schema import (
    CATEGORICAL_PREDICTORS,
    NUMERIC_PREDICTORS,
    TARGET_COLUMN,
    ModelResult,
    ModelType,
    TuningResult,
)
from .splitting import Fold

logger = logging.getLogger(__name__)


def rmse(y_true, y_pred) -> float:
    """Root mean squared error."""
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


def _fit_and_score(estimator: Pipeline, X: pd.DataFrame, y: pd.Series, fold: Fold) -> float:
    """Fit a fresh copy on one fold's training part and score its validation part."""
    train_pos, val_pos = fold
    model = clone(estimator)
    try:
        model.fit(X.iloc[train_pos], y.iloc[train_pos])
        predictions = model.predict(X.iloc[val_pos])
    except ValueError as e:
        logger.warning(f"Degenerate fold ({len(train_pos)} training rows): {e}")
        return float("nan")
    return rmse(y.iloc[val_pos], predictions)


def score_config(
    estimator: Pipeline,
    X: pd.DataFrame,
    y: pd.Series,
    folds: List[Fold],
    n_jobs: int = 1,
) -> np.ndarray:
    """
    RMSE of one configuration on every fold.

    Folds where fitting or predicting fails are NaN so they can be left out
    of the mean instead of aborting the search.
    """
    scores = Parallel(n_jobs=n_jobs)(delayed(_fit_and_score)(estimator, X, y, fold) for fold in folds)
    return np.array(scores, dtype=float)


def summarize_scores(model_type: ModelType, params: Dict[str, Any], scores: np.ndarray) -> ModelResult:
    """Collapse per-fold scores into a ModelResult."""
    valid = scores[~np.isnan(scores)]
    n_valid = len(valid)

    if n_valid == 0:
        mean, std_err = None, None
    elif n_valid == 1:
        mean, std_err = float(valid[0]), 0.0
    else:
        mean = float(valid.mean())
        std_err = float(valid.std(ddof=1) / np.sqrt(n_valid))

    return ModelResult(
        model_type=model_type,
        params=params,
        mean_rmse=mean,
        std_err=std_err,
        n_folds=n_valid,
        fold_rmse=[None if np.isnan(s) else float(s) for s in scores],
    )


def select_best(results: List[ModelResult]) -> ModelResult:
    """Configuration with the lowest mean RMSE."""
    valid = [r for r in results if r.is_valid]
    if not valid:
        raise ValueError("No configuration produced a valid cross-validated score")
    return min(valid, key=lambda r: r.mean_rmse)


def select_by_one_std_err(results: List[ModelResult], param: str, prefer: str = "fewest") -> ModelResult:
    """
    Simplest configuration within one standard error of the best.

    Candidates are the configurations whose mean RMSE is no worse than the
    best mean RMSE plus its standard error. Among them the smallest value of
    param is chosen when prefer is "fewest", the largest when "most".

    The two readings of the rule disagree on direction: the usual statement
    keeps the simplest model (fewest neighbours), while breaking ties toward
    the larger neighbour count keeps the smoothest one. "fewest" is the
    default and "most" gives the other behaviour.
    """
    if prefer not in ("fewest", "most"):
        raise ValueError(f"Unknown preference: {prefer}")

    best = select_best(results)
    threshold = best.mean_rmse + (best.std_err or 0.0)
    candidates = [r for r in results if r.is_valid and r.mean_rmse <= threshold]

    chooser = min if prefer == "fewest" else max
    return chooser(candidates, key=lambda r: r.params[param])


class ModelTrainer:
    """Tunes every configured model family over shared folds."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize trainer with configuration."""
        self.config = config or {}
        self.models_config = self.config.get("models", {})

        self.families = [ModelType(name) for name in self.models_config.get("families", [m.value for m in ModelType])]
        self.n_jobs = self.config.get("performance", {}).get("n_jobs", 1)
        self.show_progress = self.config.get("performance", {}).get("show_progress", True)
        self.models_dir = Path(self.config.get("output", {}).get("models_dir", "models"))

        self.categorical = self.models_config.get("categorical_predictors", CATEGORICAL_PREDICTORS)
        self.numeric = self.models_config.get("numeric_predictors", NUMERIC_PREDICTORS)

    def param_grid(self, model_type: ModelType) -> List[Dict[str, Any]]:
        """Hyperparameter configurations searched for a model family."""
        if model_type == ModelType.LINEAR_REGRESSION:
            return [{}]

        if model_type == ModelType.KNN:
            knn = self.models_config.get("knn", {})
            neighbors = knn.get("n_neighbors", {"min": 1, "max": 10, "levels": 10})
            return [
                {"n_neighbors": k}
                for k in regular_grid(neighbors["min"], neighbors["max"], neighbors["levels"])
            ]

        if model_type == ModelType.RANDOM_FOREST:
            forest = self.models_config.get("random_forest", {})
            levels = forest.get("levels", 6)
            ranges = {
                "max_features": forest.get("max_features", {"min": 1, "max": 8}),
                "n_estimators": forest.get("n_estimators", {"min": 200, "max": 600}),
                "min_samples_leaf": forest.get("min_samples_leaf", {"min": 10, "max": 20}),
            }
            grid = {
                name: regular_grid(bounds["min"], bounds["max"], bounds.get("levels", levels))
                for name, bounds in ranges.items()
            }
            return list(ParameterGrid(grid))

        raise ValueError(f"Unsupported model type: {model_type}")

    def make_estimator(self, model_type: ModelType, params: Optional[Dict[str, Any]] = None) -> Pipeline:
        """Unfitted preprocessing + model pipeline for one configuration."""
        params = params or {}

        if model_type == ModelType.LINEAR_REGRESSION:
            model = LinearRegression()
        elif model_type == ModelType.KNN:
            model = KNeighborsRegressor()
        elif model_type == ModelType.RANDOM_FOREST:
            model = RandomForestRegressor(random_state=self.estimator_seed(model_type))
        else:
            raise ValueError(f"Unsupported model type: {model_type}")

        model.set_params(**params)
        return Pipeline(
            [
                ("preprocess", build_preprocessor(self.categorical, self.numeric)),
                ("model", model),
            ]
        )

    def estimator_seed(self, model_type: ModelType) -> Optional[int]:
        """Random state of the family's estimator, None for deterministic ones."""
        if model_type == ModelType.RANDOM_FOREST:
            return self.models_config.get("random_forest", {}).get("random_state", 42)
        return None

    def select(self, model_type: ModelType, results: List[ModelResult]) -> tuple:
        """Apply the family's selection rule; returns (best, rule_name)."""
        if model_type == ModelType.KNN:
            knn = self.models_config.get("knn", {})
            if knn.get("selection", "one_std_err") == "one_std_err":
                prefer = knn.get("prefer", "fewest")
                return select_by_one_std_err(results, "n_neighbors", prefer), f"one_std_err_{prefer}"
        return select_best(results), "min_rmse"

    def split_xy(self, frame: pd.DataFrame):
        X = frame[self.categorical + self.numeric]
        y = frame[TARGET_COLUMN].astype(float)
        return X, y

    def tune(
        self,
        model_type: ModelType,
        train: pd.DataFrame,
        folds: List[Fold],
        force: bool = False,
        fingerprint: Optional[str] = None,
    ) -> TuningResult:
        """
        Cross-validate every configuration of a family and select the best.

        A cached result in models_dir is reused when it was computed from the
        same data fingerprint and the same grid, unless force is set.
        """
        grid = self.param_grid(model_type)
        cache_path = self.cache_path(model_type)

        if not force:
            cached = self.load_cached(model_type, fingerprint, grid)
            if cached is not None:
                return cached

        logger.info(f"Tuning {model_type.value}: {len(grid)} configurations x {len(folds)} folds")
        X, y = self.split_xy(train)

        results = []
        for params in tqdm(grid, desc=f"Tuning {model_type.value}", disable=not self.show_progress):
            scores = score_config(self.make_estimator(model_type, params), X, y, folds, self.n_jobs)
            results.append(summarize_scores(model_type, params, scores))

        invalid = [r for r in results if not r.is_valid]
        if invalid:
            logger.warning(f"{len(invalid)} {model_type.value} configurations had no valid fold")

        best, rule = self.select(model_type, results)
        tuning = TuningResult(
            model_type=model_type,
            results=results,
            best=best,
            selection_rule=rule,
            data_fingerprint=fingerprint,
            estimator_seed=self.estimator_seed(model_type),
        )

        self.models_dir.mkdir(parents=True, exist_ok=True)
        joblib.dump(tuning, cache_path)
        logger.info(
            f"Best {model_type.value}: {best.params} (RMSE {best.mean_rmse:,.2f}); saved {cache_path}"
        )

        return tuning

    def tune_all(
        self,
        train: pd.DataFrame,
        folds: List[Fold],
        force: bool = False,
        fingerprint: Optional[str] = None,
    ) -> Dict[ModelType, TuningResult]:
        """Tune every configured family over the same folds."""
        return {
            model_type: self.tune(model_type, train, folds, force=force, fingerprint=fingerprint)
            for model_type in self.families
        }

    def cache_path(self, model_type: ModelType) -> Path:
        return self.models_dir / f"{model_type.value}_tuning.joblib"

    def load_cached(
        self,
        model_type: ModelType,
        fingerprint: Optional[str],
        grid: List[Dict[str, Any]],
    ) -> Optional[TuningResult]:
        """Load a persisted tuning result if it still matches the data and grid."""
        cache_path = self.cache_path(model_type)
        if not cache_path.exists():
            return None

        cached = joblib.load(cache_path)
        if not isinstance(cached, TuningResult):
            logger.warning(f"Ignoring unexpected object in {cache_path}")
            return None
        if fingerprint is not None and cached.data_fingerprint != fingerprint:
            logger.info(f"Cached {model_type.value} tuning was computed on different data, retuning")
            return None
        if [r.params for r in cached.results] != grid:
            logger.info(f"Cached {model_type.value} tuning used a different grid, retuning")
            return None
        if cached.estimator_seed != self.estimator_seed(model_type):
            logger.info(f"Cached {model_type.value} tuning used a different random state, retuning")
            return None

        logger.info(f"Loaded cached {model_type.value} tuning from {cache_path}")

        # Fold scores stay valid when only the selection settings changed
        best, rule = self.select(model_type, cached.results)
        if rule != cached.selection_rule or best.params != cached.best.params:
            logger.info(f"Reselected cached {model_type.value} tuning with {rule}: {best.params}")
            cached = cached.model_copy(update={"best": best, "selection_rule": rule})
            joblib.dump(cached, cache_path)

        return cached

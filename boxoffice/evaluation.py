"""
Final model selection and held-out evaluation.

The best configuration of each family is compared on cross-validated RMSE;
the overall winner is refit once on the whole training partition and scored
once on the test partition.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

import joblib
from sklearn.metrics import r2_score
from sklearn.pipeline import Pipeline

from .schema import EvaluationReport, ModelType, TuningResult
from .splitting import TrainTestSplit
from .training import ModelTrainer, rmse

logger = logging.getLogger(__name__)


class ModelEvaluator:
    """Selects the winning model family and scores it on the test partition."""

    def __init__(self, trainer: ModelTrainer):
        self.trainer = trainer
        self.final_model: Optional[Pipeline] = None

    @staticmethod
    def select_winner(tunings: Dict[ModelType, TuningResult]) -> TuningResult:
        """Family whose selected configuration has the lowest mean RMSE."""
        candidates = [t for t in tunings.values() if t.best.is_valid]
        if not candidates:
            raise ValueError("No tuned model family has a valid score")
        return min(candidates, key=lambda t: t.best.mean_rmse)

    def evaluate(
        self,
        tunings: Dict[ModelType, TuningResult],
        split: TrainTestSplit,
        model_path: Optional[str] = None,
    ) -> EvaluationReport:
        """
        Refit the winning configuration on the training partition and score it.

        The test partition is used exactly once, after all tuning is complete.
        """
        for model_type, tuning in tunings.items():
            logger.info(f"{model_type.value}: CV RMSE {tuning.best.mean_rmse:,.2f} with {tuning.best.params}")

        winner = self.select_winner(tunings)
        logger.info(f"Winning family: {winner.model_type.value}")

        X_train, y_train = self.trainer.split_xy(split.train)
        X_test, y_test = self.trainer.split_xy(split.test)

        final_model = self.trainer.make_estimator(winner.model_type, winner.best.params)
        final_model.fit(X_train, y_train)
        self.final_model = final_model

        predictions = final_model.predict(X_test)
        test_rmse = rmse(y_test, predictions)
        test_r2 = float(r2_score(y_test, predictions))

        saved_path = None
        if model_path:
            path = Path(model_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            joblib.dump(final_model, path)
            saved_path = str(path)
            logger.info(f"Final model saved: {path}")

        report = EvaluationReport(
            candidates={m.value: t.best for m, t in tunings.items()},
            winner=winner.model_type,
            winner_params=winner.best.params,
            cv_rmse=winner.best.mean_rmse,
            test_rmse=test_rmse,
            test_r2=test_r2,
            train_size=len(split.train),
            test_size=len(split.test),
            model_path=saved_path,
        )

        logger.info(f"Test RMSE {test_rmse:,.2f}, R² {test_r2:.4f}")
        return report

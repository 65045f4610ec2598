"""
Box-office revenue pipeline package.

This package provides the components of the revenue modelling pipeline:
data loading, feature engineering and cleaning, revenue-stratified
splitting, cross-validated model tuning and final evaluation.
"""

__version__ = "0.1.0"

from .acquisition import DataAcquisitionError, DatasetLoader
from .data_prep import BoxOfficePipeline, PipelineConfig, PipelineState
from .evaluation import ModelEvaluator
from .feature_utils import FeatureNameMapper, build_preprocessor, regular_grid
from .preprocessing import DataQualityError, FeatureEngineer
from .schema import EvaluationReport, ModelResult, ModelType, MovieRecord, TuningResult, ValidationResult
from .splitting import TrainTestSplit, create_folds, create_train_test_split
from .training import ModelTrainer
from .validation import DataValidator

__all__ = [
    "DatasetLoader",
    "DataAcquisitionError",
    "DataQualityError",
    "DataValidator",
    "FeatureEngineer",
    "FeatureNameMapper",
    "build_preprocessor",
    "regular_grid",
    "TrainTestSplit",
    "create_train_test_split",
    "create_folds",
    "ModelTrainer",
    "ModelEvaluator",
    "MovieRecord",
    "ModelResult",
    "ModelType",
    "TuningResult",
    "EvaluationReport",
    "ValidationResult",
    "BoxOfficePipeline",
    "PipelineConfig",
    "PipelineState",
]

"""
Data schema definitions for the box-office revenue pipeline.

This module defines the cleaned movie record, tuning results and evaluation
reports as Pydantic models with validation rules, plus the column constants
shared by the feature builder, the splitter and the model trainer.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator


TARGET_COLUMN = "revenue"

CATEGORICAL_PREDICTORS = [
    "main_genre",
    "country",
    "original_language",
    "release_month",
    "release_year",
]

NUMERIC_PREDICTORS = ["budget", "number_of_oscar_winners"]

CLEANED_COLUMNS = [
    "name",
    "original_language",
    "country",
    "main_genre",
    "release_month",
    "release_year",
    "budget",
    "revenue",
    "number_of_oscar_winners",
]


class ModelType(str, Enum):
    """Supported regression model families."""

    LINEAR_REGRESSION = "linear_regression"
    KNN = "knn"
    RANDOM_FOREST = "random_forest"


class MovieRecord(BaseModel):
    """One cleaned movie row."""

    name: str = Field(..., min_length=1)
    original_language: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    main_genre: str = Field(..., min_length=1)
    release_month: str = Field(..., pattern=r"^(0[1-9]|1[0-2])$")
    release_year: str = Field(..., pattern=r"^\d{4}$")
    budget: float = Field(..., ge=0.0, description="Production budget")
    revenue: float = Field(..., ge=0.0, description="Box office revenue")
    number_of_oscar_winners: int = Field(..., ge=0)

    @field_validator("main_genre")
    def validate_main_genre(cls, v):
        if "," in v:
            raise ValueError("main_genre must be a single genre")
        return v.strip()


class SplitInfo(BaseModel):
    """Summary of a train/test partition."""

    train_size: int = Field(..., ge=0)
    test_size: int = Field(..., ge=0)
    test_fraction: float = Field(..., gt=0.0, lt=1.0)
    n_strata: int = Field(..., ge=1)
    random_state: int


class ModelResult(BaseModel):
    """Cross-validated score of one hyperparameter configuration."""

    model_type: ModelType
    params: Dict[str, Any] = Field(default_factory=dict)
    mean_rmse: Optional[float] = None
    std_err: Optional[float] = None
    n_folds: int = Field(0, ge=0, description="Folds with a valid score")
    fold_rmse: List[Optional[float]] = Field(default_factory=list)

    @field_validator("mean_rmse", "std_err")
    def nan_to_none(cls, v):
        if v is not None and np.isnan(v):
            return None
        return v

    @property
    def is_valid(self) -> bool:
        return self.mean_rmse is not None


class TuningResult(BaseModel):
    """All scored configurations of one model family and the selected one."""

    model_type: ModelType
    results: List[ModelResult] = Field(..., min_length=1)
    best: ModelResult
    selection_rule: str = "min_rmse"
    data_fingerprint: Optional[str] = None
    estimator_seed: Optional[int] = None
    tuned_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def validate_best(self):
        if self.best.model_type != self.model_type:
            raise ValueError("Best result must belong to the tuned model family")
        return self


class EvaluationReport(BaseModel):
    """Final comparison across model families and the held-out test score."""

    candidates: Dict[str, ModelResult]
    winner: ModelType
    winner_params: Dict[str, Any] = Field(default_factory=dict)
    cv_rmse: float = Field(..., ge=0.0)
    test_rmse: float = Field(..., ge=0.0)
    test_r2: float
    train_size: int = Field(..., ge=1)
    test_size: int = Field(..., ge=1)
    model_path: Optional[str] = None
    evaluated_at: datetime = Field(default_factory=datetime.now)


class ValidationResult(BaseModel):
    """Result of data validation process."""

    is_valid: bool
    error_count: int = 0
    warning_count: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)
    validated_at: datetime = Field(default_factory=datetime.now)

    def add_error(self, record_id: str, field: str, message: str, value: Any = None):
        """Add validation error."""
        self.errors.append(
            {
                "record_id": record_id,
                "field": field,
                "message": message,
                "value": value,
                "timestamp": datetime.now().isoformat(),
            }
        )
        self.error_count = len(self.errors)
        self.is_valid = self.error_count == 0

    def add_warning(self, record_id: str, field: str, message: str, value: Any = None):
        """Add validation warning."""
        self.warnings.append(
            {
                "record_id": record_id,
                "field": field,
                "message": message,
                "value": value,
                "timestamp": datetime.now().isoformat(),
            }
        )
        self.warning_count = len(self.warnings)


class QualityThresholds(BaseModel):
    """Data quality thresholds for the cleaner."""

    max_missing_fraction: float = Field(0.05, ge=0.0, le=1.0)
    min_records: int = Field(10, ge=1)


def create_record_from_dict(data: Dict[str, Any]) -> MovieRecord:
    """Create MovieRecord instance from dictionary with error handling."""
    try:
        return MovieRecord(**data)
    except Exception as e:
        name = data.get("name", "unknown")
        raise ValueError(f"Error creating record {name}: {str(e)}") from e

"""
Feature utilities for the revenue models.

This module provides the per-fold preprocessing shared by every model family
(one-hot encoding of categorical predictors followed by centering and scaling),
feature name bookkeeping, and regular hyperparameter grids.
"""

import logging
from typing import Dict, List, Optional

import numpy as np
from sklearn.compose import ColumnTransformer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from .schema import CATEGORICAL_PREDICTORS, NUMERIC_PREDICTORS

logger = logging.getLogger(__name__)


def build_preprocessor(
    categorical: Optional[List[str]] = None,
    numeric: Optional[List[str]] = None,
) -> Pipeline:
    """
    Build an unfitted encode-then-scale transformer.

    Dummy columns are created for the categorical predictors and every
    resulting column (dummies and numeric predictors alike) is centered and
    scaled. All statistics come from whatever data the pipeline is fitted on,
    so fitting on a training fold never sees the validation fold. Categories
    unseen during fitting encode to all-zero dummies.
    """
    categorical = CATEGORICAL_PREDICTORS if categorical is None else categorical
    numeric = NUMERIC_PREDICTORS if numeric is None else numeric

    encoder = ColumnTransformer(
        transformers=[
            ("categorical", OneHotEncoder(handle_unknown="ignore", sparse_output=False), categorical),
            ("numeric", "passthrough", numeric),
        ],
        remainder="drop",
        verbose_feature_names_out=False,
    )

    return Pipeline([("encode", encoder), ("scale", StandardScaler())])


def get_feature_names(preprocessor: Pipeline) -> List[str]:
    """Output column names of a fitted preprocessor."""
    return list(preprocessor.named_steps["encode"].get_feature_names_out())


class FeatureNameMapper:
    """Maps encoded feature names back to the predictor they came from."""

    def __init__(
        self,
        categorical: Optional[List[str]] = None,
        numeric: Optional[List[str]] = None,
    ):
        self.categorical = CATEGORICAL_PREDICTORS if categorical is None else categorical
        self.numeric = NUMERIC_PREDICTORS if numeric is None else numeric

    def get_source(self, feature_name: str) -> str:
        """Predictor a feature was derived from."""
        if feature_name in self.numeric:
            return feature_name

        # Longest prefix wins ("release_month_07" must not match "release")
        for column in sorted(self.categorical, key=len, reverse=True):
            if feature_name.startswith(f"{column}_"):
                return column

        return "other"

    def get_feature_categories(self, feature_names: List[str]) -> Dict[str, List[str]]:
        """Group encoded features by source predictor."""
        categories: Dict[str, List[str]] = {}
        for name in feature_names:
            categories.setdefault(self.get_source(name), []).append(name)
        return categories

    def count_features(self, feature_names: List[str]) -> Dict[str, int]:
        """Number of encoded features per source predictor."""
        return {source: len(names) for source, names in self.get_feature_categories(feature_names).items()}


def regular_grid(minimum: int, maximum: int, levels: int) -> List[int]:
    """
    Evenly spaced integer levels over a closed range.

    regular_grid(1, 8, 6) gives [1, 2, 4, 5, 7, 8]; duplicates created by
    rounding are removed.
    """
    if minimum > maximum:
        raise ValueError(f"Grid minimum {minimum} exceeds maximum {maximum}")
    if levels < 1:
        raise ValueError("Grid needs at least one level")
    if levels == 1:
        return [int(minimum)]

    values = np.round(np.linspace(minimum, maximum, levels)).astype(int)
    return sorted(set(int(v) for v in values))

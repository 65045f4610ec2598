"""
Tests for per-fold preprocessing and grid utilities.
"""

import unittest

import numpy as np
import pandas as pd
import pytest

from boxoffice.feature_utils import FeatureNameMapper, build_preprocessor, get_feature_names, regular_grid
from boxoffice.schema import CATEGORICAL_PREDICTORS, NUMERIC_PREDICTORS


def make_predictors(n: int = 50, seed: int = 3) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    return pd.DataFrame(
        {
            "main_genre": rng.choice(["Drama", "Action", "Comedy"], size=n),
            "country": rng.choice(["US", "GB"], size=n),
            "original_language": rng.choice(["English", "French"], size=n),
            "release_month": rng.choice(["01", "06", "12"], size=n),
            "release_year": rng.choice(["1999", "2005", "2010"], size=n),
            "budget": rng.uniform(1e6, 2e8, size=n),
            "number_of_oscar_winners": rng.integers(0, 4, size=n),
        }
    )


class TestPreprocessor(unittest.TestCase):
    """Test cases for build_preprocessor."""

    def setUp(self):
        """Set up test fixtures."""
        self.frame = make_predictors()
        self.train = self.frame.iloc[:40]
        self.validation = self.frame.iloc[40:]

    def test_scaled_training_fold_is_standardized(self):
        """Test mean ~0 and std ~1 on the fold the scaler was fitted on."""
        preprocessor = build_preprocessor()
        transformed = preprocessor.fit_transform(self.train)

        np.testing.assert_allclose(transformed.mean(axis=0), 0.0, atol=1e-9)
        stds = transformed.std(axis=0)
        non_constant = stds > 0
        np.testing.assert_allclose(stds[non_constant], 1.0, atol=1e-9)

    def test_statistics_come_from_training_fold_only(self):
        """Test that the validation fold is transformed with training statistics."""
        preprocessor = build_preprocessor()
        preprocessor.fit(self.train)
        scaler = preprocessor.named_steps["scale"]

        budget_position = get_feature_names(preprocessor).index("budget")
        np.testing.assert_allclose(scaler.mean_[budget_position], self.train["budget"].mean(), rtol=1e-9)
        self.assertNotEqual(round(scaler.mean_[budget_position]), round(self.frame["budget"].mean()))

    def test_dummy_columns(self):
        """Test that each category becomes one dummy column."""
        preprocessor = build_preprocessor().fit(self.frame)
        names = get_feature_names(preprocessor)

        self.assertIn("main_genre_Drama", names)
        self.assertIn("release_month_06", names)
        self.assertEqual(names[-2:], NUMERIC_PREDICTORS)
        self.assertEqual(len(names), 3 + 2 + 2 + 3 + 3 + 2)

    def test_unseen_category_in_validation(self):
        """Test that unseen categories encode without failing."""
        preprocessor = build_preprocessor().fit(self.train)
        validation = self.validation.copy()
        validation["main_genre"] = "Western"

        transformed = preprocessor.transform(validation)

        self.assertEqual(transformed.shape, (len(validation), len(get_feature_names(preprocessor))))
        self.assertFalse(np.isnan(transformed).any())


class TestFeatureNameMapper:
    """Test cases for FeatureNameMapper."""

    def test_sources(self):
        mapper = FeatureNameMapper()
        assert mapper.get_source("release_month_07") == "release_month"
        assert mapper.get_source("release_year_1999") == "release_year"
        assert mapper.get_source("budget") == "budget"
        assert mapper.get_source("mystery") == "other"

    def test_count_features(self):
        names = ["main_genre_Drama", "main_genre_Action", "country_US", "budget"]
        counts = FeatureNameMapper().count_features(names)
        assert counts == {"main_genre": 2, "country": 1, "budget": 1}

    def test_defaults_cover_all_predictors(self):
        mapper = FeatureNameMapper()
        assert mapper.categorical == CATEGORICAL_PREDICTORS


class TestRegularGrid:
    """Test cases for regular_grid."""

    @pytest.mark.parametrize(
        "bounds,expected",
        [
            ((1, 10, 10), list(range(1, 11))),
            ((1, 8, 6), [1, 2, 4, 5, 7, 8]),
            ((200, 600, 6), [200, 280, 360, 440, 520, 600]),
            ((10, 20, 6), [10, 12, 14, 16, 18, 20]),
            ((5, 5, 3), [5]),
            ((3, 9, 1), [3]),
        ],
    )
    def test_levels(self, bounds, expected):
        assert regular_grid(*bounds) == expected

    def test_full_forest_grid_size(self):
        sizes = [len(regular_grid(*b)) for b in ((1, 8, 6), (200, 600, 6), (10, 20, 6))]
        assert np.prod(sizes) == 216

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            regular_grid(10, 1, 3)
        with pytest.raises(ValueError):
            regular_grid(1, 10, 0)

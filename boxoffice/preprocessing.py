"""
Feature engineering pipeline for movie revenue datasets.

This module derives the engineered columns from the raw movie records
(Oscar-winner count from the crew list, main genre, release month and year),
drops incomplete records, and exports the cleaned table.
"""

import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple

import pandas as pd

from .schema import CLEANED_COLUMNS, QualityThresholds

logger = logging.getLogger(__name__)


DATE_FORMAT = "%m/%d/%Y"


class DataQualityError(ValueError):
    """Raised when the dataset is unfit for drop-based cleaning."""

    pass


def split_list_field(value: Any) -> Optional[list]:
    """Split a comma-separated field into trimmed, non-empty entries."""
    if pd.isna(value):
        return None
    return [entry.strip() for entry in str(value).split(",") if entry.strip()]


def count_oscar_winners(crew: Any, winners: FrozenSet[str]) -> Optional[int]:
    """
    Count distinct crew members that appear in the Oscar winner set.

    Matching is exact and case-sensitive after trimming whitespace. A missing
    crew field yields None so the record is dropped by the cleaner.
    """
    entries = split_list_field(crew)
    if entries is None:
        return None
    return len(set(entries) & winners)


def extract_main_genre(genre: Any) -> Optional[str]:
    """Return the first listed genre; genres are ordered by importance."""
    entries = split_list_field(genre)
    if not entries:
        return None
    return entries[0]


def parse_release_date(date: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Parse a month/day/year date string into (month, year).

    Returns ("07", "1999") for "07/15/1999" and (None, None) for anything
    that does not conform.
    """
    if pd.isna(date):
        return None, None

    parsed = pd.to_datetime(str(date).strip(), format=DATE_FORMAT, errors="coerce")
    if pd.isna(parsed):
        return None, None
    return parsed.strftime("%m"), parsed.strftime("%Y")


class FeatureEngineer:
    """Builds and cleans the modelling table from raw movie records."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize feature engineer with configuration."""
        self.config = config or {}
        self.thresholds = QualityThresholds(**self.config.get("quality_thresholds", {}))

        self.last_drop_summary: Dict[str, Any] = {}

    def build_features(self, movies: pd.DataFrame, winners: FrozenSet[str]) -> pd.DataFrame:
        """
        Derive engineered columns from raw movie records.

        Args:
            movies: Frame with logical columns as returned by DatasetLoader
            winners: Set of Oscar winner names

        Returns:
            Frame with exactly the cleaned output columns; crew, genre and
            date columns are discarded
        """
        logger.info(f"Building features for {len(movies)} movies")

        features = pd.DataFrame(index=movies.index)
        features["name"] = movies["name"]
        features["original_language"] = movies["language"].map(_strip_text)
        features["country"] = movies["country"].map(_strip_text)
        features["main_genre"] = movies["genre"].map(extract_main_genre)

        dates = movies["date"].map(parse_release_date)
        features["release_month"] = dates.map(lambda parts: parts[0])
        features["release_year"] = dates.map(lambda parts: parts[1])

        features["budget"] = pd.to_numeric(movies["budget"], errors="coerce")
        features["revenue"] = pd.to_numeric(movies["revenue"], errors="coerce")
        features["number_of_oscar_winners"] = movies["crew"].map(
            lambda crew: count_oscar_winners(crew, winners)
        ).astype("Int64")

        malformed_dates = int(features["release_year"].isna().sum() - movies["date"].isna().sum())
        if malformed_dates > 0:
            logger.warning(f"{malformed_dates} release dates did not match {DATE_FORMAT}")

        return features[CLEANED_COLUMNS]

    def drop_incomplete(self, features: pd.DataFrame) -> pd.DataFrame:
        """
        Remove every record with a missing value in any retained column.

        No imputation is performed. Dropping is only acceptable while the
        missing fraction stays under quality_thresholds.max_missing_fraction.

        Raises:
            DataQualityError: If too many records are incomplete or too few remain
        """
        total = len(features)
        missing_by_column = features.isna().sum()
        complete = features.dropna()
        dropped = total - len(complete)
        dropped_fraction = dropped / total if total > 0 else 0.0

        self.last_drop_summary = {
            "total_records": total,
            "dropped_records": dropped,
            "dropped_fraction": dropped_fraction,
            "missing_by_column": {k: int(v) for k, v in missing_by_column.items() if v > 0},
        }

        logger.info(f"Dropped {dropped} of {total} records with missing values ({dropped_fraction:.2%})")

        if dropped_fraction > self.thresholds.max_missing_fraction:
            raise DataQualityError(
                f"Missing fraction {dropped_fraction:.2%} exceeds threshold "
                f"{self.thresholds.max_missing_fraction:.2%}; refusing to drop rows"
            )

        if len(complete) < self.thresholds.min_records:
            raise DataQualityError(
                f"Too few complete records: {len(complete)} < {self.thresholds.min_records}"
            )

        complete = complete.astype({"number_of_oscar_winners": "int64"})
        return complete.reset_index(drop=True)

    def export_cleaned(self, cleaned: pd.DataFrame, output_path: str) -> Path:
        """Write the cleaned table as CSV."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cleaned[CLEANED_COLUMNS].to_csv(output_path, index=False)
        logger.info(f"Exported cleaned data: {output_path}")

        return output_path

    @staticmethod
    def load_cleaned(path: str) -> pd.DataFrame:
        """Read a cleaned CSV back, keeping month and year as zero-padded text."""
        cleaned = pd.read_csv(
            path,
            dtype={
                "name": str,
                "original_language": str,
                "country": str,
                "main_genre": str,
                "release_month": str,
                "release_year": str,
            },
        )
        missing = [column for column in CLEANED_COLUMNS if column not in cleaned.columns]
        if missing:
            raise DataQualityError(f"Cleaned file {path} is missing columns: {missing}")
        return cleaned[CLEANED_COLUMNS]


def _strip_text(value: Any) -> Optional[str]:
    if pd.isna(value):
        return None
    text = str(value).strip()
    return text or None

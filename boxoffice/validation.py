"""
Data validation for the cleaned movie table.

This module provides the quality checks around the cleaner:
- Completeness report of the engineered table before rows are dropped
- Schema validation of every cleaned record against MovieRecord
- Configurable thresholds on the fraction of incomplete records
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from .schema import (
    CLEANED_COLUMNS,
    MovieRecord,
    QualityThresholds,
    ValidationResult,
    create_record_from_dict,
)

logger = logging.getLogger(__name__)


class DataValidator:
    """Completeness and schema checks for engineered movie tables."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize validator with configuration."""
        self.config = config or {}
        self.thresholds = QualityThresholds(**self.config.get("quality_thresholds", {}))

    def check_completeness(self, features: pd.DataFrame) -> ValidationResult:
        """
        Measure missing values per retained column before cleaning.

        A warning is recorded for each column with missing values; an error is
        recorded when the fraction of incomplete rows exceeds the threshold.
        """
        result = ValidationResult(is_valid=True)
        total = len(features)

        incomplete_rows = int(features[CLEANED_COLUMNS].isna().any(axis=1).sum())
        incomplete_fraction = incomplete_rows / total if total > 0 else 0.0

        field_completeness = {}
        for column in CLEANED_COLUMNS:
            missing = int(features[column].isna().sum())
            field_completeness[column] = 1.0 - missing / total if total > 0 else 0.0
            if missing:
                result.add_warning("dataset", column, f"{missing} missing values", missing)

        if incomplete_fraction > self.thresholds.max_missing_fraction:
            result.add_error(
                "dataset",
                "completeness",
                f"Incomplete rows {incomplete_fraction:.2%} exceed threshold "
                f"{self.thresholds.max_missing_fraction:.2%}",
            )

        result.summary = {
            "total_records": total,
            "incomplete_records": incomplete_rows,
            "incomplete_fraction": incomplete_fraction,
            "field_completeness": field_completeness,
        }

        logger.info(f"Completeness check: {incomplete_rows}/{total} incomplete rows ({incomplete_fraction:.2%})")
        return result

    def validate_records(self, cleaned: pd.DataFrame) -> Tuple[ValidationResult, List[MovieRecord]]:
        """
        Validate each cleaned row against the MovieRecord schema.

        Returns:
            Tuple of (validation_result, list_of_valid_records)
        """
        logger.info(f"Starting validation of {len(cleaned)} cleaned records")

        result = ValidationResult(is_valid=True)
        records = []
        result.summary = {
            "total_records": len(cleaned),
            "valid_records": 0,
            "invalid_records": 0,
            "validation_start": datetime.now().isoformat(),
        }

        for i, row in enumerate(cleaned[CLEANED_COLUMNS].to_dict(orient="records")):
            record_id = str(row.get("name", f"record_{i}"))
            try:
                records.append(create_record_from_dict(row))
                result.summary["valid_records"] += 1
            except ValueError as e:
                result.add_error(record_id, "schema", str(e))
                result.summary["invalid_records"] += 1
                logger.warning(f"Record {record_id} failed validation: {e}")

        result.summary["validation_end"] = datetime.now().isoformat()
        logger.info(
            f"Validation complete: {result.summary['valid_records']} valid, "
            f"{result.summary['invalid_records']} invalid"
        )
        return result, records

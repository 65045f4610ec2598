"""
Data loading module for the movie and Oscars datasets.

This module reads the two delimited input files the pipeline starts from:
- Movie records with release date, genre list, crew list, budget and revenue
- Historical Academy Award records, reduced to a set of winner names

It also fingerprints input files so downstream stages can tell when cached
results were computed from different data.
"""

import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)


DEFAULT_MOVIE_COLUMNS = {
    "name": "names",
    "date": "date_x",
    "genre": "genre",
    "crew": "crew",
    "language": "orig_lang",
    "country": "country",
    "budget": "budget_x",
    "revenue": "revenue",
}


class DataAcquisitionError(Exception):
    """Custom exception for data loading failures."""

    pass


class DatasetLoader:
    """Loads the movie and Oscars tables described by the pipeline config."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize loader with configuration."""
        self.config = config or {}
        sources = self.config.get("data_sources", {})

        self.movies_config = sources.get("movies", {})
        self.oscars_config = sources.get("oscars", {})

        self.movies_path = Path(self.movies_config.get("path", "data/raw/imdb_movies.csv"))
        self.oscars_path = Path(self.oscars_config.get("path", "data/raw/the_oscar_award.csv"))
        self.columns = {**DEFAULT_MOVIE_COLUMNS, **self.movies_config.get("columns", {})}
        self.delimiter = self.movies_config.get("delimiter", ",")

    def load_movies(self, path: Optional[Path] = None) -> pd.DataFrame:
        """
        Load raw movie records.

        Columns are renamed to their logical names ('name', 'date', 'genre',
        'crew', 'language', 'country', 'budget', 'revenue'); any other column
        of the file is dropped.

        Raises:
            DataAcquisitionError: If the file is missing, unreadable, or lacks
                a required column
        """
        path = Path(path or self.movies_path)
        frame = self._read_table(path, self.delimiter)

        missing = [source for source in self.columns.values() if source not in frame.columns]
        if missing:
            raise DataAcquisitionError(f"Movie file {path} is missing columns: {missing}")

        renamed = frame.rename(columns={source: logical for logical, source in self.columns.items()})
        movies = renamed[list(self.columns.keys())].copy()

        logger.info(f"Loaded {len(movies)} movie records from {path}")
        return movies

    def load_oscar_winners(self, path: Optional[Path] = None) -> FrozenSet[str]:
        """
        Load the set of distinct Oscar recipient names.

        When the file has a 'winner' column and winners_only is enabled, only
        rows flagged as winners are kept. Names are stripped of surrounding
        whitespace; matching downstream is case-sensitive.
        """
        path = Path(path or self.oscars_path)
        delimiter = self.oscars_config.get("delimiter", ",")
        name_column = self.oscars_config.get("name_column", "name")
        winner_column = self.oscars_config.get("winner_column", "winner")

        frame = self._read_table(path, delimiter)

        if name_column not in frame.columns:
            raise DataAcquisitionError(f"Oscars file {path} has no '{name_column}' column")

        if self.oscars_config.get("winners_only", True) and winner_column in frame.columns:
            flags = frame[winner_column].map(_parse_flag)
            frame = frame[flags.eq(True)]
            logger.info(f"Kept {len(frame)} winning rows from {path}")

        names = frame[name_column].dropna().astype(str).str.strip()
        winners = frozenset(name for name in names if name)

        logger.info(f"Loaded {len(winners)} distinct Oscar winner names")
        return winners

    def get_dataset_info(self) -> Dict[str, Any]:
        """Get information about the configured input files."""
        info = {}
        for label, path in (("movies", self.movies_path), ("oscars", self.oscars_path)):
            info[label] = {
                "path": str(path),
                "exists": path.exists(),
                "size_bytes": path.stat().st_size if path.exists() else None,
                "sha256": file_fingerprint(path) if path.exists() else None,
            }
        return info

    def _read_table(self, path: Path, delimiter: str) -> pd.DataFrame:
        """Read a delimited file, translating failures to DataAcquisitionError."""
        if not path.exists():
            raise DataAcquisitionError(f"Input file not found: {path}")

        try:
            return pd.read_csv(path, sep=delimiter)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise DataAcquisitionError(f"Could not read {path}: {e}") from e


def _parse_flag(value: Any) -> Optional[bool]:
    """Interpret a winner flag stored as bool, number or text."""
    if isinstance(value, bool):
        return value
    if pd.isna(value):
        return None
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in ("true", "yes", "1", "t", "y"):
        return True
    if text in ("false", "no", "0", "f", "n"):
        return False
    return None


def file_fingerprint(path: Path, chunk_size: int = 4096) -> str:
    """SHA-256 digest of a file's contents."""
    file_hash = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            file_hash.update(chunk)
    return file_hash.hexdigest()


def frame_fingerprint(frame: pd.DataFrame, columns: Optional[List[str]] = None) -> str:
    """SHA-256 digest of a DataFrame's rows, stable across processes and storage dtypes."""
    subset = (frame[columns] if columns else frame).astype(str)
    row_hashes = pd.util.hash_pandas_object(subset, index=True).values
    return hashlib.sha256(row_hashes.tobytes()).hexdigest()

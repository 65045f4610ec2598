"""
Revenue-stratified train/test partitioning and cross-validation folds.

Stratification bins revenue into quantiles and splits each bin independently,
so the marginal revenue distribution is preserved across partitions.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, StratifiedKFold, train_test_split

from .schema import TARGET_COLUMN, SplitInfo

logger = logging.getLogger(__name__)

Fold = Tuple[np.ndarray, np.ndarray]


def revenue_strata(revenue: pd.Series, n_bins: int = 4, min_count: int = 2) -> Optional[np.ndarray]:
    """
    Bin revenue into quantile strata.

    The number of bins is reduced until every bin holds at least min_count
    rows. Returns None when even two bins cannot satisfy that.
    """
    values = pd.Series(revenue).reset_index(drop=True)

    for bins in range(n_bins, 1, -1):
        labels = pd.qcut(values, q=bins, labels=False, duplicates="drop")
        counts = labels.value_counts()
        if len(counts) > 1 and counts.min() >= min_count:
            if bins != n_bins:
                logger.info(f"Reduced revenue strata from {n_bins} to {bins} bins")
            return labels.to_numpy()

    logger.warning("Too few records to stratify on revenue, falling back to a random split")
    return None


@dataclass(frozen=True)
class TrainTestSplit:
    """Immutable train/test partition of the cleaned records."""

    train: pd.DataFrame
    test: pd.DataFrame
    info: SplitInfo

    @property
    def train_indices(self) -> np.ndarray:
        return self.train.index.to_numpy()

    @property
    def test_indices(self) -> np.ndarray:
        return self.test.index.to_numpy()


def create_train_test_split(
    records: pd.DataFrame,
    test_size: float = 0.2,
    n_strata: int = 4,
    random_state: int = 42,
) -> TrainTestSplit:
    """
    Create a revenue-stratified train/test split.

    Args:
        records: Cleaned records
        test_size: Proportion for test set
        n_strata: Number of revenue quantile bins
        random_state: Random seed

    Returns:
        TrainTestSplit; frames keep the index labels of the input
    """
    logger.info(f"Creating train/test split: test_size={test_size}")

    records = records.reset_index(drop=True)
    strata = revenue_strata(records[TARGET_COLUMN], n_bins=n_strata, min_count=2)

    train_idx, test_idx = train_test_split(
        np.arange(len(records)),
        test_size=test_size,
        stratify=strata,
        random_state=random_state,
    )

    train = records.loc[np.sort(train_idx)]
    test = records.loc[np.sort(test_idx)]

    info = SplitInfo(
        train_size=len(train),
        test_size=len(test),
        test_fraction=test_size,
        n_strata=len(np.unique(strata)) if strata is not None else 1,
        random_state=random_state,
    )

    logger.info(f"Split complete: {len(train)} train, {len(test)} test")
    return TrainTestSplit(train=train, test=test, info=info)


def create_folds(
    train: pd.DataFrame,
    n_folds: int = 10,
    n_strata: int = 4,
    random_state: int = 42,
) -> List[Fold]:
    """
    Create revenue-stratified k-fold (train, validation) position pairs.

    Positions index into train by row order (use .iloc). The same folds are
    reused for every model family.
    """
    if n_folds > len(train):
        raise ValueError(f"Cannot create {n_folds} folds from {len(train)} records")

    positions = np.arange(len(train))
    strata = revenue_strata(train[TARGET_COLUMN], n_bins=n_strata, min_count=n_folds)

    if strata is not None:
        splitter = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=random_state)
        folds = list(splitter.split(positions, strata))
    else:
        splitter = KFold(n_splits=n_folds, shuffle=True, random_state=random_state)
        folds = list(splitter.split(positions))

    logger.info(f"Created {len(folds)} folds over {len(train)} training records")
    return folds

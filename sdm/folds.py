"""
Stratified fold assignment and train/test splitting.
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import StratifiedKFold

from .config import DEFAULT_N_FOLDS, DEFAULT_TEST_FOLD, LABEL

logger = logging.getLogger(__name__)


def assign_folds(
    table: pd.DataFrame,
    k: int = DEFAULT_N_FOLDS,
    seed: Optional[int] = None,
    label_column: str = LABEL,
) -> np.ndarray:
    """
    Assign every row a fold id in [1, k], stratified by label.

    Each label class is spread over the folds so that its per-fold counts
    differ by at most one.

    Args:
        table: Labelled table
        k: Number of folds
        seed: Random seed for the shuffle
        label_column: Column to stratify on

    Returns:
        Integer array of fold ids, aligned with the table's rows
    """
    if k < 2:
        raise ValueError(f"Need at least 2 folds, got {k}")

    labels = table[label_column].to_numpy()
    classes, counts = np.unique(labels, return_counts=True)
    if len(classes) < 2:
        raise ValueError(f"Need both classes in '{label_column}' to stratify, found {classes.tolist()}")
    if counts.min() < k:
        raise ValueError(
            f"Cannot split into {k} folds: smallest class has only {counts.min()} rows"
        )

    skf = StratifiedKFold(n_splits=k, shuffle=True, random_state=seed)
    folds = np.zeros(len(table), dtype=int)
    for fold, (_, test_idx) in enumerate(skf.split(np.zeros(len(labels)), labels), start=1):
        folds[test_idx] = fold

    logger.debug(f"Fold sizes: {np.bincount(folds, minlength=k + 1)[1:].tolist()}")

    return folds


def split_by_fold(
    table: pd.DataFrame,
    folds: np.ndarray,
    test_fold: int = DEFAULT_TEST_FOLD,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split a table into training rows (all other folds) and testing rows.

    Returns:
        Tuple of (train, test) as new DataFrames
    """
    folds = np.asarray(folds)
    if len(folds) != len(table):
        raise ValueError(f"{len(folds)} fold ids for {len(table)} rows")
    if test_fold not in folds:
        raise ValueError(f"Fold {test_fold} is empty")

    is_test = folds == test_fold
    train = table[~is_test].reset_index(drop=True)
    test = table[is_test].reset_index(drop=True)

    logger.info(f"Split: {len(train)} training rows, {len(test)} testing rows (fold {test_fold})")

    return train, test

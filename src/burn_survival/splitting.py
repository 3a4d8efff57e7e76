from __future__ import annotations
from dataclasses import dataclass
from typing import List, Tuple
import math
import numpy as np
from sklearn.model_selection import StratifiedKFold, train_test_split

from burn_survival.exceptions import DegenerateSplit


@dataclass(frozen=True)
class SplitAssignment:
    """Partition of row indices into training and holdout sets.

    Attributes:
        train: Sorted training row indices
        holdout: Sorted holdout row indices
        fraction: Requested training fraction
        seed: Seed the partition was drawn with
    """
    train: np.ndarray
    holdout: np.ndarray
    fraction: float
    seed: int

    @property
    def n_train(self) -> int:
        return len(self.train)

    @property
    def n_holdout(self) -> int:
        return len(self.holdout)


def train_holdout_split(n: int, fraction: float = 0.9, seed: int = 42) -> SplitAssignment:
    """Split n rows into training and holdout sets.

    A pure function of (n, fraction, seed): the same arguments always give
    the same partition. The training set has floor(fraction * n) rows and the
    holdout set holds the rest.

    Args:
        n: Number of rows
        fraction: Share of rows assigned to training, strictly between 0 and 1
        seed: Random seed for the shuffle

    Returns:
        SplitAssignment with disjoint index arrays covering range(n)

    Raises:
        DegenerateSplit: If fraction is outside (0, 1) or either side would be empty

    Example:
        >>> split = train_holdout_split(154, 0.9, seed=42)
        >>> split.n_train, split.n_holdout
        (138, 16)
    """
    if not 0.0 < fraction < 1.0:
        raise DegenerateSplit(f"Split fraction must be in (0, 1), got {fraction}")

    n_train = math.floor(fraction * n)
    if n_train == 0 or n_train == n:
        raise DegenerateSplit(
            f"Split fraction {fraction} of {n} rows gives {n_train} training "
            f"and {n - n_train} holdout rows"
        )

    train, holdout = train_test_split(
        np.arange(n), train_size=n_train, test_size=n - n_train,
        random_state=seed, shuffle=True
    )
    return SplitAssignment(
        train=np.sort(train), holdout=np.sort(holdout), fraction=fraction, seed=seed
    )


def event_balanced_folds(y_struct, n_splits: int = 5, seed: int = 42) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Create stratified K-fold splits balanced on the event indicator.

    Keeps the proportion of events in each fold close to the overall rate,
    so no fold is left without events on small samples.

    Args:
        y_struct: Structured array with dtype=[('event', bool), ('time', float)]
        n_splits: Number of folds
        seed: Random seed for the fold shuffle

    Returns:
        List of (train_indices, test_indices) tuples for each fold

    Example:
        >>> folds = event_balanced_folds(y, n_splits=5, seed=11)
        >>> for k, (tr, te) in enumerate(folds):
        ...     print(f"Fold {k}: {len(tr)} train, {len(te)} test")
    """
    events = y_struct["event"].astype(int)
    skf = StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=seed)
    return list(skf.split(np.zeros_like(events), events))

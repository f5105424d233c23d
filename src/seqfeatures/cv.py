"""
Cross-validation over one SymbolSequence by subset push/pop.

Each fold pushes the training rows as a subset, fits, swaps in the
validation rows, predicts, and pops again; the strings are never copied.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Sequence

import numpy as np
from sklearn.metrics import accuracy_score, confusion_matrix
from sklearn.model_selection import StratifiedKFold

from .strings import SymbolSequence

logger = logging.getLogger(__name__)


@contextmanager
def subset(features: SymbolSequence, indices: Sequence[int]) -> Iterator[SymbolSequence]:
    """Push a subset for the duration of a with-block and pop it afterwards."""
    features.add_subset(indices)
    try:
        yield features
    finally:
        features.remove_subset()


@dataclass
class CVResult:
    """Cross-validation result summary.
    Attributes:
      mean_accuracy: Average accuracy over all folds.
      fold_accuracies: List of accuracies per fold.
      fit_time_mean: Average fit time per fold (seconds).
      predict_time_mean: Average predict time per fold (seconds).
      confusion_matrix: Aggregated confusion matrix over all folds.
      classes_: Array of class labels corresponding to confusion matrix rows/cols.
      random_state: Random state used for CV splitting.
    """
    mean_accuracy: float
    fold_accuracies: List[float]
    fit_time_mean: float
    predict_time_mean: float
    confusion_matrix: np.ndarray
    classes_: np.ndarray
    random_state: int


def cross_validate(features: SymbolSequence, y: Sequence, fit: Callable[[SymbolSequence, np.ndarray], Any],
                   predict: Callable[[Any, SymbolSequence], Sequence], n_splits: int = 10,
                   random_state: int = 42, timing_repeats: int = 1) -> CVResult:
    """Stratified K-fold cross-validation of a string classifier.

    Args:
      features: Strings, one per label in y. Must not have a subset set.
      y: Class labels (n_strings,).
      fit: fit(features, y_train) -> model, called with the training subset pushed.
      predict: predict(model, features) -> labels, called with the validation subset pushed.
      n_splits: Number of CV folds (default 10).
      random_state: Random state for shuffling the folds.
      timing_repeats: Number of times to repeat fit/predict timing for averaging.

    Returns averaged accuracy and timing; confusion matrix aggregated over all folds.
    """
    y = np.asarray(y)
    if len(y) != features.size():
        raise ValueError(f"{features.size()} strings but {len(y)} labels")

    skf = StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=random_state)
    accs: List[float] = []
    fit_times: List[float] = []
    pred_times: List[float] = []
    y_true_all: List[Any] = []
    y_pred_all: List[Any] = []
    classes = np.unique(y)
    repeats = max(1, timing_repeats)

    for fold, (train_idx, val_idx) in enumerate(skf.split(np.zeros(len(y)), y)):
        fit_elapsed = 0.0
        pred_elapsed = 0.0
        for _ in range(repeats):
            with subset(features, train_idx):
                t0 = time.perf_counter()
                model = fit(features, y[train_idx])
                fit_elapsed += time.perf_counter() - t0

            with subset(features, val_idx):
                t1 = time.perf_counter()
                yhat = np.asarray(predict(model, features))
                pred_elapsed += time.perf_counter() - t1

        fit_times.append(fit_elapsed / repeats)
        pred_times.append(pred_elapsed / repeats)

        acc = accuracy_score(y[val_idx], yhat)
        accs.append(acc)
        y_true_all.extend(y[val_idx].tolist())
        y_pred_all.extend(yhat.tolist())
        logger.debug("fold %d: train=%d val=%d acc=%.4f", fold, len(train_idx), len(val_idx), acc)

    cm = confusion_matrix(y_true_all, y_pred_all, labels=classes)
    return CVResult(
        mean_accuracy=float(np.mean(accs)),
        fold_accuracies=[float(a) for a in accs],
        fit_time_mean=float(np.mean(fit_times)),
        predict_time_mean=float(np.mean(pred_times)),
        confusion_matrix=cm,
        classes_=classes,
        random_state=random_state,
    )

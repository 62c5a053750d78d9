"""
Held-out evaluation and threshold selection.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix, roc_auc_score, roc_curve

from .model import SpeciesDistributionModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Evaluation:
    """Held-out performance of a model and the threshold chosen from it."""

    auc: float
    threshold: float
    sensitivity: float
    specificity: float
    n_presence: int
    n_background: int
    true_positives: int
    false_negatives: int
    true_negatives: int
    false_positives: int

    @property
    def tss(self) -> float:
        """True skill statistic (sensitivity + specificity - 1)."""
        return self.sensitivity + self.specificity - 1

    def to_dict(self) -> dict:
        return {
            "auc": self.auc,
            "threshold": self.threshold,
            "sensitivity": self.sensitivity,
            "specificity": self.specificity,
            "tss": self.tss,
            "n_presence": self.n_presence,
            "n_background": self.n_background,
            "confusion": {
                "tp": self.true_positives,
                "fn": self.false_negatives,
                "tn": self.true_negatives,
                "fp": self.false_positives,
            },
        }


def max_sens_spec_threshold(y_true: np.ndarray, scores: np.ndarray) -> float:
    """
    Probability cutoff maximising sensitivity + specificity.

    Candidates are the observed scores, with "score >= cutoff" counted as
    presence. Ties keep the highest cutoff.
    """
    fpr, tpr, thresholds = roc_curve(y_true, scores, drop_intermediate=False)

    # The first ROC point is a cutoff above every score (nothing predicted present)
    fpr, tpr, thresholds = fpr[1:], tpr[1:], thresholds[1:]

    best = int(np.argmax(tpr - fpr))
    return float(thresholds[best])


def evaluate(
    model: SpeciesDistributionModel,
    presence_test: pd.DataFrame,
    background_test: pd.DataFrame,
) -> Evaluation:
    """
    Score a model on held-out presence and background rows.

    Args:
        model: Fitted model
        presence_test: Held-out rows known to be presences
        background_test: Held-out background rows

    Returns:
        Evaluation with AUC and the sensitivity + specificity threshold
    """
    if len(presence_test) == 0 or len(background_test) == 0:
        raise ValueError(
            f"Need held-out presence and background rows, got {len(presence_test)} and {len(background_test)}"
        )

    p_scores = model.predict_proba(presence_test)
    a_scores = model.predict_proba(background_test)

    scores = np.concatenate([p_scores, a_scores])
    y_true = np.concatenate([np.ones(len(p_scores), dtype=int), np.zeros(len(a_scores), dtype=int)])

    auc = roc_auc_score(y_true, scores)
    threshold = max_sens_spec_threshold(y_true, scores)

    y_pred = (scores >= threshold).astype(int)
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()

    evaluation = Evaluation(
        auc=float(auc),
        threshold=threshold,
        sensitivity=float(tp / (tp + fn)),
        specificity=float(tn / (tn + fp)),
        n_presence=len(p_scores),
        n_background=len(a_scores),
        true_positives=int(tp),
        false_negatives=int(fn),
        true_negatives=int(tn),
        false_positives=int(fp),
    )

    logger.info(
        f"AUC: {evaluation.auc:.3f}, threshold: {evaluation.threshold:.4f} "
        f"(sensitivity {evaluation.sensitivity:.3f}, specificity {evaluation.specificity:.3f})"
    )

    return evaluation

# audio_sentinel/evaluation.py
"""Held-out quality metrics for a calibrated threshold."""

import logging
from typing import Dict

import numpy as np
from sklearn import metrics

logger = logging.getLogger(__name__)


def evaluate_scores(normal_scores: np.ndarray,
                    anomaly_scores: np.ndarray,
                    threshold: float) -> Dict[str, float]:
    """Calculate detection metrics for Normal vs Anomaly scores.

    Args:
        normal_scores: Scores of frames known to be Normal
        anomaly_scores: Scores of frames known to be anomalous
        threshold: Decision threshold in the same units as the scores

    Returns:
        dict: auc, accuracy, precision, recall and f1; empty if either
            class has no scores
    """
    normal_scores = np.asarray(normal_scores, dtype=np.float64).reshape(-1)
    anomaly_scores = np.asarray(anomaly_scores, dtype=np.float64).reshape(-1)
    if normal_scores.size == 0 or anomaly_scores.size == 0:
        return {}

    y_true = np.concatenate([np.zeros(len(normal_scores)), np.ones(len(anomaly_scores))])
    y_score = np.concatenate([normal_scores, anomaly_scores])
    y_pred = y_score > threshold

    results = {
        'auc': float(metrics.roc_auc_score(y_true, y_score)),
        'accuracy': float(metrics.accuracy_score(y_true, y_pred)),
        'precision': float(metrics.precision_score(y_true, y_pred, zero_division=0)),
        'recall': float(metrics.recall_score(y_true, y_pred, zero_division=0)),
        'f1': float(metrics.f1_score(y_true, y_pred, zero_division=0))
    }
    logger.info(
        f"Held-out evaluation: AUC={results['auc']:.3f} "
        f"precision={results['precision']:.3f} recall={results['recall']:.3f}"
    )
    return results

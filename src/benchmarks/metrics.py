"""Metrics computation for benchmark experiments.

This module provides metric helpers for computing fit quality (RMSE,
accuracy), distance to a known optimum and consensus measures.
"""

from __future__ import annotations

from collections.abc import Mapping

import numpy as np

from core.types import NodeId, ParamVector
from environments.consensus import consensus_error, max_pairwise_disagreement

__all__ = [
    "consensus_error",
    "max_pairwise_disagreement",
    "mean_params",
    "distance_to_optimum",
    "rmse",
    "accuracy",
]


def mean_params(params_by_node: Mapping[NodeId, ParamVector]) -> ParamVector:
    """Compute the mean parameter vector across nodes.

    Raises:
        ValueError: If params_by_node is empty.
    """
    if not params_by_node:
        raise ValueError("Cannot compute mean of empty params")

    vectors = [params_by_node[i] for i in sorted(params_by_node.keys())]
    result: ParamVector = np.mean(vectors, axis=0)
    return result


def distance_to_optimum(
    params_by_node: Mapping[NodeId, ParamVector], optimum: ParamVector
) -> float:
    """Largest L2 distance of any node's parameters from ``optimum``."""
    if not params_by_node:
        raise ValueError("Cannot measure distance of empty params")
    return max(float(np.linalg.norm(p - optimum)) for p in params_by_node.values())


def rmse(predictions: np.ndarray, targets: np.ndarray) -> float:
    """Root mean squared error.

    Example:
        >>> rmse(np.array([1.0, 3.0]), np.array([1.0, 1.0]))
        1.4142135623730951
    """
    predictions = np.asarray(predictions, dtype=np.float64)
    targets = np.asarray(targets, dtype=np.float64)
    if predictions.shape != targets.shape:
        raise ValueError(f"Shape mismatch: {predictions.shape} vs {targets.shape}")
    if predictions.size == 0:
        raise ValueError("Cannot compute RMSE of empty arrays")
    return float(np.sqrt(np.mean((predictions - targets) ** 2)))


def accuracy(probabilities: np.ndarray, labels: np.ndarray, threshold: float = 0.5) -> float:
    """Fraction of correct {0, 1} predictions after thresholding probabilities."""
    probabilities = np.asarray(probabilities, dtype=np.float64)
    labels = np.asarray(labels, dtype=np.float64)
    if probabilities.shape != labels.shape:
        raise ValueError(f"Shape mismatch: {probabilities.shape} vs {labels.shape}")
    if probabilities.size == 0:
        raise ValueError("Cannot compute accuracy of empty arrays")
    predictions = (probabilities >= threshold).astype(np.float64)
    return float(np.mean(predictions == labels))

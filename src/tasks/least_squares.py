"""Synthetic convex problems with a known optimum.

This module provides:
- Least-squares regression data y = X w* (+ noise)
- Binary classification data drawn from a logistic model
- Per-node data splitting with heterogeneity options
- The closed-form ridge/least-squares optimum of the pooled objective

Noise-free least-squares data has every node's local optimum at w*, so a
consensus run must land exactly on w*.
"""

from __future__ import annotations

import numpy as np

from core.types import DataPartition, ParamVector

__all__ = [
    "make_least_squares_data",
    "make_logistic_data",
    "split_across_nodes",
    "make_least_squares_partitions",
    "least_squares_optimum",
]


def make_least_squares_data(
    *,
    n: int,
    dim: int,
    rng: np.random.Generator,
    noise: float = 0.0,
    feature_scale: float = 1.0,
) -> tuple[np.ndarray, np.ndarray, ParamVector]:
    """Generate a linear regression dataset.

    Args:
        n: Number of samples.
        dim: Feature dimensionality.
        rng: Random number generator.
        noise: Std of additive Gaussian label noise.
        feature_scale: Std of each feature. The Hessian of the mean squared
            loss is about feature_scale^2 * I.

    Returns:
        Tuple of (X, y, w_star) with X of shape (n, dim), y of shape (n,)
        and the generating weights w_star of shape (dim,).
    """
    X = feature_scale * rng.standard_normal((n, dim))
    w_star = rng.standard_normal(dim)
    y = X @ w_star
    if noise > 0:
        y = y + noise * rng.standard_normal(n)
    return X, y, w_star


def make_logistic_data(
    *,
    n: int,
    dim: int,
    rng: np.random.Generator,
    separable: bool = False,
) -> tuple[np.ndarray, np.ndarray]:
    """Generate synthetic binary classification data.

    Labels come from a unit-norm linear decision boundary, either
    deterministically (``separable``) or via Bernoulli(sigmoid(logit)).

    Returns:
        Tuple of (X, y) with labels in {0, 1}.
    """
    X = rng.standard_normal((n, dim))

    w_true = rng.standard_normal(dim)
    w_true = w_true / np.linalg.norm(w_true)
    logits = X @ w_true

    if separable:
        y = (logits > 0).astype(np.float64)
    else:
        probs = 1.0 / (1.0 + np.exp(-logits))
        y = (rng.random(n) < probs).astype(np.float64)

    return X, y


def split_across_nodes(
    X: np.ndarray,
    y: np.ndarray,
    n_nodes: int,
    heterogeneity: str,
    rng: np.random.Generator,
) -> list[DataPartition]:
    """Split a dataset across nodes.

    Args:
        X: Feature matrix of shape (n, dim).
        y: Labels of shape (n,).
        n_nodes: Number of nodes to split across.
        heterogeneity: Type of split:
            - "iid": random uniform split
            - "sorted": contiguous blocks after sorting by label, so every
              node sees a different label range (maximal heterogeneity)
        rng: Random number generator.

    Returns:
        One DataPartition per node.

    Raises:
        ValueError: If the heterogeneity type is unknown or there are fewer
            rows than nodes.
    """
    n = len(y)
    if n < n_nodes:
        raise ValueError(f"Cannot split {n} rows across {n_nodes} nodes")

    if heterogeneity == "iid":
        indices = rng.permutation(n)
    elif heterogeneity == "sorted":
        indices = np.argsort(y, kind="stable")
    else:
        raise ValueError(f"Unknown heterogeneity type: {heterogeneity}")

    splits = np.array_split(indices, n_nodes)
    return [
        DataPartition(node_id=i, features=X[split], labels=y[split])
        for i, split in enumerate(splits)
    ]


def make_least_squares_partitions(
    *,
    n_nodes: int,
    samples_per_node: int,
    dim: int,
    rng: np.random.Generator,
    noise: float = 0.0,
    feature_scale: float = 1.0,
    heterogeneity: str = "iid",
) -> tuple[list[DataPartition], ParamVector]:
    """Least-squares partitions for ``n_nodes`` workers plus the true w*."""
    X, y, w_star = make_least_squares_data(
        n=n_nodes * samples_per_node,
        dim=dim,
        rng=rng,
        noise=noise,
        feature_scale=feature_scale,
    )
    return split_across_nodes(X, y, n_nodes, heterogeneity, rng), w_star


def least_squares_optimum(
    partitions: list[DataPartition],
    *,
    l2: float = 0.0,
    fit_intercept: bool = False,
) -> ParamVector:
    """Closed-form minimizer of the pooled (size-weighted) squared loss.

    Solves (Z^T Z / n + l2 * P) w = Z^T y / n, where Z is the stacked design
    (with a ones column when fitting an intercept) and P masks the bias out
    of the penalty.
    """
    X = np.vstack([p.features for p in partitions])
    y = np.concatenate([p.labels for p in partitions])
    n = X.shape[0]
    if fit_intercept:
        X = np.hstack([X, np.ones((n, 1))])

    penalty = l2 * np.eye(X.shape[1])
    if fit_intercept:
        penalty[-1, -1] = 0.0
    result: np.ndarray = np.linalg.solve(X.T @ X / n + penalty, X.T @ y / n)
    return result

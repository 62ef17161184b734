"""Mixing weights for consensus averaging.

This module derives the mixing matrix W from a worker graph. W must be
symmetric, non-negative and doubly stochastic; its second-largest
eigenvalue magnitude (SLEM) sets the consensus convergence rate.

Methods:
- metropolis_hastings: w_ij = 1 / (1 + max(deg(i), deg(j))) on edges,
  self-weight fills the row remainder.
- laplacian: W = I - eps * L with 0 < eps <= 1 / lambda_max(L).
"""

from __future__ import annotations

import numpy as np

from core.errors import IllConditionedGraph
from core.types import NodeId
from distributed.graph import Graph, adjacency_matrix, laplacian, spectrum

__all__ = [
    "MIXING_METHODS",
    "metropolis_hastings_rows",
    "row_sums_close_to_one",
    "mixing_matrix",
    "laplacian_step_bound",
    "mixing_rows",
    "is_doubly_stochastic",
    "check_mixing_matrix",
    "second_largest_eigenvalue_magnitude",
    "spectral_gap",
]

MIXING_METHODS = ("metropolis_hastings", "laplacian")

# Relative slack when comparing a requested step size to the stability bound
_BOUND_RTOL = 1e-9


def metropolis_hastings_rows(graph: Graph) -> dict[NodeId, dict[NodeId, float]]:
    """Compute Metropolis-Hastings weights in sparse row form.

    For i != j where j is a neighbour of i:
        w_ij = 1 / (1 + max(deg(i), deg(j)))
    Self-weight:
        w_ii = 1 - sum_{j in neighbors(i)} w_ij

    Degrees are unweighted. For undirected graphs the weights are symmetric
    and therefore doubly stochastic.

    Args:
        graph: Validated worker graph.

    Returns:
        Nested dictionary rows[i][j] = w_ij for j in {i} U neighbors(i).

    Example:
        >>> from distributed.topology import ring
        >>> rows = metropolis_hastings_rows(ring(4))
        >>> rows[0]
        {1: 0.333..., 3: 0.333..., 0: 0.333...}
    """
    n = graph.num_nodes()
    degrees = [graph.degree(i) for i in range(n)]

    rows: dict[NodeId, dict[NodeId, float]] = {}
    for i in range(n):
        row: dict[NodeId, float] = {}
        neighbor_weight_sum = 0.0
        for j in graph.neighbors(i):
            w_ij = 1.0 / (1.0 + max(degrees[i], degrees[j]))
            row[j] = w_ij
            neighbor_weight_sum += w_ij

        # Self-weight ensures row sums to 1
        row[i] = 1.0 - neighbor_weight_sum
        rows[i] = row

    return rows


def row_sums_close_to_one(
    rows: dict[NodeId, dict[NodeId, float]],
    tol: float = 1e-12,
) -> bool:
    """Check if all row sums are close to 1.

    Example:
        >>> rows = {0: {0: 0.5, 1: 0.5}, 1: {0: 0.5, 1: 0.5}}
        >>> row_sums_close_to_one(rows)
        True
    """
    for _i, row in rows.items():
        if abs(sum(row.values()) - 1.0) > tol:
            return False
    return True


def laplacian_step_bound(graph: Graph) -> float:
    """Largest step eps for which I - eps * L is a valid mixing matrix.

    Returns inf for graphs without edges (L = 0).
    """
    lam_max = spectrum(graph).max_eigenvalue
    if lam_max <= 0.0:
        return float("inf")
    return 1.0 / lam_max


def _metropolis_hastings_matrix(graph: Graph) -> np.ndarray:
    n = graph.num_nodes()
    W = np.zeros((n, n), dtype=np.float64)
    for i, row in metropolis_hastings_rows(graph).items():
        for j, w_ij in row.items():
            W[i, j] = w_ij
    return W


def _laplacian_matrix(graph: Graph, step_size: float | None) -> np.ndarray:
    n = graph.num_nodes()
    bound = laplacian_step_bound(graph)
    if np.isinf(bound):
        # single node: nothing to mix
        return np.eye(n)

    eps = bound if step_size is None else float(step_size)
    if not eps > 0.0:
        raise IllConditionedGraph(f"Laplacian step size must be positive, got {eps}")
    if eps > bound * (1.0 + _BOUND_RTOL):
        raise IllConditionedGraph(
            f"Laplacian step size {eps:.6g} exceeds stability bound "
            f"1/lambda_max(L) = {bound:.6g}"
        )
    return np.eye(n) - eps * laplacian(graph)


def mixing_matrix(
    graph: Graph,
    method: str = "metropolis_hastings",
    step_size: float | None = None,
) -> np.ndarray:
    """Build the mixing matrix W for a graph.

    Args:
        graph: Validated (connected) worker graph.
        method: "metropolis_hastings" or "laplacian".
        step_size: Laplacian step size eps. Defaults to the stability bound
            1/lambda_max(L). Ignored by metropolis_hastings.

    Returns:
        Read-only (N, N) float64 array: symmetric, non-negative, doubly
        stochastic.

    Raises:
        IllConditionedGraph: If the Laplacian step size is non-positive or
            exceeds 1/lambda_max(L).
        ValueError: If the method is unknown.
    """
    if method == "metropolis_hastings":
        W = _metropolis_hastings_matrix(graph)
    elif method == "laplacian":
        W = _laplacian_matrix(graph, step_size)
    else:
        raise ValueError(f"Unknown mixing method: {method}. Available: {list(MIXING_METHODS)}")

    # Round-off can leave -1e-17 on the diagonal
    W = np.where(np.abs(W) < 1e-15, 0.0, W)
    W.setflags(write=False)
    return W


def mixing_rows(W: np.ndarray, graph: Graph) -> dict[NodeId, dict[NodeId, float]]:
    """Per-node weight rows restricted to self and graph neighbours.

    Agents only ever see their own row; entries for non-neighbours are
    dropped (they are zero for every supported method).
    """
    rows: dict[NodeId, dict[NodeId, float]] = {}
    for i in range(graph.num_nodes()):
        row = {j: float(W[i, j]) for j in graph.neighbors(i)}
        row[i] = float(W[i, i])
        rows[i] = row
    return rows


def is_doubly_stochastic(W: np.ndarray, tol: float = 1e-10) -> bool:
    """True if W is non-negative and every row and column sums to 1."""
    if W.ndim != 2 or W.shape[0] != W.shape[1]:
        return False
    if np.any(W < -tol):
        return False
    return bool(
        np.allclose(W.sum(axis=1), 1.0, atol=tol) and np.allclose(W.sum(axis=0), 1.0, atol=tol)
    )


def check_mixing_matrix(W: np.ndarray, graph: Graph, tol: float = 1e-10) -> None:
    """Validate a caller-supplied mixing matrix against the worker graph.

    Agents only see self and neighbour weights, so any mass placed on a
    non-edge would silently vanish and bias the consensus point.

    Raises:
        ValueError: If W is not N x N for the graph.
        IllConditionedGraph: If W is not symmetric, not doubly stochastic
            (non-negative with unit row and column sums), or puts weight on a
            pair of nodes that is not an edge.
    """
    n = graph.num_nodes()
    if W.shape != (n, n):
        raise ValueError(f"Mixing matrix must be ({n}, {n}), got {W.shape}")
    if not np.all(np.isfinite(W)):
        raise IllConditionedGraph("Mixing matrix has non-finite entries")
    if not np.allclose(W, W.T, atol=tol):
        raise IllConditionedGraph("Mixing matrix is not symmetric")
    if not is_doubly_stochastic(W, tol):
        raise IllConditionedGraph(
            "Mixing matrix is not doubly stochastic (needs non-negative entries, "
            "unit row and column sums)"
        )
    allowed = (adjacency_matrix(graph) > 0) | np.eye(n, dtype=bool)
    outside = np.argwhere((np.abs(W) > tol) & ~allowed)
    if len(outside):
        i, j = (int(k) for k in outside[0])
        raise IllConditionedGraph(
            f"Mixing matrix puts weight {W[i, j]:.6g} on ({i}, {j}), which is not a graph edge"
        )


def second_largest_eigenvalue_magnitude(W: np.ndarray) -> float:
    """Spectral radius of W - (1/N) 11^T for symmetric W.

    Consensus error contracts by this factor per mixing step; it is < 1 for
    connected graphs.
    """
    n = W.shape[0]
    if n < 2:
        return 0.0
    deviation = W - np.full((n, n), 1.0 / n)
    return float(np.max(np.abs(np.linalg.eigvalsh(deviation))))


def spectral_gap(W: np.ndarray) -> float:
    """1 - SLEM(W)."""
    return 1.0 - second_largest_eigenvalue_magnitude(W)

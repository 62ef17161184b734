"""Worker graph and its spectral analysis.

The graph is an immutable, index-based adjacency structure over node ids
0..N-1. Spectral quantities (Laplacian, eigen-decomposition, Fiedler value)
are pure functions of the graph.

Example:
    >>> g = build(4, [(0, 1), (1, 2), (2, 3), (3, 0)])
    >>> g.neighbors(0)
    (1, 3)
    >>> round(fiedler_value(g), 6)
    2.0
"""

from __future__ import annotations

import math
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from core.errors import InvalidTopology
from core.types import NodeId

__all__ = [
    "Edge",
    "Graph",
    "Spectrum",
    "build",
    "is_connected",
    "adjacency_matrix",
    "degree_matrix",
    "laplacian",
    "spectrum",
    "fiedler_value",
    "fiedler_vector",
]

# Canonical undirected edge: (u, v, weight) with u < v
Edge = tuple[NodeId, NodeId, float]


@dataclass(frozen=True)
class Graph:
    """Connected, undirected, weighted graph over workers.

    Build instances with build(); the constructor assumes validated input.

    Attributes:
        node_count: Number of nodes N (ids are 0..N-1).
        edges: Canonical edges sorted by (u, v), each with u < v.
        adjacency: adjacency[i] is the ascending tuple of i's neighbours.
    """

    node_count: int
    edges: tuple[Edge, ...]
    adjacency: tuple[tuple[NodeId, ...], ...] = field(repr=False)

    def num_nodes(self) -> int:
        """Return the number of nodes."""
        return self.node_count

    def neighbors(self, node: NodeId) -> tuple[NodeId, ...]:
        """Return the neighbours of ``node`` in ascending order."""
        return self.adjacency[node]

    def degree(self, node: NodeId) -> int:
        """Unweighted degree (number of neighbours)."""
        return len(self.adjacency[node])

    def max_degree(self) -> int:
        return max((len(nbrs) for nbrs in self.adjacency), default=0)

    def edge_weight(self, u: NodeId, v: NodeId) -> float:
        """Weight of edge {u, v}; 0.0 when the nodes are not adjacent."""
        a, b = (u, v) if u < v else (v, u)
        for i, j, w in self.edges:
            if i == a and j == b:
                return w
        return 0.0

    @property
    def edge_count(self) -> int:
        return len(self.edges)


@dataclass(frozen=True)
class Spectrum:
    """Eigen-decomposition of a symmetric graph matrix.

    Attributes:
        eigenvalues: Ascending eigenvalues, shape (N,).
        eigenvectors: Column k is the unit eigenvector of eigenvalues[k].
    """

    eigenvalues: np.ndarray
    eigenvectors: np.ndarray

    @property
    def max_eigenvalue(self) -> float:
        return float(self.eigenvalues[-1])


def _normalize_edge(item: Sequence[Any], node_count: int) -> Edge:
    if len(item) == 2:
        u, v = item
        weight = 1.0
    elif len(item) == 3:
        u, v, weight = item
    else:
        raise InvalidTopology(f"Edge must be (u, v) or (u, v, weight), got {tuple(item)!r}")

    u, v, weight = int(u), int(v), float(weight)
    for node in (u, v):
        if not 0 <= node < node_count:
            raise InvalidTopology(f"Edge ({u}, {v}) references node {node} outside 0..{node_count - 1}")
    if u == v:
        raise InvalidTopology(f"Self-loop on node {u} is not allowed")
    if not math.isfinite(weight) or weight <= 0.0:
        raise InvalidTopology(f"Edge ({u}, {v}) has non-positive or non-finite weight {weight}")
    return (u, v, weight) if u < v else (v, u, weight)


def is_connected(node_count: int, adjacency: Sequence[Sequence[NodeId]]) -> bool:
    """Breadth-first connectivity check over an index-based adjacency list."""
    if node_count == 0:
        return False
    seen = [False] * node_count
    seen[0] = True
    queue: deque[NodeId] = deque([0])
    reached = 1
    while queue:
        node = queue.popleft()
        for nbr in adjacency[node]:
            if not seen[nbr]:
                seen[nbr] = True
                reached += 1
                queue.append(nbr)
    return reached == node_count


def build(node_count: int, edge_list: Iterable[Sequence[Any]]) -> Graph:
    """Validate an edge list and build an immutable Graph.

    Args:
        node_count: Number of nodes N (>= 1).
        edge_list: Items (u, v) with implicit weight 1.0, or (u, v, weight).

    Returns:
        The validated graph.

    Raises:
        InvalidTopology: On bad node ids, self-loops, duplicate edges,
            non-positive weights, or a disconnected graph.
    """
    if node_count < 1:
        raise InvalidTopology(f"Graph requires at least one node, got {node_count}")

    canonical: dict[tuple[NodeId, NodeId], float] = {}
    for item in edge_list:
        u, v, weight = _normalize_edge(item, node_count)
        if (u, v) in canonical:
            raise InvalidTopology(f"Duplicate edge ({u}, {v})")
        canonical[(u, v)] = weight

    neighbor_sets: list[set[NodeId]] = [set() for _ in range(node_count)]
    for u, v in canonical:
        neighbor_sets[u].add(v)
        neighbor_sets[v].add(u)
    adjacency = tuple(tuple(sorted(nbrs)) for nbrs in neighbor_sets)

    if not is_connected(node_count, adjacency):
        raise InvalidTopology(
            f"Graph with {node_count} nodes and {len(canonical)} edges is not connected"
        )

    edges = tuple((u, v, w) for (u, v), w in sorted(canonical.items()))
    return Graph(node_count=node_count, edges=edges, adjacency=adjacency)


def adjacency_matrix(graph: Graph) -> np.ndarray:
    """Weighted, symmetric adjacency matrix A."""
    n = graph.node_count
    A = np.zeros((n, n), dtype=np.float64)
    for u, v, w in graph.edges:
        A[u, v] = w
        A[v, u] = w
    return A


def degree_matrix(graph: Graph) -> np.ndarray:
    """Diagonal matrix of weighted degrees."""
    return np.diag(adjacency_matrix(graph).sum(axis=1))


def laplacian(graph: Graph) -> np.ndarray:
    """Graph Laplacian L = D - A."""
    A = adjacency_matrix(graph)
    return np.diag(A.sum(axis=1)) - A


def spectrum(graph: Graph) -> Spectrum:
    """Eigen-decomposition of the Laplacian (ascending eigenvalues)."""
    eigenvalues, eigenvectors = np.linalg.eigh(laplacian(graph))
    # L is positive semi-definite; clamp round-off below zero
    eigenvalues = np.where(np.abs(eigenvalues) < 1e-12, 0.0, eigenvalues)
    return Spectrum(eigenvalues=eigenvalues, eigenvectors=eigenvectors)


def fiedler_value(graph: Graph) -> float:
    """Algebraic connectivity: the second-smallest Laplacian eigenvalue.

    Positive exactly when the graph is connected; 0.0 for a single node.
    """
    if graph.node_count < 2:
        return 0.0
    return float(spectrum(graph).eigenvalues[1])


def fiedler_vector(graph: Graph) -> np.ndarray:
    """Eigenvector of the Fiedler value (sign is arbitrary)."""
    if graph.node_count < 2:
        raise ValueError("Fiedler vector requires at least two nodes")
    return spectrum(graph).eigenvectors[:, 1].copy()

"""Standard worker topologies.

Each factory returns a validated distributed.graph.Graph with unit edge
weights.

Supported topologies:
- ring: node i connected to (i-1) mod n and (i+1) mod n
- complete: all nodes connected to all other nodes
- path: i connected to i+1
- star: node 0 connected to every other node
- grid: rows x cols lattice (4-neighbourhood)
"""

from __future__ import annotations

from collections.abc import Callable

from core.errors import InvalidTopology
from distributed.graph import Graph, build

__all__ = ["ring", "complete", "path", "star", "grid", "from_name", "TOPOLOGIES"]


def _require_nodes(name: str, n: int) -> None:
    if n < 2:
        raise InvalidTopology(f"{name} topology requires n >= 2, got {n}")


def ring(n: int) -> Graph:
    """Ring of n nodes.

    For n=2 the two nodes share a single edge.

    Example:
        >>> ring(4).neighbors(0)
        (1, 3)
    """
    _require_nodes("Ring", n)
    if n == 2:
        return build(2, [(0, 1)])
    return build(n, [(i, (i + 1) % n) for i in range(n)])


def complete(n: int) -> Graph:
    """Complete (fully-connected) graph of n nodes."""
    _require_nodes("Complete", n)
    return build(n, [(i, j) for i in range(n) for j in range(i + 1, n)])


def path(n: int) -> Graph:
    """Line graph 0 - 1 - ... - (n-1)."""
    _require_nodes("Path", n)
    return build(n, [(i, i + 1) for i in range(n - 1)])


def star(n: int) -> Graph:
    """Hub node 0 connected to every leaf."""
    _require_nodes("Star", n)
    return build(n, [(0, i) for i in range(1, n)])


def grid(rows: int, cols: int) -> Graph:
    """rows x cols lattice; node id = r * cols + c."""
    if rows < 1 or cols < 1 or rows * cols < 2:
        raise InvalidTopology(f"Grid topology requires at least 2 nodes, got {rows}x{cols}")
    edges = []
    for r in range(rows):
        for c in range(cols):
            node = r * cols + c
            if c + 1 < cols:
                edges.append((node, node + 1))
            if r + 1 < rows:
                edges.append((node, node + cols))
    return build(rows * cols, edges)


def _square_grid(n: int) -> Graph:
    rows = int(n**0.5)
    while rows > 1 and n % rows:
        rows -= 1
    return grid(rows, n // rows)


TOPOLOGIES: dict[str, Callable[[int], Graph]] = {
    "ring": ring,
    "complete": complete,
    "path": path,
    "star": star,
    "grid": _square_grid,
}


def from_name(name: str, n: int) -> Graph:
    """Build a named topology over n nodes.

    ``grid`` picks the most square rows x cols factorization of n.

    Raises:
        ValueError: If the name is unknown.
    """
    try:
        factory = TOPOLOGIES[name]
    except KeyError:
        raise ValueError(f"Unknown topology: {name}. Available: {sorted(TOPOLOGIES)}") from None
    return factory(n)

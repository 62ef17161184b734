"""Random number generation utilities.

All randomness flows from a single integer seed through numpy's
SeedSequence, so every partition / node gets an independent but
reproducible stream.
"""

from __future__ import annotations

import numpy as np

__all__ = ["child_seeds", "make_rng", "random_initial_states"]


def child_seeds(seed: int, count: int) -> list[np.random.SeedSequence]:
    """Spawn ``count`` independent child seed sequences from ``seed``.

    The i-th child depends only on ``seed`` and ``i``, so the same seed
    always produces the same children.
    """
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")
    return np.random.SeedSequence(seed).spawn(count)


def make_rng(seed: int | np.random.SeedSequence) -> np.random.Generator:
    """Build a PCG64 generator from an int seed or a SeedSequence."""
    return np.random.default_rng(seed)


def random_initial_states(
    seed: int, n_nodes: int, dim: int, scale: float = 1.0
) -> dict[int, np.ndarray]:
    """Draw one Gaussian starting point per node.

    Args:
        seed: Master seed.
        n_nodes: Number of nodes.
        dim: Parameter dimensionality.
        scale: Standard deviation of each coordinate.

    Returns:
        Mapping node id -> initial parameter vector.
    """
    states: dict[int, np.ndarray] = {}
    for node_id, child in enumerate(child_seeds(seed, n_nodes)):
        states[node_id] = scale * make_rng(child).standard_normal(dim)
    return states

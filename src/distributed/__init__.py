"""Distributed consensus components.

This package provides building blocks for decentralized optimization:

- Graph: validated worker graph with spectral analysis
  - build, laplacian, spectrum, fiedler_value
- Topologies: ring, complete, path, star, grid
- Weights: mixing matrices for consensus averaging
  - mixing_matrix (Metropolis-Hastings or Laplacian-based)
  - second_largest_eigenvalue_magnitude, spectral_gap
- Communicator: per-node message queues (multi-channel payloads)
- Strategies: per-agent round execution
  - AdaptThenCombine: local step followed by mixing
  - CombineThenAdapt: mixing followed by local step
  - GradientTracking: exact consensus on heterogeneous data
"""

from __future__ import annotations

from distributed.communicator import ChannelCommunicator, RoundAborted, StateMessage
from distributed.graph import (
    Graph,
    Spectrum,
    adjacency_matrix,
    build,
    degree_matrix,
    fiedler_value,
    fiedler_vector,
    is_connected,
    laplacian,
    spectrum,
)
from distributed.strategies import (
    STRATEGIES,
    AdaptThenCombine,
    CombineThenAdapt,
    GradientTracking,
    RoundContext,
    get_strategy,
)
from distributed.topology import TOPOLOGIES, complete, from_name, grid, path, ring, star
from distributed.weights import (
    MIXING_METHODS,
    check_mixing_matrix,
    is_doubly_stochastic,
    metropolis_hastings_rows,
    mixing_matrix,
    mixing_rows,
    row_sums_close_to_one,
    second_largest_eigenvalue_magnitude,
    spectral_gap,
)

__all__ = [
    # Graph
    "Graph",
    "Spectrum",
    "build",
    "adjacency_matrix",
    "degree_matrix",
    "laplacian",
    "spectrum",
    "fiedler_value",
    "fiedler_vector",
    "is_connected",
    # Topologies
    "TOPOLOGIES",
    "ring",
    "complete",
    "path",
    "star",
    "grid",
    "from_name",
    # Weights
    "MIXING_METHODS",
    "mixing_matrix",
    "metropolis_hastings_rows",
    "mixing_rows",
    "row_sums_close_to_one",
    "is_doubly_stochastic",
    "check_mixing_matrix",
    "second_largest_eigenvalue_magnitude",
    "spectral_gap",
    # Communicator
    "ChannelCommunicator",
    "StateMessage",
    "RoundAborted",
    # Strategies
    "RoundContext",
    "STRATEGIES",
    "AdaptThenCombine",
    "CombineThenAdapt",
    "GradientTracking",
    "get_strategy",
]

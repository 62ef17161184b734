"""Environments that orchestrate consensus rounds.

- BaseEnvironment: shared run loop
- ConsensusEnvironment: one synchronous round across all agents
- ConsensusOptimizer: rounds until agreement, budget, failure or cancel
"""

from __future__ import annotations

from environments.base import BaseEnvironment
from environments.consensus import (
    ConsensusConfig,
    ConsensusEnvironment,
    ConsensusOptimizer,
    consensus_error,
    max_pairwise_disagreement,
)

__all__ = [
    "BaseEnvironment",
    "ConsensusConfig",
    "ConsensusEnvironment",
    "ConsensusOptimizer",
    "consensus_error",
    "max_pairwise_disagreement",
]

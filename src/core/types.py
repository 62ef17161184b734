"""Core type definitions for consensus fitting.

This module contains:
- Type aliases for parameter vectors and node identifiers
- DataPartition: the (features, labels) block owned by one worker
- ConvergenceRecord / ConvergenceHistory: per-round diagnostics
- RunStatus / RunResult: terminal outcome of a consensus run
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

__all__ = [
    "ParamVector",
    "NodeId",
    "Payload",
    "MultiPayload",
    "DataPartition",
    "ConvergenceRecord",
    "ConvergenceHistory",
    "RunStatus",
    "RunResult",
]

# Type alias for parameter vectors (model weights flattened)
ParamVector = np.ndarray

# Type alias for node identifiers (indices 0..N-1 of the worker graph)
NodeId = int

# Payload type aliases for messaging between agents
Payload = ParamVector
MultiPayload = Mapping[str, ParamVector]  # e.g. {"x": params, "y": tracker}


def _frozen_array(values: Any, *, ndim: int, name: str) -> np.ndarray:
    array = np.array(values, dtype=np.float64, copy=True)
    if array.ndim != ndim:
        raise ValueError(f"{name} must be {ndim}-dimensional, got ndim={array.ndim}")
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class DataPartition:
    """Training data owned exclusively by one worker.

    Arrays are copied on construction and marked read-only, so a partition
    cannot be modified after it has been generated.

    Attributes:
        node_id: Worker that owns this partition.
        features: Feature matrix of shape (n_samples, n_features).
        labels: Label vector of shape (n_samples,).
        feature_names: Optional column names for ``features``.
    """

    node_id: NodeId
    features: np.ndarray
    labels: np.ndarray
    feature_names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        features = _frozen_array(self.features, ndim=2, name="features")
        labels = _frozen_array(self.labels, ndim=1, name="labels")
        if features.shape[0] != labels.shape[0]:
            raise ValueError(
                f"Row mismatch: {features.shape[0]} feature rows, {labels.shape[0]} labels"
            )
        names = tuple(self.feature_names)
        if names and len(names) != features.shape[1]:
            raise ValueError(
                f"Expected {features.shape[1]} feature names, got {len(names)}"
            )
        object.__setattr__(self, "features", features)
        object.__setattr__(self, "labels", labels)
        object.__setattr__(self, "feature_names", names)

    def __len__(self) -> int:
        return int(self.labels.shape[0])

    @property
    def n_features(self) -> int:
        """Number of feature columns."""
        return int(self.features.shape[1])


@dataclass(frozen=True, slots=True)
class ConvergenceRecord:
    """Diagnostics for one completed round.

    Attributes:
        round_index: 1-based index of the completed round.
        objective: Global objective evaluated at the agents' mean state.
        disagreement: Maximum pairwise Euclidean distance between agent states.
        learning_rate: Learning rate the round was completed with.
        attempts: Number of tries the round needed (1 = no retry).
    """

    round_index: int
    objective: float
    disagreement: float
    learning_rate: float
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "round": self.round_index,
            "objective": self.objective,
            "disagreement": self.disagreement,
            "learning_rate": self.learning_rate,
            "attempts": self.attempts,
        }


@dataclass
class ConvergenceHistory:
    """Append-only sequence of ConvergenceRecords.

    Example:
        >>> history = ConvergenceHistory()
        >>> history.append(ConvergenceRecord(1, 0.5, 0.1, 0.01))
        >>> history.last().disagreement
        0.1
    """

    records: list[ConvergenceRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ConvergenceRecord]:
        return iter(self.records)

    def __getitem__(self, index: int) -> ConvergenceRecord:
        return self.records[index]

    def append(self, record: ConvergenceRecord) -> None:
        """Append a record; round indices must strictly increase."""
        if self.records and record.round_index <= self.records[-1].round_index:
            raise ValueError(
                f"Round index {record.round_index} does not follow "
                f"{self.records[-1].round_index}"
            )
        self.records.append(record)

    def last(self) -> ConvergenceRecord:
        """Return the most recent record.

        Raises:
            IndexError: If history is empty.
        """
        return self.records[-1]

    def objectives(self) -> list[float]:
        return [r.objective for r in self.records]

    def disagreements(self) -> list[float]:
        return [r.disagreement for r in self.records]

    def total_retries(self) -> int:
        """Number of extra attempts spent across all rounds."""
        return sum(r.attempts - 1 for r in self.records)

    def to_dicts(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.records]


class RunStatus(str, Enum):
    """Terminal status of a consensus run."""

    CONVERGED = "converged"
    ROUND_BUDGET_EXHAUSTED = "round_budget_exhausted"
    DIVERGED = "diverged"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class RunResult:
    """Outcome of ConsensusOptimizer.run.

    Attributes:
        state: Global model state (mean of the agents' final states).
        status: Terminal status.
        history: Per-round convergence records.
        agent_states: Final state of every agent (copies).
        rounds: Number of completed rounds.
        diagnostic: Error explaining a non-converged status, if any.
    """

    state: ParamVector
    status: RunStatus
    history: ConvergenceHistory
    agent_states: Mapping[NodeId, ParamVector]
    rounds: int
    diagnostic: Exception | None = None

    @property
    def converged(self) -> bool:
        return self.status is RunStatus.CONVERGED

    def raise_for_status(self) -> None:
        """Raise the diagnostic error if the run did not converge."""
        if self.status is RunStatus.CONVERGED:
            return
        if self.diagnostic is not None:
            raise self.diagnostic
        raise RuntimeError(f"Run finished with status {self.status.value}")

    def final_disagreement(self) -> float:
        """Disagreement of the last completed round (inf if none completed)."""
        if not self.history.records:
            return float("inf")
        return self.history.last().disagreement

    def states_sequence(self) -> Sequence[ParamVector]:
        return [self.agent_states[i] for i in sorted(self.agent_states)]

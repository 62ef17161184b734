"""Worker agent: one per graph node.

An agent owns its data partition and exactly one mutable parameter vector.
Everything it hands out (returned states, published payloads, snapshots) is
a copy, and everything it receives is copied before use, so no two agents
ever share an array.

Each round walks a fixed phase cycle. Adapt-then-combine:

    IDLE -> COMPUTING_GRADIENT -> AWAITING_NEIGHBOR_STATES -> MIXING -> IDLE

Combine-then-adapt runs the same phases in the order
IDLE -> AWAITING_NEIGHBOR_STATES -> MIXING -> COMPUTING_GRADIENT -> IDLE.
Any other transition raises RuntimeError.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

import numpy as np

from core.errors import DivergedState
from core.protocols import ConvexModel
from core.types import DataPartition, NodeId, ParamVector

__all__ = ["AgentPhase", "AgentSnapshot", "WorkerAgent"]


class AgentPhase(str, Enum):
    IDLE = "idle"
    COMPUTING_GRADIENT = "computing_gradient"
    AWAITING_NEIGHBOR_STATES = "awaiting_neighbor_states"
    MIXING = "mixing"


_TRANSITIONS: dict[AgentPhase, frozenset[AgentPhase]] = {
    AgentPhase.IDLE: frozenset(
        {AgentPhase.COMPUTING_GRADIENT, AgentPhase.AWAITING_NEIGHBOR_STATES}
    ),
    AgentPhase.COMPUTING_GRADIENT: frozenset(
        {AgentPhase.AWAITING_NEIGHBOR_STATES, AgentPhase.IDLE}
    ),
    AgentPhase.AWAITING_NEIGHBOR_STATES: frozenset({AgentPhase.MIXING}),
    AgentPhase.MIXING: frozenset({AgentPhase.IDLE, AgentPhase.COMPUTING_GRADIENT}),
}


@dataclass(frozen=True)
class AgentSnapshot:
    """Copy of an agent's mutable state, taken before a round attempt."""

    state: ParamVector
    tracker: ParamVector | None
    previous_gradient: ParamVector | None


def _copy(vector: ParamVector | None) -> ParamVector | None:
    return None if vector is None else np.array(vector, dtype=np.float64, copy=True)


class WorkerAgent:
    """Local model copy plus the data it is fitted on.

    Args:
        node_id: Graph node this agent runs on.
        partition: Data owned by this agent.
        model: Convex model family (stateless).
        initial_state: Starting parameters (copied). Defaults to zeros.
        weights: This node's row of the mixing matrix restricted to itself
            and its neighbours. Defaults to {node_id: 1.0} (no mixing).
        divergence_bound: Largest allowed parameter norm.

    Example:
        >>> agent = WorkerAgent(0, partition, LinearModel())
        >>> agent.local_step(0.01)
        array([...])
    """

    def __init__(
        self,
        node_id: NodeId,
        partition: DataPartition,
        model: ConvexModel,
        initial_state: ParamVector | None = None,
        *,
        weights: Mapping[NodeId, float] | None = None,
        divergence_bound: float = float("inf"),
    ) -> None:
        if partition.node_id != node_id:
            raise ValueError(f"Agent {node_id} cannot own the partition of node {partition.node_id}")
        if len(partition) == 0:
            raise ValueError(f"Agent {node_id} has an empty partition")
        if not divergence_bound > 0:
            raise ValueError(f"divergence_bound must be positive, got {divergence_bound}")

        self.node_id = node_id
        self.partition = partition
        self.model = model
        self.divergence_bound = divergence_bound
        self.weights: dict[NodeId, float] = (
            dict(weights) if weights is not None else {node_id: 1.0}
        )
        if node_id not in self.weights:
            raise ValueError(f"Weights of agent {node_id} must include its self-weight")

        dim = model.param_dim(partition.n_features)
        if initial_state is None:
            state = np.zeros(dim, dtype=np.float64)
        else:
            state = np.array(initial_state, dtype=np.float64, copy=True)
        if state.shape != (dim,):
            raise ValueError(f"Agent {node_id}: expected initial state of shape ({dim},), got {state.shape}")
        self._state = state

        self.phase = AgentPhase.IDLE
        # gradient tracking buffers, set by init_tracking()
        self.tracker: ParamVector | None = None
        self.previous_gradient: ParamVector | None = None

    def __repr__(self) -> str:
        return f"WorkerAgent(node_id={self.node_id}, phase={self.phase.value}, n={len(self.partition)})"

    # -- state access ---------------------------------------------------------

    @property
    def state(self) -> ParamVector:
        """Copy of the current parameters."""
        return self._state.copy()

    @property
    def neighbors(self) -> list[NodeId]:
        return sorted(j for j in self.weights if j != self.node_id)

    @property
    def sample_count(self) -> int:
        return len(self.partition)

    def objective(self, params: ParamVector | None = None) -> float:
        """Local objective f_i at ``params`` (default: own state)."""
        x = self._state if params is None else params
        return self.model.batch_loss(x, self.partition.features, self.partition.labels)

    def gradient(self, params: ParamVector | None = None) -> ParamVector:
        """Full-partition gradient of f_i at ``params`` (default: own state)."""
        x = self._state if params is None else params
        return self.model.batch_gradient(x, self.partition.features, self.partition.labels)

    # -- phases ---------------------------------------------------------------

    def _enter(self, phase: AgentPhase) -> None:
        if phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(
                f"Agent {self.node_id}: illegal transition {self.phase.value} -> {phase.value}"
            )
        self.phase = phase

    def await_neighbors(self) -> None:
        """Mark the agent as blocked on its neighbours' states."""
        self._enter(AgentPhase.AWAITING_NEIGHBOR_STATES)

    def end_round(self) -> None:
        self._enter(AgentPhase.IDLE)

    def _commit(self, new_state: ParamVector) -> None:
        norm = float(np.linalg.norm(new_state))
        if not np.isfinite(norm) or norm > self.divergence_bound:
            raise DivergedState(self.node_id, norm, self.divergence_bound)
        self._state = new_state

    # -- round operations -------------------------------------------------------

    def compute_gradient(self) -> ParamVector:
        """Enter the gradient phase and return the gradient at the current state."""
        self._enter(AgentPhase.COMPUTING_GRADIENT)
        return self.gradient()

    def local_step(self, learning_rate: float) -> ParamVector:
        """One full-partition gradient-descent step.

        x <- x - learning_rate * grad f_i(x)

        Returns:
            Copy of the updated state.

        Raises:
            DivergedState: If the new state is non-finite or exceeds the bound.
        """
        grad = self.compute_gradient()
        self._commit(self._state - learning_rate * grad)
        return self.state

    def _combine(
        self,
        own: ParamVector,
        neighbor_values: Mapping[NodeId, ParamVector],
        weights: Mapping[NodeId, float],
    ) -> ParamVector:
        """sum_j w_ij v_j over self and neighbours, in ascending node order."""
        if self.node_id not in weights:
            raise ValueError(f"Weights of agent {self.node_id} must include its self-weight")
        missing = [j for j in weights if j != self.node_id and j not in neighbor_values]
        if missing:
            raise ValueError(f"Agent {self.node_id} is missing states from {sorted(missing)}")
        unexpected = [j for j in neighbor_values if j not in weights]
        if unexpected:
            raise ValueError(f"Agent {self.node_id} has no weights for {sorted(unexpected)}")

        total = np.zeros_like(own)
        for j in sorted(weights):
            value = own if j == self.node_id else neighbor_values[j]
            total = total + weights[j] * np.asarray(value, dtype=np.float64)
        return total

    def mix(
        self,
        neighbor_states: Mapping[NodeId, ParamVector],
        weights: Mapping[NodeId, float] | None = None,
    ) -> ParamVector:
        """Replace the state by the weighted average of self and neighbours.

        Args:
            neighbor_states: Neighbour id -> received state (copies).
            weights: Mixing-matrix row (self and neighbours). Defaults to
                the row given at construction.

        Returns:
            Copy of the mixed state.

        Raises:
            ValueError: If a weighted neighbour's state is missing.
            DivergedState: If the mixed state leaves the bound.
        """
        if self.phase is not AgentPhase.AWAITING_NEIGHBOR_STATES:
            self.await_neighbors()
        self._enter(AgentPhase.MIXING)
        row = self.weights if weights is None else weights
        self._commit(self._combine(self._state, neighbor_states, row))
        return self.state

    # -- gradient tracking --------------------------------------------------------

    def init_tracking(self) -> None:
        """Start gradient tracking: y = g_prev = grad f_i(x)."""
        g = self.gradient()
        self.tracker = g.copy()
        self.previous_gradient = g.copy()

    def tracking_update(
        self,
        neighbor_payloads: Mapping[NodeId, Mapping[str, ParamVector]],
        gradient: ParamVector,
        learning_rate: float,
    ) -> ParamVector:
        """Mix parameters and trackers, then step along the tracker.

        y <- sum_j w_ij y_j + (g - g_prev)
        x <- sum_j w_ij x_j - learning_rate * y
        """
        if self.tracker is None or self.previous_gradient is None:
            raise RuntimeError(f"Agent {self.node_id}: init_tracking() was not called")
        self._enter(AgentPhase.MIXING)
        mixed_x = self._combine(
            self._state, {j: p["x"] for j, p in neighbor_payloads.items()}, self.weights
        )
        mixed_y = self._combine(
            self.tracker, {j: p["y"] for j, p in neighbor_payloads.items()}, self.weights
        )
        new_y = mixed_y + (gradient - self.previous_gradient)
        self._commit(mixed_x - learning_rate * new_y)
        self.tracker = new_y
        self.previous_gradient = np.array(gradient, dtype=np.float64, copy=True)
        return self.state

    # -- retries ----------------------------------------------------------------

    def snapshot(self) -> AgentSnapshot:
        return AgentSnapshot(
            state=self._state.copy(),
            tracker=_copy(self.tracker),
            previous_gradient=_copy(self.previous_gradient),
        )

    def restore(self, snapshot: AgentSnapshot) -> None:
        """Roll back to a snapshot and return to IDLE."""
        self._state = snapshot.state.copy()
        self.tracker = _copy(snapshot.tracker)
        self.previous_gradient = _copy(snapshot.previous_gradient)
        self.phase = AgentPhase.IDLE

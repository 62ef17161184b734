"""Round strategies for decentralized consensus optimization.

A strategy defines the order of operations one agent performs in a round:
- local gradient step
- state exchange with graph neighbours
- consensus mixing
- gradient tracking (mixing a second channel)

Strategies run inside the agent's own worker thread. The only blocking
point is RoundContext.exchange, which waits for the neighbours' messages.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from agents.worker import WorkerAgent
from core.types import MultiPayload, NodeId, ParamVector
from distributed.communicator import ChannelCommunicator

__all__ = [
    "RoundContext",
    "RoundStrategy",
    "AdaptThenCombine",
    "CombineThenAdapt",
    "GradientTracking",
    "STRATEGIES",
    "get_strategy",
]


@dataclass(frozen=True)
class RoundContext:
    """Per-attempt round parameters shared (read-only) by all agent tasks.

    Attributes:
        round_index: 1-based round number.
        attempt: Attempt counter used to tag messages.
        learning_rate: Step size for this attempt.
        communicator: Message channels between neighbours.
        deadline: Absolute time.monotonic() deadline, or None.
        timeout: Round timeout in seconds (0.0 when unbounded).
        abort: Set by the coordinator to abandon the attempt.
    """

    round_index: int
    attempt: int
    learning_rate: float
    communicator: ChannelCommunicator
    deadline: float | None = None
    timeout: float = 0.0
    abort: threading.Event | None = None

    def exchange(
        self, agent: WorkerAgent, payload: MultiPayload
    ) -> dict[NodeId, dict[str, ParamVector]]:
        """Publish ``payload`` to the agent's neighbours and wait for theirs."""
        agent.await_neighbors()
        self.communicator.publish(
            agent.node_id, payload, round_index=self.round_index, attempt=self.attempt
        )
        return self.communicator.receive(
            agent.node_id,
            round_index=self.round_index,
            attempt=self.attempt,
            deadline=self.deadline,
            timeout=self.timeout,
            abort=self.abort,
        )


class RoundStrategy(Protocol):
    """Protocol for per-agent round strategies."""

    name: str

    def prepare(self, agents: Sequence[WorkerAgent]) -> None:
        """Initialize per-agent buffers before the first round."""
        ...

    def run_agent(self, agent: WorkerAgent, ctx: RoundContext) -> ParamVector:
        """Execute one round for one agent; returns a copy of its new state."""
        ...


class AdaptThenCombine:
    """Strategy: local gradient step, then exchange and mix (default).

    1. x_i <- x_i - lr * grad f_i(x_i)
    2. publish x_i, collect x_j from neighbours
    3. x_i <- sum_j w_ij x_j
    """

    name = "adapt_then_combine"

    def prepare(self, agents: Sequence[WorkerAgent]) -> None:
        pass

    def run_agent(self, agent: WorkerAgent, ctx: RoundContext) -> ParamVector:
        agent.local_step(ctx.learning_rate)
        received = ctx.exchange(agent, {"x": agent.state})
        state = agent.mix({j: payload["x"] for j, payload in received.items()})
        agent.end_round()
        return state


class CombineThenAdapt:
    """Strategy: exchange and mix first, then the local gradient step.

    Consensus is reached on the pre-step states, so each agent moves toward
    its local objective from the neighbourhood average.
    """

    name = "combine_then_adapt"

    def prepare(self, agents: Sequence[WorkerAgent]) -> None:
        pass

    def run_agent(self, agent: WorkerAgent, ctx: RoundContext) -> ParamVector:
        received = ctx.exchange(agent, {"x": agent.state})
        agent.mix({j: payload["x"] for j, payload in received.items()})
        state = agent.local_step(ctx.learning_rate)
        agent.end_round()
        return state


class GradientTracking:
    """Strategy: Gradient Tracking (also known as NEXT or DIGing).

    State per agent i: parameters x_i, tracker y_i, previous gradient g_prev.

    Per round:
    1. g_i = grad f_i(x_i)
    2. exchange (x_i, y_i) with neighbours (multi-channel payload)
    3. y_i <- sum_j w_ij y_j + (g_i - g_prev)
    4. x_i <- sum_j w_ij x_j - lr * y_i
    5. g_prev <- g_i

    The average of the trackers equals the average local gradient, so a
    constant step converges to the exact optimum of sum_i f_i even when the
    partitions are heterogeneous.
    """

    name = "gradient_tracking"

    def prepare(self, agents: Sequence[WorkerAgent]) -> None:
        for agent in agents:
            if agent.tracker is None:
                agent.init_tracking()

    def run_agent(self, agent: WorkerAgent, ctx: RoundContext) -> ParamVector:
        gradient = agent.compute_gradient()
        payload = {"x": agent.state, "y": agent.tracker}
        received = ctx.exchange(agent, payload)  # type: ignore[arg-type]
        state = agent.tracking_update(received, gradient, ctx.learning_rate)
        agent.end_round()
        return state


STRATEGIES: dict[str, type[RoundStrategy]] = {
    AdaptThenCombine.name: AdaptThenCombine,
    CombineThenAdapt.name: CombineThenAdapt,
    GradientTracking.name: GradientTracking,
}


def get_strategy(name: str) -> RoundStrategy:
    """Instantiate a registered strategy by name.

    Raises:
        ValueError: If the strategy is unknown.
    """
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown strategy: {name}. Available: {sorted(STRATEGIES)}") from None

"""Tests for BaseEnvironment and single ConsensusEnvironment rounds."""

from __future__ import annotations

import time

import numpy as np
import pytest

from agents.worker import AgentPhase, WorkerAgent
from core.errors import DivergedState, RoundTimeout
from core.rng import make_rng
from distributed.strategies import AdaptThenCombine, RoundContext
from distributed.topology import ring
from distributed.weights import mixing_matrix, mixing_rows
from environments.base import BaseEnvironment
from environments.consensus import ConsensusEnvironment, consensus_error
from models.convex import LinearModel
from tasks.least_squares import make_least_squares_partitions

# =============================================================================
# BaseEnvironment
# =============================================================================


class CountingEnv(BaseEnvironment[int]):
    """Returns the completed-round count from every step."""

    def reset(self) -> None:
        self._t = 0

    def step(self) -> int:
        self._t += 1
        return self._t


class TestBaseEnvironment:
    def test_run_collects_records(self) -> None:
        env = CountingEnv()
        env.reset()
        assert env.run(steps=3) == [1, 2, 3]
        assert env.t == 3
        assert env.state_dict() == {"t": 3}

    def test_run_requires_positive_steps(self) -> None:
        with pytest.raises(ValueError, match="steps must be >= 1"):
            CountingEnv().run(steps=0)

    def test_cannot_instantiate_abstract(self) -> None:
        with pytest.raises(TypeError):
            BaseEnvironment()  # type: ignore[abstract]


# =============================================================================
# Helpers
# =============================================================================


def _agents(n: int = 5, divergence_bound: float = float("inf")) -> tuple:
    graph = ring(n)
    rows = mixing_rows(mixing_matrix(graph), graph)
    partitions, w_star = make_least_squares_partitions(
        n_nodes=n, samples_per_node=100, dim=3, rng=make_rng(0), feature_scale=10.0
    )
    agents = [
        WorkerAgent(i, partitions[i], LinearModel(), weights=rows[i], divergence_bound=divergence_bound)
        for i in range(n)
    ]
    return graph, agents, w_star


class ExplodeOnNode(AdaptThenCombine):
    """Adapt-then-combine that diverges once on one node in a chosen round."""

    def __init__(self, node_id: int, round_index: int = 1) -> None:
        self.node_id = node_id
        self.round_index = round_index
        self.fired = False

    def run_agent(self, agent: WorkerAgent, ctx: RoundContext) -> np.ndarray:
        # only the target node's thread touches `fired`
        if agent.node_id == self.node_id and ctx.round_index == self.round_index and not self.fired:
            self.fired = True
            agent.local_step(ctx.learning_rate)
            raise DivergedState(agent.node_id, float("inf"), 1.0)
        return super().run_agent(agent, ctx)


class StallOnNode(AdaptThenCombine):
    """Adapt-then-combine where one node is too slow in the first attempt."""

    def __init__(self, node_id: int, delay: float) -> None:
        self.node_id = node_id
        self.delay = delay

    def run_agent(self, agent: WorkerAgent, ctx: RoundContext) -> np.ndarray:
        if agent.node_id == self.node_id and ctx.attempt == 0:
            time.sleep(self.delay)
        return super().run_agent(agent, ctx)


# =============================================================================
# ConsensusEnvironment
# =============================================================================


class TestConsensusEnvironment:
    def test_step_returns_all_states(self) -> None:
        graph, agents, _ = _agents()
        with ConsensusEnvironment(graph=graph, agents=agents, learning_rate=0.01) as env:
            env.reset()
            states = env.step()
        assert sorted(states) == [0, 1, 2, 3, 4]
        assert env.t == 1
        assert all(a.phase is AgentPhase.IDLE for a in agents)

    def test_step_matches_matrix_form(self) -> None:
        """One ATC round equals W @ (X - lr * G) row by row."""
        graph, agents, _ = _agents()
        W = mixing_matrix(graph)
        lr = 0.01
        stepped = np.stack([a.state - lr * a.gradient() for a in agents])
        expected = W @ stepped

        with ConsensusEnvironment(graph=graph, agents=agents, learning_rate=lr) as env:
            env.reset()
            states = env.step()
        for i in range(5):
            np.testing.assert_allclose(states[i], expected[i], atol=1e-12)

    def test_agents_must_cover_graph(self) -> None:
        graph, agents, _ = _agents()
        with pytest.raises(ValueError, match="must cover nodes"):
            ConsensusEnvironment(graph=graph, agents=agents[:4])

    def test_run_several_rounds_reduces_error(self) -> None:
        graph, agents, w_star = _agents()
        with ConsensusEnvironment(graph=graph, agents=agents, learning_rate=0.01) as env:
            env.reset()
            history = env.run(steps=30)
        assert env.t == 30
        for state in history[-1].values():
            np.testing.assert_allclose(state, w_star, atol=1e-6)
        assert consensus_error(history[-1]) < 1e-6

    def test_failed_round_rolls_back_every_agent(self) -> None:
        graph, agents, _ = _agents()
        with ConsensusEnvironment(
            graph=graph,
            agents=agents,
            strategy=ExplodeOnNode(2, round_index=2),
            learning_rate=0.01,
        ) as env:
            env.reset()
            env.step()
            before = env.get_params_by_node()

            with pytest.raises(DivergedState):
                env.step()

            assert env.t == 1
            for node_id, state in env.get_params_by_node().items():
                np.testing.assert_array_equal(state, before[node_id])
            assert all(a.phase is AgentPhase.IDLE for a in agents)
            assert all(env.communicator.pending(i) == 0 for i in range(5))

    def test_retry_after_rollback_succeeds(self) -> None:
        graph, agents, _ = _agents()
        with ConsensusEnvironment(
            graph=graph, agents=agents, strategy=ExplodeOnNode(0), learning_rate=0.01
        ) as env:
            env.reset()
            with pytest.raises(DivergedState):
                env.step()
            states = env.step()
        assert env.t == 1
        assert len(states) == 5

    def test_timeout_rolls_back(self) -> None:
        graph, agents, _ = _agents()
        with ConsensusEnvironment(
            graph=graph,
            agents=agents,
            strategy=StallOnNode(3, delay=0.3),
            learning_rate=0.01,
            round_timeout=0.05,
        ) as env:
            env.reset()
            with pytest.raises(RoundTimeout) as excinfo:
                env.step()
            assert env.t == 0
            assert excinfo.value.round_index == 1
            for state in env.get_params_by_node().values():
                np.testing.assert_array_equal(state, np.zeros(3))
            # the next attempt is not stalled
            env.round_timeout = 5.0
            env.step()
            assert env.t == 1

    def test_state_dict(self) -> None:
        graph, agents, _ = _agents(n=3)
        with ConsensusEnvironment(graph=graph, agents=agents, learning_rate=0.05) as env:
            env.reset()
            env.step()
            state = env.state_dict()
        assert state["t"] == 1
        assert state["learning_rate"] == 0.05
        assert sorted(state["params_by_node"]) == ["0", "1", "2"]

    def test_close_is_idempotent(self) -> None:
        graph, agents, _ = _agents(n=3)
        env = ConsensusEnvironment(graph=graph, agents=agents)
        env.reset()
        env.step()
        env.close()
        env.close()

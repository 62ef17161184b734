"""Synchronous consensus optimization over a worker graph.

ConsensusEnvironment runs single rounds: every agent executes the round
strategy in its own thread and the round ends when all agent tasks have
finished (the barrier). A failed attempt is rolled back so every agent is
back at its pre-round state.

ConsensusOptimizer drives rounds until the agents agree, the round budget
runs out, a round fails more often than the retry budget allows, or the run
is cancelled.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from itertools import combinations
from typing import Any

import numpy as np

from agents.worker import WorkerAgent
from core.errors import DidNotConverge, DivergedState, RoundTimeout
from core.logging import get_logger
from core.protocols import ConvexModel
from core.types import (
    ConvergenceHistory,
    ConvergenceRecord,
    DataPartition,
    NodeId,
    ParamVector,
    RunResult,
    RunStatus,
)
from distributed.communicator import ChannelCommunicator, RoundAborted
from distributed.graph import Graph
from distributed.strategies import STRATEGIES, RoundContext, RoundStrategy, get_strategy
from distributed.weights import check_mixing_matrix, mixing_matrix, mixing_rows
from environments.base import BaseEnvironment
from models.convex import get_model_family

__all__ = [
    "consensus_error",
    "max_pairwise_disagreement",
    "ConsensusConfig",
    "ConsensusEnvironment",
    "ConsensusOptimizer",
]

logger = get_logger(__name__)

RoundCallback = Callable[[ConvergenceRecord], None]


def consensus_error(params_by_node: Mapping[NodeId, ParamVector]) -> float:
    """Compute the consensus error across nodes.

    Consensus error measures how far the nodes are from agreement:
        error = mean_i ||x_i - x_bar||_2

    where x_bar = mean_i x_i is the global average.

    Example:
        >>> params = {0: np.array([0.0]), 1: np.array([2.0])}
        >>> consensus_error(params)
        1.0
    """
    if not params_by_node:
        return 0.0

    vectors = [params_by_node[i] for i in sorted(params_by_node.keys())]
    stacked = np.stack(vectors, axis=0)
    x_bar = np.mean(stacked, axis=0)
    distances = [float(np.linalg.norm(v - x_bar)) for v in vectors]
    return float(np.mean(distances))


def max_pairwise_disagreement(params_by_node: Mapping[NodeId, ParamVector]) -> float:
    """Largest Euclidean distance between any two nodes' parameters.

    This is the convergence criterion: when it is below the tolerance every
    pair of agents agrees to within the tolerance.

    Example:
        >>> params = {0: np.array([0.0]), 1: np.array([2.0]), 2: np.array([1.0])}
        >>> max_pairwise_disagreement(params)
        2.0
    """
    vectors = [params_by_node[i] for i in sorted(params_by_node.keys())]
    if len(vectors) < 2:
        return 0.0
    return max(float(np.linalg.norm(a - b)) for a, b in combinations(vectors, 2))


@dataclass(frozen=True)
class ConsensusConfig:
    """Optimizer settings.

    Attributes:
        learning_rate: Initial gradient step size.
        tolerance: Stop once the max pairwise disagreement is below this.
        max_rounds: Round budget.
        round_timeout: Optional per-round deadline in seconds.
        max_retries: Retries per round after a divergence or timeout.
        lr_decay: Learning-rate factor applied before each retry; the
            reduced rate is kept for later rounds.
        divergence_bound: Largest allowed parameter norm of any agent.
        strategy: Round strategy name.
        min_rounds: Rounds to complete before convergence is checked.
        stationarity_tolerance: If set, convergence also requires the mean
            state to move less than this during the round.
    """

    learning_rate: float = 0.01
    tolerance: float = 1e-6
    max_rounds: int = 500
    round_timeout: float | None = None
    max_retries: int = 3
    lr_decay: float = 0.5
    divergence_bound: float = 1e6
    strategy: str = "adapt_then_combine"
    min_rounds: int = 1
    stationarity_tolerance: float | None = None

    def __post_init__(self) -> None:
        if not self.learning_rate > 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if not self.tolerance > 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")
        if self.max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {self.max_rounds}")
        if not 1 <= self.min_rounds <= self.max_rounds:
            raise ValueError(
                f"min_rounds must be in [1, max_rounds={self.max_rounds}], got {self.min_rounds}"
            )
        if self.round_timeout is not None and not self.round_timeout > 0:
            raise ValueError(f"round_timeout must be positive, got {self.round_timeout}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if not 0.0 < self.lr_decay <= 1.0:
            raise ValueError(f"lr_decay must be in (0, 1], got {self.lr_decay}")
        if not self.divergence_bound > 0:
            raise ValueError(f"divergence_bound must be positive, got {self.divergence_bound}")
        if self.strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy: {self.strategy}. Available: {sorted(STRATEGIES)}")
        if self.stationarity_tolerance is not None and not self.stationarity_tolerance > 0:
            raise ValueError(
                f"stationarity_tolerance must be positive, got {self.stationarity_tolerance}"
            )


class ConsensusEnvironment(BaseEnvironment[dict[NodeId, ParamVector]]):
    """Runs synchronous rounds over a fixed set of agents.

    One worker thread per agent; the pool is as large as the graph, so every
    agent of a round runs concurrently and neighbours can always reach the
    exchange point.

    Attributes:
        learning_rate: Step size used by the next step() call.
        round_timeout: Optional per-round deadline in seconds.

    Example:
        >>> with ConsensusEnvironment(graph=g, agents=agents, learning_rate=0.01) as env:
        ...     env.reset()
        ...     states = env.step()
    """

    def __init__(
        self,
        *,
        graph: Graph,
        agents: Sequence[WorkerAgent],
        strategy: RoundStrategy | None = None,
        learning_rate: float = 0.01,
        round_timeout: float | None = None,
    ) -> None:
        super().__init__()

        node_ids = sorted(agent.node_id for agent in agents)
        if node_ids != list(range(graph.num_nodes())):
            raise ValueError(
                f"Agents must cover nodes 0..{graph.num_nodes() - 1} exactly, got {node_ids}"
            )

        self.graph = graph
        self.agents: list[WorkerAgent] = sorted(agents, key=lambda a: a.node_id)
        self.strategy: RoundStrategy = strategy if strategy is not None else get_strategy(
            "adapt_then_combine"
        )
        self.learning_rate = learning_rate
        self.round_timeout = round_timeout
        self.communicator = ChannelCommunicator(graph)
        self._attempt = 0
        self._executor: ThreadPoolExecutor | None = None

    @property
    def num_nodes(self) -> int:
        return len(self.agents)

    def __enter__(self) -> ConsensusEnvironment:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Shut down the worker threads."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.num_nodes, thread_name_prefix="agent"
            )
        return self._executor

    def reset(self) -> None:
        """Reset the round counter and let the strategy set up its buffers."""
        self._t = 0
        self.communicator.drain()
        self.strategy.prepare(self.agents)

    def get_params_by_node(self) -> dict[NodeId, ParamVector]:
        """Current parameters of all agents (copies)."""
        return {agent.node_id: agent.state for agent in self.agents}

    def step(self) -> dict[NodeId, ParamVector]:
        """Execute one round attempt.

        Returns:
            Mapping node id -> state after the round.

        Raises:
            DivergedState: If an agent's state left the bound.
            RoundTimeout: If the round did not finish in time.
            Exception: Any other error raised inside an agent task.
            In every failure case each agent is restored to its pre-round
            state, all queued messages are dropped and the round counter
            is unchanged.
        """
        round_index = self._t + 1
        attempt = self._attempt
        self._attempt += 1

        snapshots = {agent.node_id: agent.snapshot() for agent in self.agents}
        abort = threading.Event()
        deadline = None
        if self.round_timeout is not None:
            deadline = time.monotonic() + self.round_timeout
        ctx = RoundContext(
            round_index=round_index,
            attempt=attempt,
            learning_rate=self.learning_rate,
            communicator=self.communicator,
            deadline=deadline,
            timeout=self.round_timeout or 0.0,
            abort=abort,
        )

        pool = self._pool()
        futures: dict[Future[ParamVector], NodeId] = {
            pool.submit(self.strategy.run_agent, agent, ctx): agent.node_id
            for agent in self.agents
        }
        done, not_done = wait(futures, timeout=self.round_timeout, return_when=FIRST_EXCEPTION)

        failure = _first_failure(done)
        if failure is None and not not_done:
            self._t += 1
            return {futures[f]: f.result() for f in futures}

        # Abandon the attempt: stop blocked agents, then roll everyone back
        abort.set()
        wait(futures)
        if failure is None:
            failure = _first_failure(futures)
        if failure is None:
            failure = RoundTimeout(
                round_index,
                timeout=self.round_timeout or 0.0,
                missing=sorted(futures[f] for f in not_done),
            )
        for agent in self.agents:
            agent.restore(snapshots[agent.node_id])
        dropped = self.communicator.drain()
        logger.debug(
            "Round %d attempt %d rolled back (%d stale messages dropped)",
            round_index,
            attempt,
            dropped,
        )
        raise failure

    def state_dict(self) -> dict[str, Any]:
        return {
            "t": self._t,
            "learning_rate": self.learning_rate,
            "params_by_node": {
                str(node_id): params.tolist()
                for node_id, params in self.get_params_by_node().items()
            },
        }


def _first_failure(futures: Any) -> BaseException | None:
    """Most informative error among finished futures.

    Divergence outranks timeouts, which outrank anything else; RoundAborted
    is only the echo of the coordinator's abort and never reported.
    """
    errors = [
        f.exception() for f in futures if f.done() and f.exception() is not None
    ]
    errors = [e for e in errors if not isinstance(e, RoundAborted)]
    for kind in (DivergedState, RoundTimeout):
        for error in errors:
            if isinstance(error, kind):
                return error
    return errors[0] if errors else None


class ConsensusOptimizer:
    """Decentralized gradient descent until the agents agree.

    Args:
        on_round: Optional callback invoked with every ConvergenceRecord
            right after it is appended (from the coordinating thread).

    Example:
        >>> optimizer = ConsensusOptimizer()
        >>> result = optimizer.run(ring(5), partitions, "linear", ConsensusConfig())
        >>> result.status
        <RunStatus.CONVERGED: 'converged'>
    """

    def __init__(self, on_round: RoundCallback | None = None) -> None:
        self.on_round = on_round
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop after the in-flight round completes."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(
        self,
        graph: Graph,
        partitions: Sequence[DataPartition],
        model_family: ConvexModel | str,
        config: ConsensusConfig | None = None,
        *,
        initial_states: Mapping[NodeId, ParamVector] | None = None,
        mixing: np.ndarray | None = None,
    ) -> RunResult:
        """Fit one model across all partitions by consensus.

        Args:
            graph: Connected worker graph.
            partitions: One partition per node (matched by node_id).
            model_family: Model instance or registered family name.
            config: Optimizer settings (defaults to ConsensusConfig()).
            initial_states: Optional starting parameters per node.
            mixing: Optional mixing matrix; defaults to Metropolis-Hastings.

        Returns:
            RunResult with the mean state, terminal status and history.

        Raises:
            ValueError: If partitions, initial states or the mixing matrix
                do not match the graph. Raised before any round runs.
            IllConditionedGraph: If the mixing matrix is not symmetric and
                doubly stochastic, or weights a pair that is not an edge.
        """
        config = config or ConsensusConfig()
        model = get_model_family(model_family) if isinstance(model_family, str) else model_family
        n = graph.num_nodes()

        by_node = {p.node_id: p for p in partitions}
        if len(partitions) != n or sorted(by_node) != list(range(n)):
            raise ValueError(
                f"Expected one partition per node 0..{n - 1}, got node ids "
                f"{sorted(p.node_id for p in partitions)}"
            )
        n_features = {p.n_features for p in partitions}
        if len(n_features) != 1:
            raise ValueError(f"Partitions disagree on the feature count: {sorted(n_features)}")

        W = mixing_matrix(graph) if mixing is None else np.asarray(mixing, dtype=np.float64)
        check_mixing_matrix(W, graph)
        rows = mixing_rows(W, graph)

        if initial_states is not None and sorted(initial_states) != list(range(n)):
            raise ValueError(f"initial_states must cover nodes 0..{n - 1}")

        agents = [
            WorkerAgent(
                i,
                by_node[i],
                model,
                None if initial_states is None else initial_states[i],
                weights=rows[i],
                divergence_bound=config.divergence_bound,
            )
            for i in range(n)
        ]
        self._cancelled.clear()

        logger.info(
            "Starting consensus run: %d nodes, %d rows, model=%s, strategy=%s, lr=%.3g",
            n,
            sum(len(p) for p in partitions),
            model.name,
            config.strategy,
            config.learning_rate,
        )
        with ConsensusEnvironment(
            graph=graph,
            agents=agents,
            strategy=get_strategy(config.strategy),
            learning_rate=config.learning_rate,
            round_timeout=config.round_timeout,
        ) as env:
            env.reset()
            result = self._loop(env, agents, config)

        logger.info(
            "Run finished: status=%s after %d rounds (disagreement %.3g)",
            result.status.value,
            result.rounds,
            result.final_disagreement(),
        )
        return result

    def _loop(
        self,
        env: ConsensusEnvironment,
        agents: Sequence[WorkerAgent],
        config: ConsensusConfig,
    ) -> RunResult:
        history = ConvergenceHistory()
        status = RunStatus.ROUND_BUDGET_EXHAUSTED
        diagnostic: Exception | None = None
        previous_mean = _mean_state(env.get_params_by_node())

        for round_index in range(1, config.max_rounds + 1):
            if self._cancelled.is_set():
                logger.info("Run cancelled before round %d", round_index)
                status = RunStatus.CANCELLED
                break

            states, attempts, failure = self._attempt_round(env, round_index, config)
            if failure is not None:
                status = (
                    RunStatus.DIVERGED if isinstance(failure, DivergedState) else RunStatus.TIMED_OUT
                )
                diagnostic = failure
                break

            mean = _mean_state(states)
            record = ConvergenceRecord(
                round_index=round_index,
                objective=_global_objective(agents, mean),
                disagreement=max_pairwise_disagreement(states),
                learning_rate=env.learning_rate,
                attempts=attempts,
            )
            history.append(record)
            logger.debug(
                "Round %d: objective=%.6g disagreement=%.3g",
                round_index,
                record.objective,
                record.disagreement,
            )
            if self.on_round is not None:
                self.on_round(record)

            if round_index >= config.min_rounds and record.disagreement < config.tolerance:
                movement = float(np.linalg.norm(mean - previous_mean))
                if (
                    config.stationarity_tolerance is None
                    or movement < config.stationarity_tolerance
                ):
                    status = RunStatus.CONVERGED
                    break
            previous_mean = mean
        else:
            status = RunStatus.ROUND_BUDGET_EXHAUSTED
            last = history.last().disagreement if len(history) else float("inf")
            diagnostic = DidNotConverge(len(history), last, config.tolerance)

        final_states = env.get_params_by_node()
        return RunResult(
            state=_mean_state(final_states),
            status=status,
            history=history,
            agent_states=final_states,
            rounds=len(history),
            diagnostic=diagnostic,
        )

    def _attempt_round(
        self,
        env: ConsensusEnvironment,
        round_index: int,
        config: ConsensusConfig,
    ) -> tuple[dict[NodeId, ParamVector], int, DivergedState | RoundTimeout | None]:
        """Run one round with retries.

        Returns:
            (states, attempts used, terminal failure or None).
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                return env.step(), attempts, None
            except (DivergedState, RoundTimeout) as exc:
                logger.warning("Round %d attempt %d failed: %s", round_index, attempts, exc)
                if attempts > config.max_retries:
                    return env.get_params_by_node(), attempts, exc
                env.learning_rate *= config.lr_decay
                logger.info(
                    "Retrying round %d with learning rate %.3g", round_index, env.learning_rate
                )


def _mean_state(params_by_node: Mapping[NodeId, ParamVector]) -> ParamVector:
    vectors = [params_by_node[i] for i in sorted(params_by_node)]
    result: ParamVector = np.mean(vectors, axis=0)
    return result


def _global_objective(agents: Sequence[WorkerAgent], params: ParamVector) -> float:
    """Size-weighted average of the local objectives at ``params``."""
    total = sum(agent.sample_count for agent in agents)
    return sum(agent.sample_count * agent.objective(params) for agent in agents) / total

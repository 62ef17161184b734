"""Error taxonomy for consensus fitting.

Setup-time errors (topology, mixing parameters, generator parameters) are
raised immediately and abort a run. Runtime errors raised inside a round
(divergence, timeouts) are retried by the optimizer and only surface as a
terminal run status once the retry budget is spent.
"""

from __future__ import annotations

from collections.abc import Sequence

from core.types import NodeId

__all__ = [
    "ConsensusError",
    "InvalidTopology",
    "IllConditionedGraph",
    "InvalidParameters",
    "InsufficientHistory",
    "DivergedState",
    "RoundTimeout",
    "DidNotConverge",
]


class ConsensusError(Exception):
    """Base class for all errors raised by this package."""


class InvalidTopology(ConsensusError, ValueError):
    """The worker graph is malformed or disconnected."""


class IllConditionedGraph(ConsensusError, ValueError):
    """The requested mixing parameters do not yield a stable mixing matrix."""


class InvalidParameters(ConsensusError, ValueError):
    """A generator (or other setup) parameter is out of its valid range."""


class InsufficientHistory(ConsensusError):
    """A feature window is too short for the configured features.

    Recoverable: callers skip the window.
    """


class DivergedState(ConsensusError):
    """An agent's parameters left the configured norm bound (or became non-finite).

    Attributes:
        node_id: Agent that diverged.
        norm: Euclidean norm of the offending state (``inf``/``nan`` allowed).
        bound: The configured divergence bound.
    """

    def __init__(self, node_id: NodeId, norm: float, bound: float) -> None:
        super().__init__(
            f"Agent {node_id} diverged: parameter norm {norm:.6g} exceeds bound {bound:.6g}"
        )
        self.node_id = node_id
        self.norm = norm
        self.bound = bound


class RoundTimeout(ConsensusError):
    """A round's barrier did not complete before the per-round deadline.

    Attributes:
        round_index: Round that timed out.
        timeout: Deadline in seconds.
        missing: Senders whose states had not arrived (may be empty when the
            timeout was detected by the coordinator rather than an agent).
    """

    def __init__(
        self,
        round_index: int,
        timeout: float,
        missing: Sequence[NodeId] = (),
    ) -> None:
        detail = f", missing states from {sorted(missing)}" if missing else ""
        super().__init__(f"Round {round_index} exceeded timeout of {timeout:.3g}s{detail}")
        self.round_index = round_index
        self.timeout = timeout
        self.missing = tuple(sorted(missing))


class DidNotConverge(ConsensusError):
    """The round budget ran out before the agents agreed.

    Not raised by the optimizer: it is attached to the run result as the
    diagnostic for a ``ROUND_BUDGET_EXHAUSTED`` status.
    """

    def __init__(self, rounds: int, disagreement: float, tolerance: float) -> None:
        super().__init__(
            f"No consensus after {rounds} rounds: disagreement {disagreement:.6g} "
            f"> tolerance {tolerance:.6g}"
        )
        self.rounds = rounds
        self.disagreement = disagreement
        self.tolerance = tolerance

"""Message passing between worker agents.

Each node owns one inbox (a ``queue.Queue``). Agents publish copies of
their state to their neighbours' inboxes and block on their own inbox until
every neighbour's message for the current round has arrived. No agent ever
holds a reference to another agent's arrays.

Payloads are multi-channel (``{"x": params}`` for plain consensus,
``{"x": params, "y": tracker}`` for gradient tracking).
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field

import numpy as np

from core.errors import RoundTimeout
from core.protocols import Topology
from core.types import MultiPayload, NodeId, ParamVector

__all__ = ["StateMessage", "RoundAborted", "ChannelCommunicator", "copy_payload"]

# Poll interval while blocked on an inbox; bounds how late an abort is noticed
_POLL_SECONDS = 0.01


class RoundAborted(Exception):
    """Raised inside an agent task when the coordinator aborts the round attempt."""


def copy_payload(payload: MultiPayload) -> dict[str, ParamVector]:
    """Deep-copy a multi-channel payload into fresh float64 arrays."""
    return {key: np.array(value, dtype=np.float64, copy=True) for key, value in payload.items()}


@dataclass(frozen=True)
class StateMessage:
    """One agent's published state for a round.

    Attributes:
        sender: Publishing node.
        round_index: Round the state belongs to.
        attempt: Retry attempt of that round (stale attempts are discarded).
        payload: Channel name -> copied vector.
    """

    sender: NodeId
    round_index: int
    attempt: int
    payload: Mapping[str, ParamVector]


@dataclass
class ChannelCommunicator:
    """Per-node inboxes over a fixed topology.

    Attributes:
        topology: Graph defining who talks to whom.
        inboxes: One unbounded queue per node (created automatically).

    Example:
        >>> from distributed.topology import ring
        >>> comm = ChannelCommunicator(topology=ring(3))
        >>> comm.publish(0, {"x": np.zeros(2)}, round_index=1, attempt=0)
        >>> comm.pending(1)
        1
    """

    topology: Topology
    inboxes: dict[NodeId, queue.Queue[StateMessage]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.inboxes:
            self.inboxes = {i: queue.Queue() for i in range(self.topology.num_nodes())}

    def publish(
        self,
        sender: NodeId,
        payload: MultiPayload,
        *,
        round_index: int,
        attempt: int,
    ) -> None:
        """Send a copy of ``payload`` to every neighbour of ``sender``.

        Each neighbour receives its own independent copy.

        Raises:
            ValueError: If the payload has no channels.
        """
        if not payload:
            raise ValueError("Payloads must have at least one channel key")
        for receiver in self.topology.neighbors(sender):
            message = StateMessage(
                sender=sender,
                round_index=round_index,
                attempt=attempt,
                payload=copy_payload(payload),
            )
            self.inboxes[receiver].put(message)

    def receive(
        self,
        receiver: NodeId,
        *,
        round_index: int,
        attempt: int,
        deadline: float | None = None,
        timeout: float = 0.0,
        abort: threading.Event | None = None,
    ) -> dict[NodeId, dict[str, ParamVector]]:
        """Block until every neighbour's message for this round has arrived.

        Messages tagged with another round or attempt are dropped.

        Args:
            receiver: Node collecting its neighbours' states.
            round_index: Round to collect.
            attempt: Attempt of the round to collect.
            deadline: Absolute ``time.monotonic()`` deadline, or None.
            timeout: Round timeout the deadline was derived from (reported
                in the RoundTimeout).
            abort: Event set by the coordinator to abandon the attempt.

        Returns:
            Mapping sender -> payload (channel -> vector).

        Raises:
            RoundTimeout: If the deadline passes first.
            RoundAborted: If ``abort`` is set first.
        """
        expected = set(self.topology.neighbors(receiver))
        received: dict[NodeId, dict[str, ParamVector]] = {}
        inbox = self.inboxes[receiver]

        while len(received) < len(expected):
            if abort is not None and abort.is_set():
                raise RoundAborted(f"Round {round_index} aborted while node {receiver} waited")

            wait = _POLL_SECONDS
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0.0:
                    raise RoundTimeout(
                        round_index,
                        timeout=timeout,
                        missing=sorted(expected - set(received)),
                    )
                wait = min(wait, remaining)

            try:
                message = inbox.get(timeout=wait)
            except queue.Empty:
                continue

            if message.round_index != round_index or message.attempt != attempt:
                continue
            if message.sender not in expected:
                raise ValueError(
                    f"Node {receiver} received a state from non-neighbour {message.sender}"
                )
            received[message.sender] = dict(message.payload)

        return received

    def pending(self, node: NodeId) -> int:
        """Approximate number of undelivered messages in a node's inbox."""
        return self.inboxes[node].qsize()

    def drain(self) -> int:
        """Discard every queued message (used after an aborted round)."""
        dropped = 0
        for inbox in self.inboxes.values():
            while True:
                try:
                    inbox.get_nowait()
                except queue.Empty:
                    break
                dropped += 1
        return dropped

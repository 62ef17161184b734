"""Order-book event records produced by the synthetic generator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

__all__ = ["EventKind", "Side", "OrderEvent"]


class EventKind(str, Enum):
    """What happened to the book."""

    LIMIT = "limit"
    CANCEL = "cancel"
    TRADE = "trade"


class Side(str, Enum):
    BID = "bid"
    ASK = "ask"

    @property
    def opposite(self) -> Side:
        return Side.ASK if self is Side.BID else Side.BID


@dataclass(frozen=True, slots=True)
class OrderEvent:
    """A single order-book event.

    Attributes:
        partition: Partition (worker) the event stream belongs to.
        sequence: 0-based position within the partition stream.
        timestamp: Event time in seconds since the stream start.
        kind: LIMIT (new resting order), CANCEL or TRADE.
        side: Resting side for LIMIT/CANCEL; aggressor side for TRADE
            (BID = buyer-initiated, lifts the ask).
        price: Order price (LIMIT/CANCEL) or execution price (TRADE).
        size: Order size, cancelled size, or executed size.
        order_id: Resting order id (LIMIT/CANCEL) or aggressor id (TRADE).
    """

    partition: int
    sequence: int
    timestamp: float
    kind: EventKind
    side: Side
    price: float
    size: float
    order_id: int

    def as_tuple(self) -> tuple[int, int, float, str, str, float, float, int]:
        return (
            self.partition,
            self.sequence,
            self.timestamp,
            self.kind.value,
            self.side.value,
            self.price,
            self.size,
            self.order_id,
        )

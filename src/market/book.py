"""Price-time priority limit order book.

Used by the generator to keep its event stream consistent (cancels refer
to resting orders, trades hit the best opposite level) and by the feature
pipeline to replay a stream into snapshots.
"""

from __future__ import annotations

import bisect
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from market.events import EventKind, OrderEvent, Side

__all__ = ["Level", "BookSnapshot", "LimitOrderBook"]

# (price, total resting volume)
Level = tuple[float, float]


@dataclass(frozen=True, slots=True)
class BookSnapshot:
    """Top-of-book view at a point in time.

    Attributes:
        timestamp: Time of the last event applied before the snapshot.
        bids: Bid levels, best (highest) first.
        asks: Ask levels, best (lowest) first.
    """

    timestamp: float
    bids: tuple[Level, ...]
    asks: tuple[Level, ...]

    @property
    def best_bid(self) -> float | None:
        return self.bids[0][0] if self.bids else None

    @property
    def best_ask(self) -> float | None:
        return self.asks[0][0] if self.asks else None

    @property
    def is_two_sided(self) -> bool:
        return bool(self.bids) and bool(self.asks)

    @property
    def mid(self) -> float | None:
        if not self.is_two_sided:
            return None
        return (self.bids[0][0] + self.asks[0][0]) / 2.0


class LimitOrderBook:
    """Order book holding individual resting orders per price level.

    Example:
        >>> book = LimitOrderBook()
        >>> book.add(1, Side.BID, 99.0, 2.0)
        >>> book.add(2, Side.ASK, 101.0, 1.0)
        >>> book.mid()
        100.0
        >>> book.execute(Side.BID, 5.0)
        (101.0, 1.0)
    """

    def __init__(self) -> None:
        # price -> FIFO of [order_id, remaining size]
        self._levels: dict[Side, dict[float, deque[list[float]]]] = {Side.BID: {}, Side.ASK: {}}
        # ascending price lists per side
        self._prices: dict[Side, list[float]] = {Side.BID: [], Side.ASK: []}
        # order_id -> (side, price), insertion ordered
        self._orders: dict[int, tuple[Side, float]] = {}

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_id: int) -> bool:
        return order_id in self._orders

    # -- queries --------------------------------------------------------------

    def best_bid(self) -> float | None:
        prices = self._prices[Side.BID]
        return prices[-1] if prices else None

    def best_ask(self) -> float | None:
        prices = self._prices[Side.ASK]
        return prices[0] if prices else None

    def best(self, side: Side) -> float | None:
        return self.best_bid() if side is Side.BID else self.best_ask()

    def mid(self) -> float | None:
        bid, ask = self.best_bid(), self.best_ask()
        if bid is None or ask is None:
            return None
        return (bid + ask) / 2.0

    def levels(self, side: Side, depth: int | None = None) -> list[Level]:
        """Aggregated (price, volume) levels, best first."""
        prices = self._prices[side]
        ordered = reversed(prices) if side is Side.BID else iter(prices)
        result: list[Level] = []
        for price in ordered:
            if depth is not None and len(result) >= depth:
                break
            volume = sum(entry[1] for entry in self._levels[side][price])
            result.append((price, volume))
        return result

    def snapshot(self, timestamp: float, depth: int | None = None) -> BookSnapshot:
        return BookSnapshot(
            timestamp=timestamp,
            bids=tuple(self.levels(Side.BID, depth)),
            asks=tuple(self.levels(Side.ASK, depth)),
        )

    def order_ids(self) -> list[int]:
        """Resting order ids in arrival order."""
        return list(self._orders)

    def order_size(self, order_id: int) -> float:
        side, price = self._orders[order_id]
        for entry in self._levels[side][price]:
            if entry[0] == order_id:
                return entry[1]
        raise KeyError(order_id)

    # -- mutations ------------------------------------------------------------

    def add(self, order_id: int, side: Side, price: float, size: float) -> None:
        """Insert a resting limit order.

        Raises:
            ValueError: On duplicate ids, non-positive sizes or a price that
                would cross the opposite best quote.
        """
        if order_id in self._orders:
            raise ValueError(f"Duplicate order id {order_id}")
        if size <= 0:
            raise ValueError(f"Order size must be positive, got {size}")
        opposite = self.best(side.opposite)
        if opposite is not None and (
            (side is Side.BID and price >= opposite) or (side is Side.ASK and price <= opposite)
        ):
            raise ValueError(f"{side.value} at {price} would cross opposite best {opposite}")

        level = self._levels[side].get(price)
        if level is None:
            level = deque()
            self._levels[side][price] = level
            bisect.insort(self._prices[side], price)
        level.append([order_id, size])
        self._orders[order_id] = (side, price)

    def cancel(self, order_id: int) -> tuple[Side, float, float]:
        """Remove a resting order; returns (side, price, remaining size).

        Raises:
            KeyError: If the order is not resting.
        """
        side, price = self._orders.pop(order_id)
        level = self._levels[side][price]
        for index, entry in enumerate(level):
            if entry[0] == order_id:
                size = entry[1]
                del level[index]
                break
        else:  # pragma: no cover - index and levels always agree
            raise KeyError(order_id)
        if not level:
            self._drop_level(side, price)
        return side, price, size

    def execute(self, aggressor: Side, size: float) -> tuple[float, float]:
        """Match an aggressive order against the best opposite level only.

        Resting orders at that level fill in arrival order; any remainder of
        the aggressive order beyond the level is not executed.

        Returns:
            (execution price, filled size).

        Raises:
            ValueError: If the opposite side is empty or size <= 0.
        """
        if size <= 0:
            raise ValueError(f"Execution size must be positive, got {size}")
        resting = aggressor.opposite
        price = self.best(resting)
        if price is None:
            raise ValueError(f"No resting {resting.value} liquidity to execute against")

        level = self._levels[resting][price]
        remaining = size
        filled = 0.0
        while level and remaining > 0:
            entry = level[0]
            take = min(entry[1], remaining)
            entry[1] -= take
            remaining -= take
            filled += take
            if entry[1] <= 1e-12:
                level.popleft()
                del self._orders[int(entry[0])]
        if not level:
            self._drop_level(resting, price)
        return price, filled

    def apply(self, event: OrderEvent) -> None:
        """Replay one generator event onto this book."""
        if event.kind is EventKind.LIMIT:
            self.add(event.order_id, event.side, event.price, event.size)
        elif event.kind is EventKind.CANCEL:
            self.cancel(event.order_id)
        else:
            self.execute(event.side, event.size)

    def apply_all(self, events: Iterable[OrderEvent]) -> None:
        for event in events:
            self.apply(event)

    def _drop_level(self, side: Side, price: float) -> None:
        del self._levels[side][price]
        prices = self._prices[side]
        index = bisect.bisect_left(prices, price)
        del prices[index]

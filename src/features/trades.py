"""Trade-flow features over a lookback of recent events.

``events`` is always the tail of the window history (oldest first); only
TRADE events contribute to the trade features.
"""

from __future__ import annotations

from collections.abc import Sequence

from features.orderbook import midprice
from market.book import BookSnapshot
from market.events import EventKind, OrderEvent, Side

__all__ = [
    "trades_only",
    "trade_intensity",
    "trade_direction_imbalance",
    "price_impact",
    "event_rate",
]


def trades_only(events: Sequence[OrderEvent]) -> list[OrderEvent]:
    return [e for e in events if e.kind is EventKind.TRADE]


def trade_intensity(events: Sequence[OrderEvent]) -> float:
    """Total traded size in the lookback (0.0 without trades)."""
    return float(sum(e.size for e in trades_only(events)))


def trade_direction_imbalance(events: Sequence[OrderEvent]) -> float:
    """(buy volume - sell volume) / total traded volume, in [-1, 1].

    Buyer-initiated trades have aggressor side BID.
    """
    buy = sell = 0.0
    for event in trades_only(events):
        if event.side is Side.BID:
            buy += event.size
        else:
            sell += event.size
    total = buy + sell
    if total == 0.0:
        return 0.0
    return (buy - sell) / total


def price_impact(events: Sequence[OrderEvent], book: BookSnapshot) -> float:
    """Size-weighted mean trade price minus the current mid (0.0 without trades)."""
    trades = trades_only(events)
    mid = midprice(book)
    volume = sum(e.size for e in trades)
    if volume == 0.0:
        return 0.0
    return sum(e.price * e.size for e in trades) / volume - mid


def event_rate(events: Sequence[OrderEvent]) -> float:
    """Events per second over the lookback."""
    if len(events) < 2:
        return 0.0
    span = events[-1].timestamp - events[0].timestamp
    if span <= 0.0:
        return 0.0
    return (len(events) - 1) / span

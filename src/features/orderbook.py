"""Order-book snapshot features.

Every function takes a BookSnapshot and returns a float. Features that
need a quote on both sides raise InsufficientHistory when a side is empty.
"""

from __future__ import annotations

from core.errors import InsufficientHistory
from market.book import BookSnapshot

__all__ = [
    "spread",
    "midprice",
    "w_midprice",
    "microprice",
    "imbalance",
    "vwap",
    "tav",
    "depth_imbalance",
]


def _require_two_sided(book: BookSnapshot) -> None:
    if not book.is_two_sided:
        raise InsufficientHistory(
            f"Book at t={book.timestamp:.6f} is one-sided "
            f"({len(book.bids)} bid levels, {len(book.asks)} ask levels)"
        )


def spread(book: BookSnapshot) -> float:
    """best_ask - best_bid."""
    _require_two_sided(book)
    return book.asks[0][0] - book.bids[0][0]


def midprice(book: BookSnapshot) -> float:
    """(best_bid + best_ask) / 2."""
    _require_two_sided(book)
    return (book.asks[0][0] + book.bids[0][0]) / 2.0


def w_midprice(book: BookSnapshot) -> float:
    """Best-level prices weighted by their own volumes."""
    _require_two_sided(book)
    (bid, bid_vol), (ask, ask_vol) = book.bids[0], book.asks[0]
    return (bid * bid_vol + ask * ask_vol) / (bid_vol + ask_vol)


def microprice(book: BookSnapshot) -> float:
    """Best-level prices weighted by the opposite side's volume.

    A heavy bid pulls the fair value toward the ask and vice versa.
    """
    _require_two_sided(book)
    (bid, bid_vol), (ask, ask_vol) = book.bids[0], book.asks[0]
    total = bid_vol + ask_vol
    return bid * (ask_vol / total) + ask * (bid_vol / total)


def imbalance(book: BookSnapshot) -> float:
    """ask_volume / (ask_volume + bid_volume) at the best level."""
    _require_two_sided(book)
    bid_vol, ask_vol = book.bids[0][1], book.asks[0][1]
    return ask_vol / (ask_vol + bid_vol)


def vwap(book: BookSnapshot, depth: int) -> float:
    """Volume-weighted price over the top ``depth`` levels of both sides."""
    _require_two_sided(book)
    levels = book.bids[:depth] + book.asks[:depth]
    volume = sum(v for _, v in levels)
    return sum(p * v for p, v in levels) / volume


def tav(book: BookSnapshot, bps: float) -> float:
    """Total available volume within ``bps`` basis points of the best quotes."""
    _require_two_sided(book)
    band = bps / 1e4
    lower_bid = book.bids[0][0] * (1.0 - band)
    upper_ask = book.asks[0][0] * (1.0 + band)
    bid_volume = sum(v for p, v in book.bids if p >= lower_bid)
    ask_volume = sum(v for p, v in book.asks if p <= upper_ask)
    return bid_volume + ask_volume


def depth_imbalance(book: BookSnapshot, depth: int) -> float:
    """(bid_volume - ask_volume) / total over the top ``depth`` levels, in [-1, 1]."""
    _require_two_sided(book)
    bid_volume = sum(v for _, v in book.bids[:depth])
    ask_volume = sum(v for _, v in book.asks[:depth])
    return (bid_volume - ask_volume) / (bid_volume + ask_volume)

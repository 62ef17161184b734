"""Synthetic order-book market: events, book and generator."""

from market.book import BookSnapshot, LimitOrderBook
from market.events import EventKind, OrderEvent, Side
from market.generator import GeneratorConfig, PartitionEvents, generate

__all__ = [
    "BookSnapshot",
    "LimitOrderBook",
    "EventKind",
    "OrderEvent",
    "Side",
    "GeneratorConfig",
    "PartitionEvents",
    "generate",
]

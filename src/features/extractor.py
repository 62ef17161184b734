"""Turn order-book event streams into (feature vector, label) rows.

A MarketWindow is the only input extract() sees. It is split at its
reference time: features read the book snapshot and the history (events at
or before the reference time); the label reads only the snapshot taken at
the label boundary. The window refuses to hold history events after the
reference time, so features cannot see the future.
"""

from __future__ import annotations

import bisect
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field, fields
from typing import Any

import numpy as np

from core.errors import InsufficientHistory
from core.logging import get_logger
from core.types import DataPartition, NodeId
from features import orderbook, trades
from market.book import BookSnapshot, LimitOrderBook
from market.events import OrderEvent

__all__ = [
    "LABELS",
    "Feature",
    "FEATURES",
    "ExtractorConfig",
    "MarketWindow",
    "FeatureExtractor",
]

logger = get_logger(__name__)

LABELS = ("direction", "return")


@dataclass(frozen=True)
class Feature:
    """Registered feature.

    Attributes:
        name: Registry key.
        description: One-line description.
        compute: f(book, recent_events, config) -> float.
        uses_history: True if the feature needs ``config.lookback`` events.
    """

    name: str
    description: str
    compute: Callable[[BookSnapshot, Sequence[OrderEvent], ExtractorConfig], float]
    uses_history: bool = False


FEATURES: dict[str, Feature] = {
    f.name: f
    for f in (
        Feature("spread", "best ask - best bid", lambda b, e, c: orderbook.spread(b)),
        Feature("midprice", "(best bid + best ask) / 2", lambda b, e, c: orderbook.midprice(b)),
        Feature(
            "w_midprice",
            "volume-weighted mid at the best level",
            lambda b, e, c: orderbook.w_midprice(b),
        ),
        Feature(
            "microprice",
            "opposite-volume-weighted mid",
            lambda b, e, c: orderbook.microprice(b),
        ),
        Feature("imbalance", "ask / (ask + bid) volume at best", lambda b, e, c: orderbook.imbalance(b)),
        Feature("vwap", "VWAP over top depth levels", lambda b, e, c: orderbook.vwap(b, c.depth)),
        Feature("tav", "volume within bps of best quotes", lambda b, e, c: orderbook.tav(b, c.bps)),
        Feature(
            "depth_imbalance",
            "(bid - ask) / total volume over top depth levels",
            lambda b, e, c: orderbook.depth_imbalance(b, c.depth),
        ),
        Feature(
            "trade_intensity",
            "traded size over the lookback",
            lambda b, e, c: trades.trade_intensity(e),
            uses_history=True,
        ),
        Feature(
            "trade_direction_imbalance",
            "signed aggressor volume imbalance",
            lambda b, e, c: trades.trade_direction_imbalance(e),
            uses_history=True,
        ),
        Feature(
            "price_impact",
            "mean trade price - current mid",
            lambda b, e, c: trades.price_impact(e, b),
            uses_history=True,
        ),
        Feature(
            "event_rate",
            "events per second over the lookback",
            lambda b, e, c: trades.event_rate(e),
            uses_history=True,
        ),
    )
}


@dataclass(frozen=True)
class ExtractorConfig:
    """Feature and label configuration.

    Attributes:
        features: Registered feature names, in column order.
        lookback: Events of history required by trade-flow features.
        label_horizon: Seconds between the reference time and the label
            boundary.
        label: "direction" (1.0 if the mid rose, else 0.0) or "return"
            (mid return in basis points).
        stride: Events between consecutive reference points.
        depth: Book levels used by depth-based features.
        bps: Band width for "tav", in basis points.
    """

    features: tuple[str, ...] = (
        "spread",
        "imbalance",
        "depth_imbalance",
        "trade_direction_imbalance",
        "trade_intensity",
        "event_rate",
    )
    lookback: int = 50
    label_horizon: float = 1.0
    label: str = "direction"
    stride: int = 10
    depth: int = 5
    bps: float = 10.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "features", tuple(self.features))
        if not self.features:
            raise ValueError("At least one feature must be configured")
        unknown = [name for name in self.features if name not in FEATURES]
        if unknown:
            raise ValueError(f"Unknown features: {unknown}. Available: {sorted(FEATURES)}")
        if len(set(self.features)) != len(self.features):
            raise ValueError(f"Duplicate features in {list(self.features)}")
        if self.label not in LABELS:
            raise ValueError(f"Unknown label: {self.label}. Available: {list(LABELS)}")
        if self.lookback < 1:
            raise ValueError(f"lookback must be >= 1, got {self.lookback}")
        if not self.label_horizon > 0:
            raise ValueError(f"label_horizon must be positive, got {self.label_horizon}")
        if self.stride < 1:
            raise ValueError(f"stride must be >= 1, got {self.stride}")
        if self.depth < 1:
            raise ValueError(f"depth must be >= 1, got {self.depth}")
        if not self.bps > 0:
            raise ValueError(f"bps must be positive, got {self.bps}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractorConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown extractor parameters: {unknown}")
        return cls(**data)


@dataclass(frozen=True)
class MarketWindow:
    """Everything known at one reference time, plus the label boundary.

    Attributes:
        reference_time: Time the features describe.
        book: Book snapshot as of reference_time.
        history: Events with timestamp <= reference_time, most recent last.
        future: Events in (reference_time, reference_time + label_horizon].
            Kept for inspection; extract() never reads it.
        label_book: Book snapshot at the label boundary.
    """

    reference_time: float
    book: BookSnapshot
    history: tuple[OrderEvent, ...] = ()
    future: tuple[OrderEvent, ...] = field(default=(), repr=False)
    label_book: BookSnapshot | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "history", tuple(self.history))
        object.__setattr__(self, "future", tuple(self.future))
        if self.book.timestamp > self.reference_time:
            raise ValueError(
                f"Book snapshot at t={self.book.timestamp} is after the reference time "
                f"{self.reference_time}"
            )
        late = [e.sequence for e in self.history if e.timestamp > self.reference_time]
        if late:
            raise ValueError(f"History events {late[:5]} are after the reference time")
        early = [e.sequence for e in self.future if e.timestamp <= self.reference_time]
        if early:
            raise ValueError(f"Future events {early[:5]} are not after the reference time")
        if self.label_book is not None and self.label_book.timestamp < self.reference_time:
            raise ValueError("Label snapshot precedes the reference time")


class FeatureExtractor:
    """Computes configured features and labels from MarketWindows.

    Example:
        >>> from market import generate
        >>> stream = generate(seed=0, horizon=500, partition_count=1)[0]
        >>> extractor = FeatureExtractor(ExtractorConfig(lookback=20))
        >>> partition = extractor.build_partition(0, stream)
        >>> partition.n_features
        6
    """

    def __init__(self, config: ExtractorConfig | None = None) -> None:
        self.config = config or ExtractorConfig()
        self._features = [FEATURES[name] for name in self.config.features]

    @property
    def feature_names(self) -> tuple[str, ...]:
        return self.config.features

    @property
    def required_lookback(self) -> int:
        """Minimum history length needed by the configured features."""
        if any(f.uses_history for f in self._features):
            return self.config.lookback
        return 1

    def features(self, window: MarketWindow) -> np.ndarray:
        """Feature vector of a window (book and history only)."""
        required = self.required_lookback
        if len(window.history) < required:
            raise InsufficientHistory(
                f"Window at t={window.reference_time:.6f} has {len(window.history)} events, "
                f"features need {required}"
            )
        recent = window.history[-self.config.lookback :]
        values = [f.compute(window.book, recent, self.config) for f in self._features]
        return np.array(values, dtype=np.float64)

    def label(self, window: MarketWindow) -> float:
        """Label of a window (reference and label-boundary books only)."""
        if window.label_book is None:
            raise InsufficientHistory(f"Window at t={window.reference_time:.6f} has no label book")
        start = window.book.mid
        end = window.label_book.mid
        if start is None or end is None:
            raise InsufficientHistory(
                f"Window at t={window.reference_time:.6f} has no two-sided quote for the label"
            )
        if self.config.label == "direction":
            return 1.0 if end > start else 0.0
        return (end - start) / start * 1e4

    def extract(self, window: MarketWindow) -> tuple[np.ndarray, float]:
        """Return (feature vector, label).

        Raises:
            InsufficientHistory: If the history is shorter than the required
                lookback or a needed book side is empty.
        """
        return self.features(window), self.label(window)

    def windows(self, events: Iterable[OrderEvent]) -> Iterator[MarketWindow]:
        """Slide over one partition stream.

        The book is replayed once; reference points are every ``stride``
        events after the first ``lookback`` events. Reference points whose
        label boundary falls after the last event are skipped.
        """
        stream = list(events)
        if not stream:
            return
        cfg = self.config

        book = LimitOrderBook()
        snapshots: list[BookSnapshot] = []
        for event in stream:
            book.apply(event)
            snapshots.append(book.snapshot(event.timestamp, cfg.depth))

        timestamps = [e.timestamp for e in stream]
        last_time = timestamps[-1]
        for index in range(cfg.lookback - 1, len(stream), cfg.stride):
            reference = timestamps[index]
            boundary = reference + cfg.label_horizon
            if boundary > last_time:
                break
            first_future = bisect.bisect_right(timestamps, reference)
            label_index = bisect.bisect_right(timestamps, boundary) - 1
            yield MarketWindow(
                reference_time=reference,
                book=snapshots[index],
                history=tuple(stream[index + 1 - cfg.lookback : index + 1]),
                future=tuple(stream[first_future : label_index + 1]),
                label_book=snapshots[label_index],
            )

    def build_partition(self, node_id: NodeId, events: Iterable[OrderEvent]) -> DataPartition:
        """Extract every window of a stream into a DataPartition.

        Windows raising InsufficientHistory are skipped.
        """
        rows: list[np.ndarray] = []
        labels: list[float] = []
        skipped = 0
        for window in self.windows(events):
            try:
                x, y = self.extract(window)
            except InsufficientHistory as exc:
                skipped += 1
                logger.debug("Node %d: skipping window (%s)", node_id, exc)
                continue
            rows.append(x)
            labels.append(y)

        logger.debug("Node %d: %d rows extracted, %d windows skipped", node_id, len(rows), skipped)
        n_features = len(self.feature_names)
        features = np.vstack(rows) if rows else np.empty((0, n_features))
        return DataPartition(
            node_id=node_id,
            features=features,
            labels=np.array(labels, dtype=np.float64),
            feature_names=self.feature_names,
        )

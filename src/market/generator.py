"""Synthetic limit-order-book event generator.

Each partition is an independent simulation:
- events arrive as a Poisson process with total rate
  limit_rate + cancel_rate + market_rate; the kind of each event is drawn
  proportionally to the three rates
- a reference mid price follows an Ornstein-Uhlenbeck process, sampled
  exactly at every event time
- limit orders are placed k ticks behind the reference mid with
  k ~ Geometric(depth_decay), never crossing the opposite best quote
- order sizes are exponential or Pareto, rounded up to whole lots

The book is simulated alongside the stream, so cancels always refer to a
resting order and trades always hit resting liquidity. Replaying a stream
into an empty LimitOrderBook reproduces the simulated book exactly.
"""

from __future__ import annotations

import math
from collections.abc import Iterator
from dataclasses import dataclass, field, fields
from typing import Any

import numpy as np

from core.errors import InvalidParameters
from core.logging import get_logger
from core.rng import child_seeds, make_rng
from market.book import LimitOrderBook
from market.events import EventKind, OrderEvent, Side

__all__ = ["SIZE_DISTRIBUTIONS", "GeneratorConfig", "PartitionEvents", "generate"]

logger = get_logger(__name__)

SIZE_DISTRIBUTIONS = ("exponential", "pareto")

# Decimal places kept when converting tick counts back to prices
_PRICE_DECIMALS = 10


@dataclass(frozen=True)
class GeneratorConfig:
    """Parameters of the stochastic order-flow model.

    Attributes:
        limit_rate: Limit-order arrival intensity (events per second).
        cancel_rate: Cancellation intensity.
        market_rate: Market-order intensity.
        initial_mid: Reference mid price at t = 0.
        mean_reversion: OU mean-reversion speed theta.
        long_run_mid: OU long-run level mu (defaults to initial_mid).
        volatility: OU volatility sigma (price units per sqrt(second)).
        tick_size: Price grid spacing.
        lot_size: Size grid spacing.
        size_distribution: "exponential" or "pareto".
        size_scale: Mean (exponential) or minimum (pareto) raw order size.
        pareto_alpha: Pareto tail exponent, must exceed 1 for a finite mean.
        depth_decay: Success probability of the geometric placement depth;
            larger values keep orders closer to the mid.
        initial_depth: Levels seeded on each side at t = 0.
    """

    limit_rate: float = 10.0
    cancel_rate: float = 4.0
    market_rate: float = 2.0
    initial_mid: float = 100.0
    mean_reversion: float = 0.5
    long_run_mid: float | None = None
    volatility: float = 0.05
    tick_size: float = 0.01
    lot_size: float = 1.0
    size_distribution: str = "exponential"
    size_scale: float = 5.0
    pareto_alpha: float = 2.5
    depth_decay: float = 0.3
    initial_depth: int = 5

    def __post_init__(self) -> None:
        positive = (
            "limit_rate",
            "cancel_rate",
            "market_rate",
            "initial_mid",
            "mean_reversion",
            "volatility",
            "tick_size",
            "lot_size",
            "size_scale",
        )
        for name in positive:
            value = getattr(self, name)
            if not (math.isfinite(value) and value > 0):
                raise InvalidParameters(f"{name} must be positive and finite, got {value}")
        if self.long_run_mid is not None and not self.long_run_mid > 0:
            raise InvalidParameters(f"long_run_mid must be positive, got {self.long_run_mid}")
        if self.size_distribution not in SIZE_DISTRIBUTIONS:
            raise InvalidParameters(
                f"Unknown size distribution: {self.size_distribution}. "
                f"Available: {list(SIZE_DISTRIBUTIONS)}"
            )
        if not self.pareto_alpha > 1.0:
            raise InvalidParameters(f"pareto_alpha must be > 1, got {self.pareto_alpha}")
        if not 0.0 < self.depth_decay <= 1.0:
            raise InvalidParameters(f"depth_decay must be in (0, 1], got {self.depth_decay}")
        if self.initial_depth < 0:
            raise InvalidParameters(f"initial_depth must be >= 0, got {self.initial_depth}")

    @property
    def total_rate(self) -> float:
        return self.limit_rate + self.cancel_rate + self.market_rate

    @property
    def mu(self) -> float:
        return self.initial_mid if self.long_run_mid is None else self.long_run_mid

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeneratorConfig:
        """Build from a plain dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidParameters(f"Unknown generator parameters: {unknown}")
        return cls(**data)


def ou_step(x: float, dt: float, config: GeneratorConfig, z: float) -> float:
    """Exact Ornstein-Uhlenbeck transition over ``dt`` given a N(0, 1) draw."""
    theta = config.mean_reversion
    decay = math.exp(-theta * dt)
    std = config.volatility * math.sqrt((1.0 - decay * decay) / (2.0 * theta))
    return config.mu + (x - config.mu) * decay + std * z


class _Simulation:
    """Mutable state of one partition stream while it is being iterated."""

    def __init__(self, partition: int, seed: np.random.SeedSequence, config: GeneratorConfig):
        self.partition = partition
        self.config = config
        self.rng = make_rng(seed)
        self.book = LimitOrderBook()
        self.time = 0.0
        self.mid = config.initial_mid
        self.next_order_id = 0
        self.sequence = 0

    def _price(self, ticks: int) -> float:
        return round(ticks * self.config.tick_size, _PRICE_DECIMALS)

    def _ticks(self, price: float) -> int:
        return int(round(price / self.config.tick_size))

    def _draw_size(self) -> float:
        cfg = self.config
        if cfg.size_distribution == "exponential":
            raw = self.rng.exponential(cfg.size_scale)
        else:
            # numpy's pareto is Lomax; shift to a classical Pareto with x_m = scale
            raw = cfg.size_scale * (1.0 + self.rng.pareto(cfg.pareto_alpha))
        lots = max(1, math.ceil(raw / cfg.lot_size))
        return lots * cfg.lot_size

    def _limit_price(self, side: Side, depth: int) -> float:
        """Price ``depth`` ticks behind the reference mid (depth >= 1)."""
        anchor = math.floor(self.mid / self.config.tick_size)
        if side is Side.BID:
            ticks = anchor - (depth - 1)
            best_ask = self.book.best_ask()
            if best_ask is not None:
                ticks = min(ticks, self._ticks(best_ask) - 1)
        else:
            ticks = anchor + depth
            best_bid = self.book.best_bid()
            if best_bid is not None:
                ticks = max(ticks, self._ticks(best_bid) + 1)
        return self._price(max(ticks, 1))

    def _emit(self, kind: EventKind, side: Side, price: float, size: float, order_id: int) -> OrderEvent:
        event = OrderEvent(
            partition=self.partition,
            sequence=self.sequence,
            timestamp=self.time,
            kind=kind,
            side=side,
            price=price,
            size=size,
            order_id=order_id,
        )
        self.sequence += 1
        return event

    def _new_order_id(self) -> int:
        order_id = self.next_order_id
        self.next_order_id += 1
        return order_id

    def limit(self, side: Side, depth: int) -> OrderEvent:
        price = self._limit_price(side, depth)
        size = self._draw_size()
        order_id = self._new_order_id()
        self.book.add(order_id, side, price, size)
        return self._emit(EventKind.LIMIT, side, price, size, order_id)

    def random_limit(self) -> OrderEvent:
        side = Side.BID if self.rng.random() < 0.5 else Side.ASK
        depth = int(self.rng.geometric(self.config.depth_decay))
        return self.limit(side, depth)

    def cancel(self) -> OrderEvent:
        resting = self.book.order_ids()
        if not resting:
            return self.random_limit()
        order_id = resting[int(self.rng.integers(len(resting)))]
        side, price, size = self.book.cancel(order_id)
        return self._emit(EventKind.CANCEL, side, price, size, order_id)

    def market(self) -> OrderEvent:
        aggressor = Side.BID if self.rng.random() < 0.5 else Side.ASK
        if self.book.best(aggressor.opposite) is None:
            return self.random_limit()
        size = self._draw_size()
        price, filled = self.book.execute(aggressor, size)
        return self._emit(EventKind.TRADE, aggressor, price, filled, self._new_order_id())

    def seed_book(self) -> Iterator[OrderEvent]:
        """Initial resting liquidity at t = 0, alternating bid and ask."""
        for depth in range(1, self.config.initial_depth + 1):
            yield self.limit(Side.BID, depth)
            yield self.limit(Side.ASK, depth)

    def step(self) -> OrderEvent:
        cfg = self.config
        dt = self.rng.exponential(1.0 / cfg.total_rate)
        self.time += dt
        self.mid = max(ou_step(self.mid, dt, cfg, self.rng.standard_normal()), cfg.tick_size)

        draw = self.rng.random() * cfg.total_rate
        if draw < cfg.limit_rate:
            return self.random_limit()
        if draw < cfg.limit_rate + cfg.cancel_rate:
            return self.cancel()
        return self.market()


@dataclass(frozen=True)
class PartitionEvents:
    """Lazy, finite, restartable event stream for one partition.

    Every call to ``iter()`` restarts the simulation from the partition's
    seed, so iterating twice yields identical events.

    Attributes:
        partition: Partition index.
        seed: Child seed sequence of this partition.
        horizon: Number of events in the stream.
        config: Order-flow model parameters.
    """

    partition: int
    seed: np.random.SeedSequence = field(repr=False)
    horizon: int
    config: GeneratorConfig

    def __len__(self) -> int:
        return self.horizon

    def __iter__(self) -> Iterator[OrderEvent]:
        sim = _Simulation(self.partition, self.seed, self.config)
        emitted = 0
        for event in sim.seed_book():
            if emitted >= self.horizon:
                return
            yield event
            emitted += 1
        while emitted < self.horizon:
            yield sim.step()
            emitted += 1


def generate(
    seed: int,
    horizon: int,
    partition_count: int,
    config: GeneratorConfig | None = None,
) -> list[PartitionEvents]:
    """Create one independent event stream per partition.

    Args:
        seed: Master seed; partition i uses the i-th spawned child seed.
        horizon: Events per partition.
        partition_count: Number of partitions (usually one per worker).
        config: Order-flow model; defaults to GeneratorConfig().

    Returns:
        List of lazy PartitionEvents, one per partition.

    Raises:
        InvalidParameters: If seed is negative or horizon or partition_count
            is below 1.

    Example:
        >>> streams = generate(seed=42, horizon=100, partition_count=3)
        >>> len(streams), len(list(streams[0]))
        (3, 100)
    """
    if horizon < 1:
        raise InvalidParameters(f"horizon must be >= 1, got {horizon}")
    if seed < 0:
        raise InvalidParameters(f"seed must be non-negative, got {seed}")
    if partition_count < 1:
        raise InvalidParameters(f"partition_count must be >= 1, got {partition_count}")
    config = config or GeneratorConfig()

    logger.debug(
        "Generating %d partitions x %d events (seed=%d, total rate %.3g/s)",
        partition_count,
        horizon,
        seed,
        config.total_rate,
    )
    return [
        PartitionEvents(partition=i, seed=child, horizon=horizon, config=config)
        for i, child in enumerate(child_seeds(seed, partition_count))
    ]

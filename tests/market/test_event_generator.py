"""Tests for the synthetic order-flow generator."""

from __future__ import annotations

import math

import numpy as np
import pytest

from core.errors import InvalidParameters
from market.book import LimitOrderBook
from market.events import EventKind, Side
from market.generator import GeneratorConfig, generate, ou_step

# =============================================================================
# Determinism
# =============================================================================


class TestDeterminism:
    """Same seed, same events."""

    def test_same_seed_identical_streams(self) -> None:
        first = [[e.as_tuple() for e in stream] for stream in generate(42, 1000, 3)]
        second = [[e.as_tuple() for e in stream] for stream in generate(42, 1000, 3)]
        assert first == second
        assert [len(s) for s in first] == [1000, 1000, 1000]

    def test_iterating_twice_restarts(self) -> None:
        stream = generate(7, 200, 1)[0]
        assert [e.as_tuple() for e in stream] == [e.as_tuple() for e in stream]

    def test_partitions_are_independent(self) -> None:
        streams = generate(42, 300, 2)
        a = [e.as_tuple()[1:] for e in streams[0]]
        b = [e.as_tuple()[1:] for e in streams[1]]
        assert a != b

    def test_different_seed_differs(self) -> None:
        a = [e.as_tuple() for e in generate(1, 200, 1)[0]]
        b = [e.as_tuple() for e in generate(2, 200, 1)[0]]
        assert a != b

    def test_partition_count_does_not_change_earlier_streams(self) -> None:
        small = [e.as_tuple() for e in generate(5, 150, 2)[1]]
        large = [e.as_tuple() for e in generate(5, 150, 4)[1]]
        assert small == large


# =============================================================================
# Stream consistency
# =============================================================================


class TestStreamConsistency:
    def test_replay_matches_and_never_crosses(self) -> None:
        """Every event is valid against a book replayed from scratch."""
        config = GeneratorConfig(market_rate=5.0, cancel_rate=5.0)
        book = LimitOrderBook()
        for event in generate(3, 2000, 1, config)[0]:
            book.apply(event)
            bid, ask = book.best_bid(), book.best_ask()
            if bid is not None and ask is not None:
                assert bid < ask

    def test_sequence_timestamps_and_partition(self) -> None:
        stream = generate(11, 500, 2)[1]
        events = list(stream)
        assert [e.sequence for e in events] == list(range(500))
        assert all(e.partition == 1 for e in events)
        times = [e.timestamp for e in events]
        assert times == sorted(times)

    def test_seed_book_at_time_zero(self) -> None:
        config = GeneratorConfig(initial_depth=3)
        events = list(generate(0, 10, 1, config)[0])
        seeded = events[:6]
        assert all(e.timestamp == 0.0 and e.kind is EventKind.LIMIT for e in seeded)
        assert [e.side for e in seeded] == [Side.BID, Side.ASK] * 3
        assert events[6].timestamp > 0.0

    def test_horizon_shorter_than_seed(self) -> None:
        events = list(generate(0, 3, 1)[0])
        assert len(events) == 3

    def test_prices_on_tick_grid_and_sizes_on_lot_grid(self) -> None:
        config = GeneratorConfig(tick_size=0.05, lot_size=10.0, size_distribution="pareto")
        for event in generate(9, 800, 1, config)[0]:
            assert event.price / 0.05 == pytest.approx(round(event.price / 0.05), abs=1e-6)
            if event.kind is EventKind.LIMIT:
                assert event.size / 10.0 == pytest.approx(round(event.size / 10.0))
                assert event.size >= 10.0

    def test_all_event_kinds_appear(self) -> None:
        kinds = {e.kind for e in generate(4, 1000, 1)[0]}
        assert kinds == {EventKind.LIMIT, EventKind.CANCEL, EventKind.TRADE}

    def test_trade_count_tracks_market_rate(self) -> None:
        """Roughly market_rate / total_rate of the events are trades."""
        config = GeneratorConfig(limit_rate=10.0, cancel_rate=2.0, market_rate=4.0)
        events = list(generate(8, 5000, 1, config)[0])
        fraction = sum(e.kind is EventKind.TRADE for e in events) / len(events)
        assert fraction == pytest.approx(0.25, abs=0.05)


# =============================================================================
# Config and OU process
# =============================================================================


class TestGeneratorConfig:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"limit_rate": 0.0},
            {"volatility": -1.0},
            {"tick_size": float("inf")},
            {"size_distribution": "lognormal"},
            {"pareto_alpha": 1.0},
            {"depth_decay": 0.0},
            {"initial_depth": -1},
            {"long_run_mid": -5.0},
        ],
    )
    def test_invalid_parameters(self, kwargs: dict) -> None:
        with pytest.raises(InvalidParameters):
            GeneratorConfig(**kwargs)

    def test_from_dict_rejects_unknown(self) -> None:
        with pytest.raises(InvalidParameters, match="Unknown generator parameters"):
            GeneratorConfig.from_dict({"drift": 0.1})

    def test_mu_defaults_to_initial_mid(self) -> None:
        assert GeneratorConfig(initial_mid=50.0).mu == 50.0
        assert GeneratorConfig(initial_mid=50.0, long_run_mid=60.0).mu == 60.0

    def test_generate_rejects_bad_sizes(self) -> None:
        with pytest.raises(InvalidParameters, match="horizon"):
            generate(0, 0, 1)
        with pytest.raises(InvalidParameters, match="partition_count"):
            generate(0, 10, 0)

    def test_generate_rejects_negative_seed(self) -> None:
        with pytest.raises(InvalidParameters, match="seed must be non-negative"):
            generate(-1, 10, 1)

    def test_invalid_parameters_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            GeneratorConfig(market_rate=-1.0)


class TestOrnsteinUhlenbeck:
    def test_deterministic_part_decays_to_mu(self) -> None:
        config = GeneratorConfig(initial_mid=100.0, long_run_mid=90.0, mean_reversion=2.0)
        x = ou_step(100.0, 0.5, config, 0.0)
        assert x == pytest.approx(90.0 + 10.0 * math.exp(-1.0))

    def test_stationary_variance(self) -> None:
        """Long steps sample from N(mu, sigma^2 / (2 theta))."""
        config = GeneratorConfig(mean_reversion=1.0, volatility=0.2)
        rng = np.random.default_rng(0)
        samples = np.array([ou_step(100.0, 50.0, config, z) for z in rng.standard_normal(4000)])
        assert samples.mean() == pytest.approx(100.0, abs=0.01)
        assert samples.var() == pytest.approx(0.02, rel=0.1)

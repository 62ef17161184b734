"""Tests for core types, errors, rng and run configuration."""

from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from core.config import RunConfig, apply_overrides, load_run_config
from core.errors import DidNotConverge, DivergedState, RoundTimeout
from core.rng import child_seeds, make_rng, random_initial_states
from core.types import (
    ConvergenceHistory,
    ConvergenceRecord,
    DataPartition,
    RunResult,
    RunStatus,
)

# =============================================================================
# DataPartition
# =============================================================================


class TestDataPartition:
    """Tests for immutable training partitions."""

    def test_arrays_are_copied_and_read_only(self) -> None:
        """Mutating the source must not change the partition."""
        X = np.ones((3, 2))
        y = np.zeros(3)
        partition = DataPartition(node_id=0, features=X, labels=y)

        X[0, 0] = 99.0
        assert partition.features[0, 0] == 1.0
        with pytest.raises(ValueError):
            partition.features[0, 0] = 5.0

    def test_len_and_n_features(self) -> None:
        partition = DataPartition(node_id=1, features=np.zeros((4, 3)), labels=np.zeros(4))
        assert len(partition) == 4
        assert partition.n_features == 3

    def test_row_mismatch_raises(self) -> None:
        with pytest.raises(ValueError, match="Row mismatch"):
            DataPartition(node_id=0, features=np.zeros((3, 2)), labels=np.zeros(2))

    def test_feature_names_length_checked(self) -> None:
        with pytest.raises(ValueError, match="feature names"):
            DataPartition(
                node_id=0,
                features=np.zeros((2, 2)),
                labels=np.zeros(2),
                feature_names=("a",),
            )

    def test_features_must_be_2d(self) -> None:
        with pytest.raises(ValueError, match="2-dimensional"):
            DataPartition(node_id=0, features=np.zeros(3), labels=np.zeros(3))


# =============================================================================
# ConvergenceHistory / RunResult
# =============================================================================


class TestConvergenceHistory:
    """Tests for the per-round history."""

    def test_append_and_last(self) -> None:
        history = ConvergenceHistory()
        history.append(ConvergenceRecord(1, 2.0, 0.5, 0.1))
        history.append(ConvergenceRecord(2, 1.0, 0.25, 0.1, attempts=3))

        assert len(history) == 2
        assert history.last().round_index == 2
        assert history.objectives() == [2.0, 1.0]
        assert history.disagreements() == [0.5, 0.25]
        assert history.total_retries() == 2

    def test_round_indices_must_increase(self) -> None:
        history = ConvergenceHistory()
        history.append(ConvergenceRecord(1, 1.0, 0.1, 0.1))
        with pytest.raises(ValueError, match="does not follow"):
            history.append(ConvergenceRecord(1, 1.0, 0.1, 0.1))

    def test_last_on_empty_raises(self) -> None:
        with pytest.raises(IndexError):
            ConvergenceHistory().last()

    def test_to_dicts(self) -> None:
        history = ConvergenceHistory()
        history.append(ConvergenceRecord(1, 0.5, 0.1, 0.01))
        assert history.to_dicts() == [
            {"round": 1, "objective": 0.5, "disagreement": 0.1, "learning_rate": 0.01, "attempts": 1}
        ]


class TestRunResult:
    def _result(self, status: RunStatus, diagnostic: Exception | None = None) -> RunResult:
        return RunResult(
            state=np.zeros(2),
            status=status,
            history=ConvergenceHistory(),
            agent_states={0: np.zeros(2)},
            rounds=0,
            diagnostic=diagnostic,
        )

    def test_final_disagreement_without_rounds_is_inf(self) -> None:
        assert self._result(RunStatus.CANCELLED).final_disagreement() == float("inf")

    def test_raise_for_status(self) -> None:
        self._result(RunStatus.CONVERGED).raise_for_status()

        error = DivergedState(0, float("inf"), 10.0)
        with pytest.raises(DivergedState):
            self._result(RunStatus.DIVERGED, error).raise_for_status()

        with pytest.raises(RuntimeError, match="cancelled"):
            self._result(RunStatus.CANCELLED).raise_for_status()


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    def test_diverged_state_message(self) -> None:
        error = DivergedState(3, 1e9, 1e6)
        assert error.node_id == 3
        assert "Agent 3 diverged" in str(error)

    def test_round_timeout_sorted_missing(self) -> None:
        error = RoundTimeout(4, timeout=0.5, missing=[2, 0])
        assert error.missing == (0, 2)
        assert "missing states from [0, 2]" in str(error)

    def test_did_not_converge_fields(self) -> None:
        error = DidNotConverge(10, 0.3, 1e-6)
        assert error.rounds == 10
        assert error.disagreement == pytest.approx(0.3)


# =============================================================================
# RNG
# =============================================================================


class TestRng:
    def test_child_seeds_are_reproducible(self) -> None:
        a = [make_rng(s).random() for s in child_seeds(7, 3)]
        b = [make_rng(s).random() for s in child_seeds(7, 3)]
        assert a == b
        assert len(set(a)) == 3

    def test_negative_count_raises(self) -> None:
        with pytest.raises(ValueError, match="count"):
            child_seeds(0, -1)

    def test_random_initial_states(self) -> None:
        states = random_initial_states(1, 4, 3, scale=2.0)
        assert sorted(states) == [0, 1, 2, 3]
        assert all(v.shape == (3,) for v in states.values())
        again = random_initial_states(1, 4, 3, scale=2.0)
        np.testing.assert_array_equal(states[2], again[2])


# =============================================================================
# RunConfig
# =============================================================================


class TestRunConfig:
    def test_defaults(self) -> None:
        config = RunConfig()
        assert config.task == "market"
        assert config.resolved_partition_count == config.node_count

    def test_unknown_keys_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown config keys"):
            RunConfig.from_dict({"learning_rte": 0.1})

    def test_unknown_task_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown task"):
            RunConfig(task="mnist")

    def test_edges_roundtrip_to_lists(self) -> None:
        config = RunConfig(edges=[[0, 1], [1, 2, 0.5]], node_count=3)
        assert config.edges == ((0, 1), (1, 2, 0.5))
        assert config.to_dict()["edges"] == [[0, 1], [1, 2, 0.5]]

    def test_apply_overrides_dotted(self) -> None:
        base = {"extractor": {"lookback": 10}, "seed": 1}
        result = apply_overrides(base, ["extractor.stride=5", "seed=3", "strategy=gradient_tracking"])
        assert result == {
            "extractor": {"lookback": 10, "stride": 5},
            "seed": 3,
            "strategy": "gradient_tracking",
        }
        # original untouched
        assert base == {"extractor": {"lookback": 10}, "seed": 1}

    def test_apply_overrides_requires_equals(self) -> None:
        with pytest.raises(ValueError, match="key=value"):
            apply_overrides({}, ["seed"])

    def test_load_run_config_file_and_overrides(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"node_count": 4, "topology": "complete"}))
        config = load_run_config(path, ["node_count=6"])
        assert config.node_count == 6
        assert config.topology == "complete"

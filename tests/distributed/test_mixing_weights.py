"""Tests for mixing-matrix construction."""

from __future__ import annotations

import numpy as np
import pytest

from core.errors import IllConditionedGraph
from distributed.graph import build
from distributed.topology import complete, path, ring, star
from distributed.weights import (
    check_mixing_matrix,
    is_doubly_stochastic,
    laplacian_step_bound,
    metropolis_hastings_rows,
    mixing_matrix,
    mixing_rows,
    row_sums_close_to_one,
    second_largest_eigenvalue_magnitude,
    spectral_gap,
)

# =============================================================================
# Metropolis-Hastings
# =============================================================================


class TestMetropolisHastings:
    """Tests for Metropolis-Hastings weights."""

    def test_ring_weights(self) -> None:
        """On a ring every degree is 2, so all weights are 1/3."""
        rows = metropolis_hastings_rows(ring(4))
        assert rows[0] == pytest.approx({1: 1 / 3, 3: 1 / 3, 0: 1 / 3})

    def test_star_weights_use_max_degree(self) -> None:
        rows = metropolis_hastings_rows(star(4))
        # hub has degree 3, leaves 1
        assert rows[1][0] == pytest.approx(0.25)
        assert rows[1][1] == pytest.approx(0.75)
        assert rows[0][0] == pytest.approx(0.25)

    def test_rows_sum_to_one(self) -> None:
        assert row_sums_close_to_one(metropolis_hastings_rows(path(6)))
        assert not row_sums_close_to_one({0: {0: 0.4, 1: 0.4}})

    @pytest.mark.parametrize("graph", [ring(5), star(6), path(4), complete(3)])
    def test_matrix_is_symmetric_doubly_stochastic(self, graph) -> None:
        W = mixing_matrix(graph)
        np.testing.assert_allclose(W, W.T)
        assert is_doubly_stochastic(W)
        assert np.all(W >= 0)

    def test_matrix_is_read_only(self) -> None:
        W = mixing_matrix(ring(3))
        with pytest.raises(ValueError):
            W[0, 0] = 1.0

    def test_weighted_edges_ignore_weight(self) -> None:
        """Degrees are unweighted, so edge weights do not change W."""
        plain = mixing_matrix(build(3, [(0, 1), (1, 2)]))
        weighted = mixing_matrix(build(3, [(0, 1, 5.0), (1, 2, 0.1)]))
        np.testing.assert_allclose(plain, weighted)


# =============================================================================
# Laplacian weights
# =============================================================================


class TestLaplacianWeights:
    def test_default_step_is_stability_bound(self) -> None:
        g = ring(4)  # lambda_max = 4
        assert laplacian_step_bound(g) == pytest.approx(0.25)
        W = mixing_matrix(g, "laplacian")
        assert is_doubly_stochastic(W)
        assert W[0, 0] == pytest.approx(0.5)

    def test_custom_step(self) -> None:
        W = mixing_matrix(ring(4), "laplacian", 0.1)
        assert W[0, 1] == pytest.approx(0.1)
        assert W[0, 0] == pytest.approx(0.8)

    def test_step_above_bound_raises(self) -> None:
        with pytest.raises(IllConditionedGraph, match="exceeds stability bound"):
            mixing_matrix(ring(4), "laplacian", 0.3)

    def test_non_positive_step_raises(self) -> None:
        with pytest.raises(IllConditionedGraph, match="must be positive"):
            mixing_matrix(ring(4), "laplacian", 0.0)

    def test_weighted_graph_uses_weights(self) -> None:
        W = mixing_matrix(build(2, [(0, 1, 2.0)]), "laplacian", 0.1)
        assert W[0, 1] == pytest.approx(0.2)

    def test_single_node_is_identity(self) -> None:
        W = mixing_matrix(build(1, []), "laplacian")
        np.testing.assert_array_equal(W, [[1.0]])

    def test_unknown_method(self) -> None:
        with pytest.raises(ValueError, match="Unknown mixing method"):
            mixing_matrix(ring(3), "max_degree")


# =============================================================================
# Rows and spectral quantities
# =============================================================================


class TestMixingAnalysis:
    def test_mixing_rows_restricted_to_neighbourhood(self) -> None:
        g = path(3)
        rows = mixing_rows(mixing_matrix(g), g)
        assert sorted(rows[0]) == [0, 1]
        assert sorted(rows[1]) == [0, 1, 2]
        assert sum(rows[1].values()) == pytest.approx(1.0)

    def test_slem_below_one_for_connected_graph(self) -> None:
        W = mixing_matrix(ring(6))
        slem = second_largest_eigenvalue_magnitude(W)
        assert 0.0 < slem < 1.0
        assert spectral_gap(W) == pytest.approx(1.0 - slem)

    def test_slem_of_averaging_matrix_is_zero(self) -> None:
        W = np.full((4, 4), 0.25)
        assert second_largest_eigenvalue_magnitude(W) == pytest.approx(0.0, abs=1e-12)

    def test_is_doubly_stochastic_rejects(self) -> None:
        assert not is_doubly_stochastic(np.array([[0.5, 0.5], [0.2, 0.8]]))
        assert not is_doubly_stochastic(np.array([[1.5, -0.5], [-0.5, 1.5]]))
        assert not is_doubly_stochastic(np.ones((2, 3)))


# =============================================================================
# Caller-supplied matrices
# =============================================================================


class TestCheckMixingMatrix:
    """A supplied matrix must be a valid mixing matrix for this graph."""

    @pytest.mark.parametrize("method", ["metropolis_hastings", "laplacian"])
    def test_built_matrices_pass(self, method: str) -> None:
        graph = ring(5)
        check_mixing_matrix(mixing_matrix(graph, method), graph)

    def test_weight_on_non_edge(self) -> None:
        """A complete-graph matrix has mass on pairs the ring does not connect."""
        with pytest.raises(IllConditionedGraph, match="not a graph edge"):
            check_mixing_matrix(mixing_matrix(complete(5)), ring(5))

    def test_not_symmetric(self) -> None:
        W = np.array([[0.5, 0.5, 0.0], [0.0, 0.5, 0.5], [0.5, 0.0, 0.5]])
        with pytest.raises(IllConditionedGraph, match="not symmetric"):
            check_mixing_matrix(W, complete(3))

    def test_rows_not_stochastic(self) -> None:
        W = 0.9 * mixing_matrix(ring(4))
        with pytest.raises(IllConditionedGraph, match="not doubly stochastic"):
            check_mixing_matrix(W, ring(4))

    def test_negative_entry(self) -> None:
        W = np.array([[1.5, -0.5], [-0.5, 1.5]])
        with pytest.raises(IllConditionedGraph, match="not doubly stochastic"):
            check_mixing_matrix(W, path(2))

    def test_shape_mismatch(self) -> None:
        with pytest.raises(ValueError, match="must be \\(4, 4\\)"):
            check_mixing_matrix(np.eye(3), ring(4))

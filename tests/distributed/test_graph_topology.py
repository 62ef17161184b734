"""Tests for worker graphs, standard topologies and spectral analysis."""

from __future__ import annotations

import numpy as np
import pytest

from core.errors import InvalidTopology
from distributed.graph import (
    adjacency_matrix,
    build,
    fiedler_value,
    fiedler_vector,
    is_connected,
    laplacian,
    spectrum,
)
from distributed.topology import complete, from_name, grid, path, ring, star

# =============================================================================
# build()
# =============================================================================


class TestBuild:
    """Tests for edge-list validation."""

    def test_neighbors_sorted_and_symmetric(self) -> None:
        g = build(4, [(2, 0), (0, 1), (3, 2)])
        assert g.neighbors(0) == (1, 2)
        assert g.neighbors(2) == (0, 3)
        for i in range(4):
            for j in g.neighbors(i):
                assert i in g.neighbors(j)

    def test_edges_are_canonical(self) -> None:
        g = build(3, [(2, 1), (1, 0, 2.5)])
        assert g.edges == ((0, 1, 2.5), (1, 2, 1.0))
        assert g.edge_weight(1, 0) == 2.5
        assert g.edge_weight(0, 2) == 0.0
        assert g.edge_count == 2

    def test_single_node_without_edges(self) -> None:
        g = build(1, [])
        assert g.num_nodes() == 1
        assert g.neighbors(0) == ()

    @pytest.mark.parametrize(
        ("edges", "match"),
        [
            ([(0, 0), (1, 2)], "Self-loop"),
            ([(0, 5), (1, 2)], "outside"),
            ([(0, 1), (1, 0), (1, 2)], "Duplicate edge"),
            ([(0, 1, -1.0), (1, 2)], "non-positive"),
            ([(0, 1, float("nan")), (1, 2)], "non-finite"),
            ([(0, 1, 2, 3), (1, 2)], "Edge must be"),
        ],
    )
    def test_invalid_edges(self, edges: list[tuple], match: str) -> None:
        with pytest.raises(InvalidTopology, match=match):
            build(3, edges)

    def test_disconnected_raises(self) -> None:
        with pytest.raises(InvalidTopology, match="not connected"):
            build(4, [(0, 1), (2, 3)])

    def test_zero_nodes_raises(self) -> None:
        with pytest.raises(InvalidTopology, match="at least one node"):
            build(0, [])

    def test_invalid_topology_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            build(2, [])

    def test_is_connected(self) -> None:
        assert is_connected(3, [(1,), (0, 2), (1,)])
        assert not is_connected(3, [(1,), (0,), ()])
        assert not is_connected(0, [])


# =============================================================================
# Spectral analysis
# =============================================================================


class TestSpectrum:
    """Tests for the Laplacian and its eigenvalues."""

    def test_laplacian_rows_sum_to_zero(self) -> None:
        L = laplacian(ring(5))
        np.testing.assert_allclose(L.sum(axis=1), 0.0)
        np.testing.assert_allclose(L, L.T)

    def test_weighted_adjacency(self) -> None:
        A = adjacency_matrix(build(2, [(0, 1, 3.0)]))
        np.testing.assert_array_equal(A, [[0.0, 3.0], [3.0, 0.0]])

    def test_eigenvalues_ascending_smallest_zero(self) -> None:
        eig = spectrum(ring(6)).eigenvalues
        assert eig[0] == 0.0
        assert np.all(np.diff(eig) >= -1e-12)

    def test_ring4_fiedler_value(self) -> None:
        assert fiedler_value(ring(4)) == pytest.approx(2.0)

    def test_complete_fiedler_value_equals_n(self) -> None:
        assert fiedler_value(complete(5)) == pytest.approx(5.0)

    def test_path_fiedler_value(self) -> None:
        # lambda_2 of a path with n nodes is 2 - 2 cos(pi / n)
        n = 6
        assert fiedler_value(path(n)) == pytest.approx(2 - 2 * np.cos(np.pi / n))

    def test_fiedler_positive_iff_connected(self) -> None:
        for g in (ring(7), star(4), grid(2, 3)):
            assert fiedler_value(g) > 0

    def test_single_node_fiedler_is_zero(self) -> None:
        assert fiedler_value(build(1, [])) == 0.0

    def test_fiedler_vector_is_orthogonal_to_ones(self) -> None:
        v = fiedler_vector(path(5))
        assert abs(v.sum()) < 1e-10
        assert np.linalg.norm(v) == pytest.approx(1.0)

    def test_fiedler_vector_needs_two_nodes(self) -> None:
        with pytest.raises(ValueError, match="two nodes"):
            fiedler_vector(build(1, []))


# =============================================================================
# Topologies
# =============================================================================


class TestTopologies:
    def test_ring_neighbors(self) -> None:
        g = ring(5)
        assert g.neighbors(0) == (1, 4)
        assert all(g.degree(i) == 2 for i in range(5))

    def test_ring_two_nodes_single_edge(self) -> None:
        g = ring(2)
        assert g.edge_count == 1
        assert g.neighbors(0) == (1,)

    def test_star_hub(self) -> None:
        g = star(5)
        assert g.degree(0) == 4
        assert g.max_degree() == 4

    def test_grid_shape(self) -> None:
        g = grid(2, 3)
        assert g.num_nodes() == 6
        assert g.edge_count == 7
        assert g.neighbors(4) == (1, 3, 5)

    def test_from_name(self) -> None:
        assert from_name("complete", 4).edge_count == 6
        assert from_name("grid", 6).num_nodes() == 6

    def test_from_name_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown topology"):
            from_name("torus", 4)

    @pytest.mark.parametrize("factory", [ring, complete, path, star])
    def test_requires_two_nodes(self, factory) -> None:
        with pytest.raises(InvalidTopology, match="n >= 2"):
            factory(1)

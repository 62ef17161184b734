"""Tests for synthetic least-squares and logistic data."""

from __future__ import annotations

import numpy as np
import pytest

from models.convex import LinearModel
from tasks.least_squares import (
    least_squares_optimum,
    make_least_squares_data,
    make_least_squares_partitions,
    make_logistic_data,
    split_across_nodes,
)


class TestLeastSquaresData:
    def test_shapes_and_noise_free_fit(self) -> None:
        X, y, w_star = make_least_squares_data(n=50, dim=4, rng=np.random.default_rng(0))
        assert X.shape == (50, 4)
        np.testing.assert_allclose(y, X @ w_star)

    def test_feature_scale(self) -> None:
        X, _, _ = make_least_squares_data(
            n=5000, dim=2, rng=np.random.default_rng(1), feature_scale=10.0
        )
        assert X.std() == pytest.approx(10.0, rel=0.05)

    def test_partitions_share_optimum(self) -> None:
        partitions, w_star = make_least_squares_partitions(
            n_nodes=4, samples_per_node=20, dim=3, rng=np.random.default_rng(2)
        )
        assert [p.node_id for p in partitions] == [0, 1, 2, 3]
        assert all(len(p) == 20 for p in partitions)
        model = LinearModel()
        for p in partitions:
            np.testing.assert_allclose(model.batch_gradient(w_star, p.features, p.labels), 0.0, atol=1e-12)

    def test_closed_form_optimum_equals_w_star_without_noise(self) -> None:
        partitions, w_star = make_least_squares_partitions(
            n_nodes=3, samples_per_node=30, dim=3, rng=np.random.default_rng(3)
        )
        np.testing.assert_allclose(least_squares_optimum(partitions), w_star, atol=1e-10)

    def test_optimum_has_zero_pooled_gradient(self) -> None:
        partitions, _ = make_least_squares_partitions(
            n_nodes=3, samples_per_node=30, dim=2, rng=np.random.default_rng(4), noise=0.5
        )
        model = LinearModel(l2=0.2, fit_intercept=True)
        optimum = least_squares_optimum(partitions, l2=0.2, fit_intercept=True)
        X = np.vstack([p.features for p in partitions])
        y = np.concatenate([p.labels for p in partitions])
        np.testing.assert_allclose(model.batch_gradient(optimum, X, y), 0.0, atol=1e-10)


class TestSplitAcrossNodes:
    def test_iid_split_covers_every_row(self) -> None:
        X = np.arange(20.0).reshape(10, 2)
        y = np.arange(10.0)
        parts = split_across_nodes(X, y, 3, "iid", np.random.default_rng(0))
        assert sorted(np.concatenate([p.labels for p in parts]).tolist()) == list(range(10))
        assert [len(p) for p in parts] == [4, 3, 3]

    def test_sorted_split_is_label_ordered(self) -> None:
        y = np.array([5.0, 1.0, 3.0, 0.0])
        parts = split_across_nodes(np.zeros((4, 1)), y, 2, "sorted", np.random.default_rng(0))
        np.testing.assert_array_equal(parts[0].labels, [0.0, 1.0])
        np.testing.assert_array_equal(parts[1].labels, [3.0, 5.0])

    def test_unknown_heterogeneity(self) -> None:
        with pytest.raises(ValueError, match="Unknown heterogeneity"):
            split_across_nodes(np.zeros((4, 1)), np.zeros(4), 2, "dirichlet", np.random.default_rng(0))

    def test_fewer_rows_than_nodes(self) -> None:
        with pytest.raises(ValueError, match="Cannot split"):
            split_across_nodes(np.zeros((2, 1)), np.zeros(2), 3, "iid", np.random.default_rng(0))


class TestLogisticData:
    def test_binary_labels(self) -> None:
        X, y = make_logistic_data(n=100, dim=3, rng=np.random.default_rng(0))
        assert X.shape == (100, 3)
        assert set(np.unique(y)) <= {0.0, 1.0}

    def test_separable(self) -> None:
        X, y = make_logistic_data(n=200, dim=2, rng=np.random.default_rng(1), separable=True)
        assert 0 < y.mean() < 1

"""Tests for aggregate-based feature standardization."""

from __future__ import annotations

import numpy as np
import pytest

from core.types import DataPartition
from features.scaling import ColumnStats, FeatureScaler


def _partition(node_id: int, X: np.ndarray) -> DataPartition:
    return DataPartition(node_id=node_id, features=X, labels=np.zeros(X.shape[0]))


class TestFeatureScaler:
    def test_matches_pooled_statistics(self) -> None:
        rng = np.random.default_rng(0)
        blocks = [rng.normal(3.0, 2.0, size=(n, 3)) for n in (10, 25, 7)]
        scaler = FeatureScaler.fit(_partition(i, X) for i, X in enumerate(blocks))

        pooled = np.vstack(blocks)
        np.testing.assert_allclose(scaler.mean, pooled.mean(axis=0))
        np.testing.assert_allclose(scaler.scale, pooled.std(axis=0))

    def test_transformed_columns_are_standard(self) -> None:
        rng = np.random.default_rng(1)
        partitions = [_partition(i, rng.normal(size=(20, 2)) * 5 + 1) for i in range(3)]
        scaler = FeatureScaler.fit(partitions)
        pooled = np.vstack([scaler.transform(p).features for p in partitions])
        np.testing.assert_allclose(pooled.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(pooled.std(axis=0), 1.0)

    def test_constant_column_maps_to_zero(self) -> None:
        X = np.column_stack([np.full(5, 4.0), np.arange(5.0)])
        scaler = FeatureScaler.fit([_partition(0, X)])
        assert scaler.scale[0] == 1.0
        np.testing.assert_allclose(scaler.transform_array(X)[:, 0], 0.0)

    def test_transform_keeps_labels_and_names(self) -> None:
        partition = DataPartition(
            node_id=3,
            features=np.arange(6.0).reshape(3, 2),
            labels=np.array([1.0, 0.0, 1.0]),
            feature_names=("a", "b"),
        )
        out = FeatureScaler.fit([partition]).transform(partition)
        assert out.node_id == 3
        assert out.feature_names == ("a", "b")
        np.testing.assert_array_equal(out.labels, partition.labels)

    def test_no_rows_raises(self) -> None:
        with pytest.raises(ValueError, match="zero rows"):
            FeatureScaler.fit([_partition(0, np.empty((0, 2)))])
        with pytest.raises(ValueError, match="without partition statistics"):
            FeatureScaler.fit([])

    def test_column_stats_add(self) -> None:
        a = ColumnStats.from_partition(_partition(0, np.ones((2, 1))))
        b = ColumnStats.from_partition(_partition(1, np.full((3, 1), 2.0)))
        combined = a + b
        assert combined.count == 5
        np.testing.assert_allclose(combined.total, [8.0])
        np.testing.assert_allclose(combined.total_sq, [14.0])

"""Feature standardization fitted from per-partition aggregates.

Only (count, sum, sum of squares) per column leave a partition, so the
scaler can be fitted without pooling raw rows.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from core.types import DataPartition

__all__ = ["ColumnStats", "FeatureScaler"]


@dataclass(frozen=True)
class ColumnStats:
    """Sufficient statistics of one partition's feature columns."""

    count: int
    total: np.ndarray
    total_sq: np.ndarray

    @classmethod
    def from_partition(cls, partition: DataPartition) -> ColumnStats:
        X = partition.features
        return cls(count=X.shape[0], total=X.sum(axis=0), total_sq=(X * X).sum(axis=0))

    def __add__(self, other: ColumnStats) -> ColumnStats:
        return ColumnStats(
            count=self.count + other.count,
            total=self.total + other.total,
            total_sq=self.total_sq + other.total_sq,
        )


@dataclass(frozen=True)
class FeatureScaler:
    """Column-wise (x - mean) / std.

    Constant columns get scale 1.0 so they map to zero instead of nan.
    """

    mean: np.ndarray
    scale: np.ndarray

    @classmethod
    def from_stats(cls, stats: Iterable[ColumnStats]) -> FeatureScaler:
        """Combine per-partition statistics into one scaler.

        Raises:
            ValueError: If there are no rows at all.
        """
        items = list(stats)
        if not items:
            raise ValueError("Cannot fit a scaler without partition statistics")
        combined = items[0]
        for item in items[1:]:
            combined = combined + item
        if combined.count == 0:
            raise ValueError("Cannot fit a scaler on zero rows")

        mean = combined.total / combined.count
        variance = np.maximum(combined.total_sq / combined.count - mean * mean, 0.0)
        std = np.sqrt(variance)
        scale = np.where(std > 1e-12, std, 1.0)
        return cls(mean=mean, scale=scale)

    @classmethod
    def fit(cls, partitions: Iterable[DataPartition]) -> FeatureScaler:
        return cls.from_stats(ColumnStats.from_partition(p) for p in partitions)

    def transform_array(self, X: np.ndarray) -> np.ndarray:
        return (X - self.mean) / self.scale

    def transform(self, partition: DataPartition) -> DataPartition:
        """Return a new partition with standardized features."""
        return DataPartition(
            node_id=partition.node_id,
            features=self.transform_array(partition.features),
            labels=partition.labels,
            feature_names=partition.feature_names,
        )

"""Order-book training data: generate -> extract -> standardize.

Partition streams are assigned to nodes round-robin (stream i belongs to
node i % node_count). Each stream is replayed into its own book; rows of
streams sharing a node are concatenated.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import numpy as np

from core.logging import get_logger
from core.types import DataPartition
from features.extractor import ExtractorConfig, FeatureExtractor
from features.scaling import FeatureScaler
from market.generator import GeneratorConfig, generate

__all__ = ["build_market_partitions"]

logger = get_logger(__name__)


def build_market_partitions(
    *,
    seed: int,
    node_count: int,
    horizon: int,
    partition_count: int | None = None,
    generator: GeneratorConfig | Mapping[str, Any] | None = None,
    extractor: ExtractorConfig | Mapping[str, Any] | None = None,
    standardize: bool = True,
) -> list[DataPartition]:
    """Build one standardized DataPartition per node from synthetic streams.

    Args:
        seed: Master generator seed.
        node_count: Number of workers.
        horizon: Events per stream.
        partition_count: Streams to generate (defaults to node_count); must
            be at least node_count so every node owns data.
        generator: GeneratorConfig or its keyword arguments.
        extractor: ExtractorConfig or its keyword arguments.
        standardize: Fit a FeatureScaler on per-node statistics and apply it.

    Returns:
        List of DataPartitions indexed by node id.

    Raises:
        ValueError: If there are fewer streams than nodes or a node ends up
            without rows.
    """
    partition_count = node_count if partition_count is None else partition_count
    if partition_count < node_count:
        raise ValueError(
            f"partition_count ({partition_count}) must be >= node_count ({node_count})"
        )
    if generator is not None and not isinstance(generator, GeneratorConfig):
        generator = GeneratorConfig.from_dict(dict(generator))
    if extractor is not None and not isinstance(extractor, ExtractorConfig):
        extractor = ExtractorConfig.from_dict(dict(extractor))

    streams = generate(seed, horizon, partition_count, generator)
    feature_extractor = FeatureExtractor(extractor)

    per_node: dict[int, list[DataPartition]] = {i: [] for i in range(node_count)}
    for stream in streams:
        node_id = stream.partition % node_count
        per_node[node_id].append(feature_extractor.build_partition(node_id, stream))

    partitions: list[DataPartition] = []
    for node_id in range(node_count):
        blocks = per_node[node_id]
        features = np.vstack([b.features for b in blocks])
        labels = np.concatenate([b.labels for b in blocks])
        if labels.shape[0] == 0:
            raise ValueError(
                f"Node {node_id} has no training rows; increase horizon or reduce lookback"
            )
        partitions.append(
            DataPartition(
                node_id=node_id,
                features=features,
                labels=labels,
                feature_names=feature_extractor.feature_names,
            )
        )

    if standardize:
        scaler = FeatureScaler.fit(partitions)
        partitions = [scaler.transform(p) for p in partitions]

    logger.info(
        "Built %d market partitions (%d rows total, %d features)",
        len(partitions),
        sum(len(p) for p in partitions),
        len(feature_extractor.feature_names),
    )
    return partitions

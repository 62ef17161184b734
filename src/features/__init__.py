"""Order-book and trade-flow features."""

from features.extractor import (
    FEATURES,
    LABELS,
    ExtractorConfig,
    Feature,
    FeatureExtractor,
    MarketWindow,
)
from features.scaling import ColumnStats, FeatureScaler

__all__ = [
    "FEATURES",
    "LABELS",
    "ExtractorConfig",
    "Feature",
    "FeatureExtractor",
    "MarketWindow",
    "ColumnStats",
    "FeatureScaler",
]

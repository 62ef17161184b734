"""Training data pipelines.

Available tasks:
- least_squares: synthetic regression / classification with known optimum
- market_data: synthetic order book -> features -> standardized partitions
"""

from __future__ import annotations

from tasks.least_squares import (
    least_squares_optimum,
    make_least_squares_data,
    make_least_squares_partitions,
    make_logistic_data,
    split_across_nodes,
)
from tasks.market_data import build_market_partitions

__all__ = [
    "least_squares_optimum",
    "make_least_squares_data",
    "make_least_squares_partitions",
    "make_logistic_data",
    "split_across_nodes",
    "build_market_partitions",
]

"""Models module for consensus fitting.

This package contains convex models whose gradients agents evaluate on
their local partitions.

Available models:
- LinearModel: least squares (optionally L2-regularized)
- LogisticModel: binary cross-entropy (optionally L2-regularized)
"""

from __future__ import annotations

from models.convex import (
    MODEL_FAMILIES,
    GeneralizedLinearModel,
    LinearModel,
    LogisticModel,
    get_model_family,
    sigmoid,
)

__all__ = [
    "GeneralizedLinearModel",
    "LinearModel",
    "LogisticModel",
    "MODEL_FAMILIES",
    "get_model_family",
    "sigmoid",
]

"""Protocol definitions shared across packages.

This module contains Protocol classes defining interfaces for:
- ConvexModel: the objective family fitted by the workers
- Topology: anything that can enumerate nodes and their neighbours
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import numpy as np

from core.types import NodeId, ParamVector

__all__ = ["ConvexModel", "Topology"]


@runtime_checkable
class ConvexModel(Protocol):
    """Protocol for convex parametric models.

    Implementations are stateless apart from hyper-parameters: every method
    is a pure function of (params, data). Losses must be convex in params and
    gradients must be exact (analytic).
    """

    name: str

    def param_dim(self, n_features: int) -> int:
        """Number of parameters for ``n_features`` input columns."""
        ...

    def predict(self, params: ParamVector, features: np.ndarray) -> float:
        """Prediction for a single feature vector."""
        ...

    def loss(self, params: ParamVector, features: np.ndarray, label: float) -> float:
        """Loss for a single (features, label) pair."""
        ...

    def gradient(self, params: ParamVector, features: np.ndarray, label: float) -> ParamVector:
        """Exact gradient of ``loss`` with respect to params."""
        ...

    def batch_loss(self, params: ParamVector, X: np.ndarray, y: np.ndarray) -> float:
        """Mean loss over rows of X (plus regularization)."""
        ...

    def batch_gradient(self, params: ParamVector, X: np.ndarray, y: np.ndarray) -> ParamVector:
        """Exact gradient of ``batch_loss``."""
        ...


@runtime_checkable
class Topology(Protocol):
    """Protocol for undirected worker graphs."""

    def num_nodes(self) -> int:
        """Return the number of nodes."""
        ...

    def neighbors(self, node: NodeId) -> Sequence[NodeId]:
        """Return the neighbours of ``node`` (excluding itself)."""
        ...

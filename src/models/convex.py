"""Convex model families: least-squares linear and logistic regression.

Both are generalized linear models z = X @ w (+ b) with an optional ridge
penalty 0.5 * l2 * ||w||^2 (the bias is never penalized). All methods are
pure functions of (params, data) with exact analytic gradients.

Per-sample loss includes the penalty, so the mean of per-sample losses over
a batch equals batch_loss.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from core.types import ParamVector

__all__ = [
    "GeneralizedLinearModel",
    "LinearModel",
    "LogisticModel",
    "MODEL_FAMILIES",
    "get_model_family",
    "sigmoid",
]


def sigmoid(z: np.ndarray) -> np.ndarray:
    """Numerically stable sigmoid."""
    # Clip to avoid overflow
    z_clipped = np.clip(z, -500, 500)
    result: np.ndarray = 1.0 / (1.0 + np.exp(-z_clipped))
    return result


@dataclass(frozen=True)
class GeneralizedLinearModel(ABC):
    """Shared plumbing for linear-predictor models.

    Attributes:
        l2: Ridge penalty (>= 0). Any l2 > 0 makes the loss strongly convex.
        fit_intercept: If True the last parameter is an unpenalized bias.
    """

    l2: float = 0.0
    fit_intercept: bool = False

    name = "glm"

    def __post_init__(self) -> None:
        if self.l2 < 0:
            raise ValueError(f"l2 must be non-negative, got {self.l2}")

    # -- parameter layout ---------------------------------------------------

    def param_dim(self, n_features: int) -> int:
        return n_features + (1 if self.fit_intercept else 0)

    def init_params(self, n_features: int) -> ParamVector:
        """All-zero starting point."""
        return np.zeros(self.param_dim(n_features), dtype=np.float64)

    def _check_dims(self, params: ParamVector, n_features: int) -> None:
        expected = self.param_dim(n_features)
        if params.shape != (expected,):
            raise ValueError(
                f"Expected params of shape ({expected},) for {n_features} features, "
                f"got {params.shape}"
            )

    def _logits(self, params: ParamVector, X: np.ndarray) -> np.ndarray:
        self._check_dims(params, X.shape[1])
        if self.fit_intercept:
            return X @ params[:-1] + params[-1]
        return X @ params

    def _penalty(self, params: ParamVector) -> float:
        if self.l2 == 0.0:
            return 0.0
        w = params[:-1] if self.fit_intercept else params
        return 0.5 * self.l2 * float(w @ w)

    def _penalty_grad(self, params: ParamVector) -> ParamVector:
        grad = self.l2 * params
        if self.fit_intercept:
            grad[-1] = 0.0
        return grad

    def _design_grad(self, X: np.ndarray, residual: np.ndarray) -> ParamVector:
        """X^T r / n, extended with the bias component when fitted."""
        n = X.shape[0]
        grad_w = X.T @ residual / n
        if self.fit_intercept:
            return np.append(grad_w, residual.sum() / n)
        return grad_w

    # -- family-specific pieces --------------------------------------------

    @abstractmethod
    def _link(self, z: np.ndarray) -> np.ndarray:
        """Map logits to predictions."""

    @abstractmethod
    def _data_losses(self, z: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Per-sample data losses given logits."""

    # -- batch API ------------------------------------------------------------

    def batch_predict(self, params: ParamVector, X: np.ndarray) -> np.ndarray:
        return self._link(self._logits(params, np.atleast_2d(X)))

    def batch_loss(self, params: ParamVector, X: np.ndarray, y: np.ndarray) -> float:
        """Mean data loss over the rows of X plus the ridge penalty."""
        if X.shape[0] == 0:
            raise ValueError("Cannot evaluate loss on an empty batch")
        z = self._logits(params, X)
        return float(np.mean(self._data_losses(z, y))) + self._penalty(params)

    def batch_gradient(self, params: ParamVector, X: np.ndarray, y: np.ndarray) -> ParamVector:
        """Exact gradient of batch_loss.

        For both families the data term is X^T (link(z) - y) / n.
        """
        if X.shape[0] == 0:
            raise ValueError("Cannot evaluate gradient on an empty batch")
        z = self._logits(params, X)
        residual = self._link(z) - y
        grad = self._design_grad(X, residual) + self._penalty_grad(params)
        result: np.ndarray = grad.astype(np.float64)
        return result

    # -- per-sample API -----------------------------------------------------

    def predict(self, params: ParamVector, features: np.ndarray) -> float:
        return float(self.batch_predict(params, np.asarray(features, dtype=np.float64))[0])

    def loss(self, params: ParamVector, features: np.ndarray, label: float) -> float:
        X = np.atleast_2d(np.asarray(features, dtype=np.float64))
        return self.batch_loss(params, X, np.array([label], dtype=np.float64))

    def gradient(self, params: ParamVector, features: np.ndarray, label: float) -> ParamVector:
        X = np.atleast_2d(np.asarray(features, dtype=np.float64))
        return self.batch_gradient(params, X, np.array([label], dtype=np.float64))


@dataclass(frozen=True)
class LinearModel(GeneralizedLinearModel):
    """Least-squares regression.

    Loss: 0.5 * (x^T w + b - y)^2 + 0.5 * l2 * ||w||^2
    Gradient: (x^T w + b - y) * [x, 1] + l2 * [w, 0]
    """

    name = "linear"

    def _link(self, z: np.ndarray) -> np.ndarray:
        return z

    def _data_losses(self, z: np.ndarray, y: np.ndarray) -> np.ndarray:
        return 0.5 * (z - y) ** 2


@dataclass(frozen=True)
class LogisticModel(GeneralizedLinearModel):
    """Binary logistic regression with labels in {0, 1}.

    Loss (cross-entropy with logits, stable form):
        max(z, 0) - z * y + log(1 + exp(-|z|))
    Predictions are probabilities sigmoid(z).
    """

    name = "logistic"

    def _link(self, z: np.ndarray) -> np.ndarray:
        return sigmoid(z)

    def _data_losses(self, z: np.ndarray, y: np.ndarray) -> np.ndarray:
        return np.maximum(z, 0.0) - z * y + np.log1p(np.exp(-np.abs(z)))


MODEL_FAMILIES: dict[str, type[GeneralizedLinearModel]] = {
    "linear": LinearModel,
    "logistic": LogisticModel,
}


def get_model_family(name: str, **kwargs: float | bool) -> GeneralizedLinearModel:
    """Instantiate a registered model family.

    Example:
        >>> get_model_family("logistic", l2=0.1).name
        'logistic'

    Raises:
        ValueError: If the family is not registered.
    """
    try:
        cls = MODEL_FAMILIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown model family: {name}. Available: {sorted(MODEL_FAMILIES)}"
        ) from None
    return cls(**kwargs)  # type: ignore[arg-type]

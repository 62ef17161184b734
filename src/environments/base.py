"""Base environment class for round-based optimization.

This module provides an abstract base class that implements the common
run loop logic while leaving environment-specific behavior to subclasses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

__all__ = ["BaseEnvironment"]

_Record = TypeVar("_Record")


class BaseEnvironment(ABC, Generic[_Record]):
    """Abstract base class for round-based environments.

    Provides a reusable run loop. Subclasses must implement `reset()` and
    `step()`; each successful step completes exactly one round.

    Attributes:
        _t: Completed-round counter, 0 after reset() and incremented by each
            successful step() call.

    Example:
        >>> class CountingEnv(BaseEnvironment[int]):
        ...     def reset(self) -> None:
        ...         self._t = 0
        ...
        ...     def step(self) -> int:
        ...         self._t += 1
        ...         return self._t
        ...
        >>> env = CountingEnv()
        >>> env.reset()
        >>> env.run(steps=3)
        [1, 2, 3]
    """

    _t: int

    def __init__(self) -> None:
        """Initialize the environment with round counter at 0."""
        self._t = 0

    @property
    def t(self) -> int:
        """Number of completed rounds (read-only)."""
        return self._t

    @abstractmethod
    def reset(self) -> None:
        """Prepare for the first round.

        Subclasses must reset the round counter to 0 (set self._t = 0).
        """
        ...

    @abstractmethod
    def step(self) -> _Record:
        """Execute one round.

        Subclasses must increment self._t by 1 only when the round
        completes; a failed round leaves the counter unchanged.
        """
        ...

    def run(self, *, steps: int) -> list[_Record]:
        """Run several rounds and collect their records.

        Raises:
            ValueError: If steps < 1.
        """
        if steps < 1:
            raise ValueError(f"steps must be >= 1, got {steps}")
        return [self.step() for _ in range(steps)]

    def state_dict(self) -> dict[str, Any]:
        """Minimal state: the completed-round counter."""
        return {"t": self._t}

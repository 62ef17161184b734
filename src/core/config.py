"""Run configuration: loading, overrides and validation.

A run is described by a flat JSON object (nested only for the generator
and extractor sections). Persistence beyond JSON is out of scope.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

__all__ = [
    "RunConfig",
    "load_json",
    "apply_overrides",
    "load_run_config",
]


@dataclass(frozen=True)
class RunConfig:
    """Everything needed to set up and run one consensus experiment.

    Attributes:
        task: "market" (synthetic order book -> features) or "least_squares"
            (synthetic regression with a known optimum).
        node_count: Number of workers / graph nodes.
        edges: Explicit edge list [(u, v) or (u, v, w)]; overrides ``topology``.
        topology: Named topology used when ``edges`` is None.
        mixing_method: "metropolis_hastings" or "laplacian".
        mixing_step: Laplacian step size epsilon (None = stability bound).
        seed: Master seed for data generation and initial states.
        horizon: Events per partition (market task).
        partition_count: Partitions to generate (None = node_count).
        generator: Keyword arguments for market.generator.GeneratorConfig.
        extractor: Keyword arguments for features.extractor.ExtractorConfig.
        model_family: "linear" or "logistic".
        l2: Ridge penalty.
        fit_intercept: Append a bias parameter.
        learning_rate / tolerance / max_rounds / min_rounds / round_timeout /
        max_retries / lr_decay / divergence_bound / strategy /
        stationarity_tolerance: Consensus optimizer settings.
        init_scale: Std of random initial states (0 = all zeros).
        dim / samples_per_node / noise / feature_scale: least-squares task.
    """

    task: str = "market"
    node_count: int = 5
    edges: tuple[tuple[Any, ...], ...] | None = None
    topology: str = "ring"
    mixing_method: str = "metropolis_hastings"
    mixing_step: float | None = None
    seed: int = 0
    horizon: int = 2000
    partition_count: int | None = None
    generator: dict[str, Any] = field(default_factory=dict)
    extractor: dict[str, Any] = field(default_factory=dict)
    model_family: str = "logistic"
    l2: float = 0.0
    fit_intercept: bool = True
    learning_rate: float = 0.1
    tolerance: float = 1e-6
    max_rounds: int = 500
    min_rounds: int = 1
    round_timeout: float | None = None
    max_retries: int = 3
    lr_decay: float = 0.5
    divergence_bound: float = 1e6
    strategy: str = "adapt_then_combine"
    stationarity_tolerance: float | None = None
    init_scale: float = 0.0
    dim: int = 3
    samples_per_node: int = 100
    noise: float = 0.0
    feature_scale: float = 1.0

    def __post_init__(self) -> None:
        if self.task not in {"market", "least_squares"}:
            raise ValueError(f"Unknown task: {self.task}")
        if self.node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {self.node_count}")
        if self.edges is not None:
            object.__setattr__(self, "edges", tuple(tuple(e) for e in self.edges))

    @property
    def resolved_partition_count(self) -> int:
        return self.node_count if self.partition_count is None else self.partition_count

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunConfig:
        """Build a config, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {unknown}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        if self.edges is not None:
            result["edges"] = [list(e) for e in self.edges]
        return result


def load_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def apply_overrides(config: dict[str, Any], overrides: list[str]) -> dict[str, Any]:
    """Apply dotted ``key=value`` overrides to a config dict (copy)."""
    result = json.loads(json.dumps(config))
    for item in overrides:
        if "=" not in item:
            raise ValueError(f"Override must be key=value, got: {item}")
        path, raw_val = item.split("=", 1)
        keys = path.split(".")
        target = result
        for key in keys[:-1]:
            if key not in target or not isinstance(target[key], dict):
                target[key] = {}
            target = target[key]
        target[keys[-1]] = _parse_value(raw_val)
    return result


def load_run_config(path: Path | None, overrides: list[str] | None = None) -> RunConfig:
    """Load a RunConfig from an optional JSON file plus overrides."""
    data = load_json(path) if path is not None else {}
    if overrides:
        data = apply_overrides(data, overrides)
    return RunConfig.from_dict(data)

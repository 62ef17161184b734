"""Experiment runner CLI for consensus fitting.

Builds the worker graph, the training partitions and the mixing matrix from
a RunConfig, runs the ConsensusOptimizer and records the run in a fresh
experiment directory.

Tasks:
- market: synthetic order book -> features -> logistic/linear model
- least_squares: synthetic regression with a known optimum

Usage:
    python -m benchmarks.runner --config configs/ring5.json
    python -m benchmarks.runner --set task=least_squares --set model_family=linear \\
        --set feature_scale=10 --set learning_rate=0.01
    python -m benchmarks.runner --config cfg.json --set extractor.lookback=100
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import numpy as np

from benchmarks.metrics import accuracy, distance_to_optimum, rmse
from benchmarks.workflow import (
    next_experiment_dir,
    try_get_git_commit,
    write_history,
    write_run_files,
)
from core.config import RunConfig, load_run_config
from core.errors import ConsensusError
from core.logging import configure_logging, get_logger
from core.rng import make_rng, random_initial_states
from core.types import DataPartition, ParamVector, RunResult, RunStatus
from distributed.graph import Graph, build, fiedler_value
from distributed.topology import from_name
from distributed.weights import mixing_matrix, second_largest_eigenvalue_magnitude
from environments.consensus import ConsensusConfig, ConsensusOptimizer
from models.convex import GeneralizedLinearModel, get_model_family
from tasks.least_squares import least_squares_optimum, make_least_squares_partitions
from tasks.market_data import build_market_partitions

__all__ = [
    "ExperimentOutcome",
    "main",
    "parse_args",
    "build_graph",
    "build_partitions",
    "consensus_config",
    "run_experiment",
]

logger = get_logger(__name__)

# Exit codes
EXIT_OK = 0
EXIT_FAILED_RUN = 1
EXIT_SETUP_ERROR = 2

# Statuses that still count as a successful experiment
_OK_STATUSES = (RunStatus.CONVERGED, RunStatus.ROUND_BUDGET_EXHAUSTED)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Run a decentralized consensus fit on synthetic data",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=str, default=None, help="Path to a JSON RunConfig")
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a config key (dotted keys for generator/extractor), repeatable",
    )
    parser.add_argument(
        "--workflow-dir",
        type=str,
        default="workflow",
        help="Directory for experiment outputs",
    )
    parser.add_argument("--exp-name", type=str, default=None, help="Experiment name")
    parser.add_argument("--description", type=str, default=None, help="Experiment description")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level",
    )
    return parser.parse_args(argv)


def build_graph(config: RunConfig) -> Graph:
    """Explicit edge list if given, otherwise the named topology."""
    if config.edges is not None:
        return build(config.node_count, config.edges)
    return from_name(config.topology, config.node_count)


def build_model(config: RunConfig) -> GeneralizedLinearModel:
    return get_model_family(config.model_family, l2=config.l2, fit_intercept=config.fit_intercept)


def build_partitions(config: RunConfig) -> tuple[list[DataPartition], ParamVector | None]:
    """Training partitions plus the exact optimum when it is known.

    Raises:
        ValueError: For a least-squares task with a non-linear model family.
    """
    if config.task == "least_squares":
        if config.model_family != "linear":
            raise ValueError("The least_squares task requires model_family='linear'")
        partitions, _ = make_least_squares_partitions(
            n_nodes=config.node_count,
            samples_per_node=config.samples_per_node,
            dim=config.dim,
            rng=make_rng(config.seed),
            noise=config.noise,
            feature_scale=config.feature_scale,
        )
        optimum = least_squares_optimum(
            partitions, l2=config.l2, fit_intercept=config.fit_intercept
        )
        return partitions, optimum

    partitions = build_market_partitions(
        seed=config.seed,
        node_count=config.node_count,
        horizon=config.horizon,
        partition_count=config.resolved_partition_count,
        generator=config.generator,
        extractor=config.extractor,
    )
    return partitions, None


def consensus_config(config: RunConfig) -> ConsensusConfig:
    return ConsensusConfig(
        learning_rate=config.learning_rate,
        tolerance=config.tolerance,
        max_rounds=config.max_rounds,
        round_timeout=config.round_timeout,
        max_retries=config.max_retries,
        lr_decay=config.lr_decay,
        divergence_bound=config.divergence_bound,
        strategy=config.strategy,
        min_rounds=config.min_rounds,
        stationarity_tolerance=config.stationarity_tolerance,
    )


@dataclass(frozen=True)
class ExperimentOutcome:
    """Result of run_experiment: the raw run plus summary metrics."""

    result: RunResult
    summary: dict[str, Any]


def _fit_metrics(
    model: GeneralizedLinearModel, partitions: Sequence[DataPartition], state: ParamVector
) -> dict[str, float]:
    X = np.vstack([p.features for p in partitions])
    y = np.concatenate([p.labels for p in partitions])
    predictions = model.batch_predict(state, X)
    if model.name == "logistic":
        return {"final_accuracy": accuracy(predictions, y)}
    return {"final_rmse": rmse(predictions, y)}


def run_experiment(config: RunConfig) -> ExperimentOutcome:
    """Set up and run one consensus experiment.

    Raises:
        ConsensusError / ValueError: On invalid topology, mixing or data
            parameters (before any round runs).
    """
    graph = build_graph(config)
    W = mixing_matrix(graph, config.mixing_method, config.mixing_step)
    partitions, optimum = build_partitions(config)
    model = build_model(config)

    initial_states = None
    if config.init_scale > 0:
        dim = model.param_dim(partitions[0].n_features)
        initial_states = random_initial_states(
            config.seed + 1, config.node_count, dim, scale=config.init_scale
        )

    result = ConsensusOptimizer().run(
        graph,
        partitions,
        model,
        consensus_config(config),
        initial_states=initial_states,
        mixing=W,
    )

    summary: dict[str, Any] = {
        "status": result.status.value,
        "rounds": result.rounds,
        "final_disagreement": result.final_disagreement(),
        "final_objective": result.history.last().objective if result.rounds else None,
        "total_retries": result.history.total_retries(),
        "final_learning_rate": (
            result.history.last().learning_rate if result.rounds else config.learning_rate
        ),
        "fiedler_value": fiedler_value(graph),
        "slem": second_largest_eigenvalue_magnitude(W),
        "n_rows": sum(len(p) for p in partitions),
        "state": result.state.tolist(),
    }
    summary.update(_fit_metrics(model, partitions, result.state))
    if optimum is not None:
        summary["optimum"] = optimum.tolist()
        summary["final_dist_to_opt"] = distance_to_optimum(result.agent_states, optimum)
    if result.diagnostic is not None:
        summary["diagnostic"] = str(result.diagnostic)
    return ExperimentOutcome(result=result, summary=summary)


def generate_readme(exp_dir: Path, args: argparse.Namespace, config: RunConfig) -> str:
    """Generate README.md content."""
    lines = [f"# {args.exp_name or exp_dir.name}", ""]
    if args.description:
        lines.extend([args.description, ""])

    graph_desc = f"{len(config.edges)} explicit edges" if config.edges else config.topology
    lines.extend(
        [
            "## Configuration",
            "",
            f"- Task: {config.task}",
            f"- Nodes: {config.node_count} ({graph_desc})",
            f"- Mixing: {config.mixing_method}",
            f"- Model: {config.model_family} (l2={config.l2}, intercept={config.fit_intercept})",
            f"- Strategy: {config.strategy}",
            f"- Learning rate: {config.learning_rate}",
            f"- Tolerance: {config.tolerance}",
            f"- Max rounds: {config.max_rounds}",
            f"- Seed: {config.seed}",
            "",
            "## Reproduce",
            "",
            "```bash",
            f"python -m benchmarks.runner --config {exp_dir / 'config.json'}",
            "```",
            "",
        ]
    )
    return "\n".join(lines)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the experiment runner.

    Returns:
        0 when the run converged or used its whole round budget, 1 when it
        diverged, timed out or was cancelled, 2 on a setup error.
    """
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = load_run_config(
            Path(args.config) if args.config else None, list(args.overrides)
        )
        outcome = run_experiment(config)
    except (ConsensusError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_SETUP_ERROR

    exp_dir = next_experiment_dir(Path(args.workflow_dir))
    meta: dict[str, Any] = {
        "created_at": datetime.now(UTC).isoformat(),
        "argv": sys.argv if argv is None else ["runner"] + list(argv),
    }
    git_commit = try_get_git_commit()
    if git_commit:
        meta["git_commit"] = git_commit

    write_run_files(
        exp_dir,
        meta=meta,
        config=config.to_dict(),
        summary=outcome.summary,
        readme_text=generate_readme(exp_dir, args, config),
    )
    write_history(exp_dir, outcome.result.history.to_dicts())

    summary = outcome.summary
    print(f"Experiment completed: {exp_dir.name}")
    print(f"  status: {summary['status']}")
    print(f"  rounds: {summary['rounds']}")
    print(f"  final_disagreement: {summary['final_disagreement']:.3e}")
    if summary["final_objective"] is not None:
        print(f"  final_objective: {summary['final_objective']:.6f}")
    if "final_accuracy" in summary:
        print(f"  final_accuracy: {summary['final_accuracy']:.6f}")
    if "final_rmse" in summary:
        print(f"  final_rmse: {summary['final_rmse']:.6f}")
    if "final_dist_to_opt" in summary:
        print(f"  final_dist_to_opt: {summary['final_dist_to_opt']:.3e}")
    if "diagnostic" in summary:
        print(f"  diagnostic: {summary['diagnostic']}")

    return EXIT_OK if outcome.result.status in _OK_STATUSES else EXIT_FAILED_RUN


if __name__ == "__main__":
    sys.exit(main())

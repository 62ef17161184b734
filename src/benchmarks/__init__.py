"""Benchmarks module for experiment management.

This package provides utilities for running and tracking consensus
experiments:

- workflow: Experiment directory management
- metrics: Metric computation helpers
- runner: CLI for running experiments
"""

from __future__ import annotations

from benchmarks.metrics import (
    accuracy,
    consensus_error,
    distance_to_optimum,
    max_pairwise_disagreement,
    mean_params,
    rmse,
)
from benchmarks.runner import main as run_experiment_cli
from benchmarks.runner import run_experiment
from benchmarks.workflow import (
    next_experiment_dir,
    try_get_git_commit,
    write_history,
    write_run_files,
)

__all__ = [
    # Workflow
    "next_experiment_dir",
    "write_run_files",
    "write_history",
    "try_get_git_commit",
    # Metrics
    "consensus_error",
    "max_pairwise_disagreement",
    "mean_params",
    "distance_to_optimum",
    "rmse",
    "accuracy",
    # Runner
    "run_experiment",
    "run_experiment_cli",
]

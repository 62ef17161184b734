"""Experiment directory layout for consensus runs.

Every run gets its own ``exp_XXXX`` directory under the workflow directory:

    exp_0003/
        meta.json       when/where/how the run was launched
        config.json     resolved RunConfig
        summary.json    terminal status and final metrics
        history.jsonl   one ConvergenceRecord per line
        README.md       human-readable description and reproduce command
"""

from __future__ import annotations

import json
import re
import subprocess
from collections.abc import Iterable
from pathlib import Path
from typing import Any

__all__ = [
    "next_experiment_dir",
    "write_run_files",
    "write_history",
    "try_get_git_commit",
]

_EXP_PATTERN = re.compile(r"^exp_(\d{4})$")


def next_experiment_dir(workflow_dir: Path) -> Path:
    """Create and return ``workflow_dir/exp_XXXX`` for the next run.

    The index is one past the largest existing index (exp_0000 when the
    workflow directory is empty or missing).

    Example:
        >>> next_experiment_dir(Path("workflow"))
        PosixPath('workflow/exp_0000')
    """
    workflow_dir.mkdir(parents=True, exist_ok=True)

    indices = [
        int(match.group(1))
        for entry in workflow_dir.iterdir()
        if entry.is_dir() and (match := _EXP_PATTERN.match(entry.name))
    ]
    exp_dir = workflow_dir / f"exp_{max(indices, default=-1) + 1:04d}"
    exp_dir.mkdir(parents=True, exist_ok=False)
    return exp_dir


def _dump_json(path: Path, payload: dict[str, Any]) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)


def write_run_files(
    exp_dir: Path,
    *,
    meta: dict[str, Any],
    config: dict[str, Any],
    summary: dict[str, Any],
    readme_text: str,
) -> None:
    """Write meta.json, config.json, summary.json and README.md."""
    _dump_json(exp_dir / "meta.json", meta)
    _dump_json(exp_dir / "config.json", config)
    _dump_json(exp_dir / "summary.json", summary)
    (exp_dir / "README.md").write_text(readme_text, encoding="utf-8")


def write_history(exp_dir: Path, records: Iterable[dict[str, Any]]) -> Path:
    """Write convergence records as JSON lines; returns the file path."""
    path = exp_dir / "history.jsonl"
    with path.open("w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record, sort_keys=True) + "\n")
    return path


def try_get_git_commit() -> str | None:
    """Current git commit hash, or None outside a repository or without git."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()

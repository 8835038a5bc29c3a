"""cella-sync: keep a fork aligned with its upstream template repository.

This package provides the command-line interface and the sync engine that
detects files diverged from the template, merges upstream changes into the
local branch, and pushes local work to forks as pull-request branches.
"""

from . import (
    cli,
    config,
    constants,
    errors,
    git_wrapper,
    ignore,
    models,
    ops,
    workflows,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "errors",
    "git_wrapper",
    "ignore",
    "models",
    "ops",
    "workflows",
]

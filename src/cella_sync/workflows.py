"""Wires the sync engine together for one run.

A run is one `SyncSession`: it is built from resolved configuration by
`build_session`, validated before any git command runs, and handed to
`run_workflow`, which dispatches on the workflow type and returns that
workflow's outcome. Presentation is left to the caller.
"""

import logging
from pathlib import Path
from typing import assert_never

from . import ignore, ops
from .config import Config
from .constants import APP_NAME
from .errors import ConfigurationError
from .git_wrapper import GitGateway, GitRepo
from .models import (
    DetectDivergence,
    DivergenceResult,
    PullFork,
    PullUpstream,
    RepositoryRef,
    SyncSession,
    Workflow,
    WorkflowResult,
)

logger = logging.getLogger(APP_NAME)


def build_session(
    working_dir: Path, config: Config, workflow: Workflow, local_branch: str
) -> SyncSession:
    """Validates resolved inputs and freezes them into a session.

    Args:
        working_dir (Path): The repository root.
        config (Config): The merged configuration (CLI overrides applied).
        workflow (Workflow): The selected workflow.
        local_branch (str): The branch to sync.

    Returns:
        SyncSession: The immutable session for this run.

    Raises:
        ConfigurationError: If a required value is missing.
    """
    sync = config.sync

    if not sync.diverged_file or not sync.diverged_file.strip():
        raise ConfigurationError("No diverged file path configured.")
    if not sync.upstream_branch or not sync.upstream_branch.strip():
        raise ConfigurationError("No upstream branch configured.")
    if not sync.upstream_remote or not sync.upstream_remote.strip():
        raise ConfigurationError("No upstream remote configured.")
    if not local_branch or local_branch == "HEAD":
        raise ConfigurationError(
            "No local branch to sync (HEAD is detached or the branch is empty)."
        )
    if isinstance(workflow, PullFork) and not workflow.pr_branch.strip():
        raise ConfigurationError("PR branch name cannot be empty.")

    ignore_file = working_dir / sync.ignore_file if sync.ignore_file else None
    rules = ignore.resolve(sync.ignore_list, ignore_file)
    if not rules:
        logger.warning(
            "No ignore list or ignore file found. Proceeding without ignoring files."
        )

    return SyncSession(
        working_dir=working_dir,
        workflow=workflow,
        local=RepositoryRef.local(local_branch),
        upstream=RepositoryRef(
            sync.upstream_remote, sync.upstream_branch, sync.upstream_url
        ),
        rules=rules,
        diverged_file=working_dir / sync.diverged_file,
    )


def run_workflow(
    session: SyncSession, git: GitGateway | None = None
) -> WorkflowResult:
    """Runs the session's workflow to completion.

    Args:
        session (SyncSession): The resolved session.
        git (GitGateway | None): The gateway to use. Defaults to a `GitRepo` on
            the session's working directory.

    Returns:
        WorkflowResult: A `DivergenceResult`, a `PullOutcome` or a `PushOutcome`.
    """
    git = git or GitRepo(session.working_dir)
    workflow = session.workflow

    if isinstance(workflow, DetectDivergence):
        files = ops.detect_divergence(
            git, session.local, session.upstream, session.rules
        )
        written = ops.write_report(files, session.diverged_file)
        return DivergenceResult(files, session.diverged_file, written)

    if isinstance(workflow, PullUpstream):
        return ops.pull_upstream(git, session.local, session.upstream)

    if isinstance(workflow, PullFork):
        return ops.push_fork(
            git, session.local.branch_name, workflow.fork, workflow.pr_branch
        )

    assert_never(workflow)

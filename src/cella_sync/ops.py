import contextlib
import datetime
import logging
import os
import re
import shlex
from collections.abc import Sequence
from pathlib import Path

from . import git_wrapper as git_ops
from .constants import (
    APP_NAME,
    INTEGRATION_BRANCH_PREFIX,
    PR_BRANCH_DATE_FORMAT,
    PR_BRANCH_PREFIX,
)
from .errors import (
    BranchExistsError,
    ConfigurationError,
    GitCommandError,
    IntegrationBranchError,
    RemoteConflictError,
)
from .git_wrapper import GitGateway
from .ignore import exclude
from .models import (
    ConflictsPresent,
    FastForwarded,
    FileSet,
    ForkTarget,
    IgnoreRuleSet,
    Merged,
    PullOutcome,
    PushOutcome,
    RepositoryRef,
    UpToDate,
)

logger = logging.getLogger(APP_NAME)


# --- Remotes ---


def ensure_remote(git: GitGateway, name: str, url: str | None) -> None:
    """Makes sure a remote exists and points where it is expected to.

    A missing remote is added when a URL is known. An existing remote is never
    repointed: if its URL differs from the requested one the run stops.

    Args:
        git (GitGateway): The repository gateway.
        name (str): The remote name.
        url (str | None): The expected URL, or None to accept whatever exists.

    Raises:
        RemoteConflictError: If the remote exists with a different URL.
        ConfigurationError: If the remote is missing and no URL is known.
    """
    if name in git_ops.remotes(git):
        if url is None:
            return
        existing = git_ops.remote_url(git, name)
        if existing.rstrip("/") != url.rstrip("/"):
            raise RemoteConflictError(name, existing, url)
        return

    if url is None:
        raise ConfigurationError(
            f"Remote '{name}' does not exist and no URL is configured for it."
        )

    logger.info(f"Adding remote '{name}' -> {url}")
    git.run(f"remote add {shlex.quote(name)} {shlex.quote(url)}")


def fetch_remote(git: GitGateway, remote: RepositoryRef) -> None:
    """Fetches a remote so its branch refs are current locally.

    Args:
        git (GitGateway): The repository gateway.
        remote (RepositoryRef): The remote branch to refresh.

    Raises:
        GitCommandError: If the fetch fails. Comparing against a stale or
            missing ref is never attempted.
    """
    if not remote.remote_name:
        raise ConfigurationError(f"'{remote.branch_name}' is not a remote branch.")

    ensure_remote(git, remote.remote_name, remote.remote_url)
    logger.info(f"Fetching {remote.remote_name}")
    git.run(f"fetch {shlex.quote(remote.remote_name)}")


# --- Divergence ---


def common_files(upstream_files: Sequence[str], local_files: Sequence[str]) -> FileSet:
    """Returns the paths tracked on both sides."""
    return frozenset(upstream_files) & frozenset(local_files)


def detect_divergence(
    git: GitGateway,
    local: RepositoryRef,
    upstream: RepositoryRef,
    rules: IgnoreRuleSet,
) -> list[str]:
    """Lists files tracked on both branches whose content differs.

    The comparison is branch to branch: uncommitted and untracked files in the
    working tree play no part. A file present on only one side is not
    diverged, it is new upstream content or local-only content.

    Args:
        git (GitGateway): The repository gateway.
        local (RepositoryRef): The local branch.
        upstream (RepositoryRef): The upstream remote branch.
        rules (IgnoreRuleSet): Paths to leave out of the result.

    Returns:
        list[str]: The diverged paths, in `git diff` order.

    Raises:
        GitCommandError: If fetching or listing either tree fails.
    """
    fetch_remote(git, upstream)

    upstream_files = git_ops.list_tree(git, upstream.ref)
    local_files = git_ops.list_tree(git, local.ref)
    common = common_files(upstream_files, local_files)
    logger.info(
        f"{len(common)} files tracked on both {local.ref} and {upstream.ref}"
    )

    changed = git_ops.diff_names(git, local.ref, upstream.ref)
    diverged = [path for path in changed if path in common]

    return exclude(diverged, rules)


def write_report(report: Sequence[str], path: Path) -> bool:
    """Persists a divergence report, or removes it when there is nothing to report.

    A non-empty report replaces the file atomically, so a reader never sees a
    partially written report. An empty report deletes the file: its absence
    means the branches have converged.

    Args:
        report (Sequence[str]): The diverged paths.
        path (Path): The report location.

    Returns:
        bool: True if a report was written, False if it was removed.
    """
    if not report:
        path.unlink(missing_ok=True)
        logger.info(f"No divergence; removed {path} if present")
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = path.with_name(f".{path.name}.tmp")
    try:
        with open(tmp_file, "w", encoding="utf-8", newline="\n") as f:
            f.write("\n".join(report))
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_file, path)
    except OSError:
        with contextlib.suppress(OSError):
            tmp_file.unlink()
        raise

    logger.info(f"Wrote {len(report)} diverged paths to {path}")
    return True


# --- Upstream pull ---


def integration_branch_name(upstream: RepositoryRef) -> str:
    """Names the local branch that mirrors the upstream branch."""
    return f"{INTEGRATION_BRANCH_PREFIX}/{upstream.remote_name}-{upstream.branch_name}"


def update_integration_branch(git: GitGateway, upstream: RepositoryRef) -> str:
    """Creates or fast-forwards the local mirror of the upstream branch.

    Args:
        git (GitGateway): The repository gateway.
        upstream (RepositoryRef): The upstream remote branch.

    Returns:
        str: The integration branch name.

    Raises:
        IntegrationBranchError: If the branch holds commits upstream does not,
            so moving it would discard work.
    """
    name = integration_branch_name(upstream)

    if not git_ops.branch_exists(git, name):
        logger.info(f"Creating integration branch {name} at {upstream.ref}")
        git.run(f"branch {shlex.quote(name)} {shlex.quote(upstream.ref)}")
        return name

    if not git_ops.is_ancestor(git, name, upstream.ref):
        raise IntegrationBranchError(
            f"Integration branch '{name}' has commits that are not on "
            f"{upstream.ref}. Move or delete it before pulling again."
        )

    logger.info(f"Fast-forwarding integration branch {name} to {upstream.ref}")
    git.run(f"branch -f {shlex.quote(name)} {shlex.quote(upstream.ref)}")
    return name


def pull_upstream(
    git: GitGateway, local: RepositoryRef, upstream: RepositoryRef
) -> PullOutcome:
    """Brings upstream history into the local branch with merge semantics.

    Local commits keep their identity (no rebase). Conflicts are never
    resolved here: the merge is left in progress and the conflicted paths are
    returned so an operator can resolve and commit them.

    Args:
        git (GitGateway): The repository gateway.
        local (RepositoryRef): The local branch to update.
        upstream (RepositoryRef): The upstream remote branch.

    Returns:
        PullOutcome: `UpToDate`, `FastForwarded`, `Merged` or `ConflictsPresent`.

    Raises:
        GitCommandError: If any git step fails for a reason other than a
            content conflict.
    """
    fetch_remote(git, upstream)

    branch = local.branch_name
    logger.info(f"Checking out {branch}")
    git.run(f"checkout {shlex.quote(branch)}")

    integration = update_integration_branch(git, upstream)

    ahead = git_ops.count_commits(git, branch, integration)
    if ahead == 0:
        logger.info(f"{branch} already contains {upstream.ref}")
        return UpToDate(branch)

    if git_ops.is_ancestor(git, branch, integration):
        logger.info(f"Fast-forwarding {branch} by {ahead} commits")
        git.run(f"merge --ff-only {shlex.quote(integration)}")
        return FastForwarded(branch, commits=ahead)

    logger.info(f"Merging {ahead} upstream commits into {branch}")
    try:
        git.run(f"merge --no-edit {shlex.quote(integration)}")
    except GitCommandError:
        conflicts = git_ops.unmerged_paths(git)
        if not conflicts:
            raise
        logger.warning(f"Merge stopped with {len(conflicts)} conflicted files")
        return ConflictsPresent(branch, files=tuple(conflicts))

    return Merged(branch, commits=ahead)


# --- Fork push ---


def select_fork(forks: Sequence[ForkTarget], name: str | None = None) -> ForkTarget:
    """Resolves the fork a PR branch goes to.

    With a name, that fork is looked up. Without one, a single configured fork
    is used; with several, the caller must choose.

    Args:
        forks (Sequence[ForkTarget]): The configured forks.
        name (str | None): An explicitly chosen fork name.

    Returns:
        ForkTarget: The selected fork.

    Raises:
        ConfigurationError: If no fork is configured, the name is unknown, or
            the choice is ambiguous.
    """
    if not forks:
        raise ConfigurationError("No valid forks found in the config file.")

    if name is not None:
        for fork in forks:
            if fork.name == name:
                return fork
        known = ", ".join(f.name for f in forks)
        raise ConfigurationError(f"Unknown fork '{name}'. Configured forks: {known}")

    if len(forks) > 1:
        known = ", ".join(f.name for f in forks)
        raise ConfigurationError(
            f"Multiple forks configured ({known}); select one explicitly."
        )

    return forks[0]


def default_pr_branch_name(now: datetime.datetime | None = None) -> str:
    """Builds a dated PR branch name, e.g. `pr-branch-20240131-154500`."""
    now = now or datetime.datetime.now()
    return f"{PR_BRANCH_PREFIX}-{now.strftime(PR_BRANCH_DATE_FORMAT)}"


_GITHUB_URL = re.compile(
    r"^(?:https://(?:[^@/]+@)?github\.com/|git@github\.com:|ssh://git@github\.com/)"
    r"(?P<repo>[^/]+/[^/]+?)(?:\.git)?/?$"
)


def compare_url(remote_url: str, base_branch: str, branch: str) -> str | None:
    """Derives the web page for opening a PR, for GitHub-hosted forks."""
    match = _GITHUB_URL.match(remote_url)
    if not match:
        return None
    return f"https://github.com/{match.group('repo')}/compare/{base_branch}...{branch}?expand=1"


def push_fork(
    git: GitGateway, from_branch: str, fork: ForkTarget, pr_branch_name: str
) -> PushOutcome:
    """Pushes the local branch to a fork as a new PR branch.

    Nothing is force-pushed and no existing remote or branch is overwritten.
    The repository is left on the new PR branch. If the push fails, the
    repository goes back to `from_branch` and the unpushed PR branch is
    deleted, so the same name can be retried.

    Args:
        git (GitGateway): The repository gateway.
        from_branch (str): The branch the PR branch starts from.
        fork (ForkTarget): The destination fork.
        pr_branch_name (str): The branch to create and push.

    Returns:
        PushOutcome: The pushed branch and where to open the PR.

    Raises:
        RemoteConflictError: If the fork remote exists with another URL.
        BranchExistsError: If the PR branch exists locally or on the fork.
        GitCommandError: If the push is rejected or cannot reach the fork.
    """
    if not pr_branch_name.strip():
        raise ConfigurationError("PR branch name cannot be empty.")

    ensure_remote(git, fork.name, fork.remote_url)

    if git_ops.branch_exists(git, pr_branch_name):
        raise BranchExistsError(pr_branch_name, "local")
    if git_ops.remote_branch_exists(git, fork.name, pr_branch_name):
        raise BranchExistsError(pr_branch_name, fork.name)

    logger.info(f"Creating {pr_branch_name} from {from_branch}")
    git.run(f"checkout -b {shlex.quote(pr_branch_name)} {shlex.quote(from_branch)}")

    logger.info(f"Pushing {pr_branch_name} to {fork.name}")
    try:
        git.run(
            f"push --set-upstream {shlex.quote(fork.name)} {shlex.quote(pr_branch_name)}"
        )
    except GitCommandError:
        logger.warning(
            f"Push of {pr_branch_name} failed; returning to {from_branch} and "
            f"removing the unpushed branch"
        )
        git.run(f"checkout {shlex.quote(from_branch)}")
        git.run(f"branch -D {shlex.quote(pr_branch_name)}")
        raise

    return PushOutcome(
        branch=pr_branch_name,
        remote=fork.name,
        remote_url=fork.remote_url,
        base_branch=fork.branch,
        compare_url=compare_url(fork.remote_url, fork.branch, pr_branch_name),
    )

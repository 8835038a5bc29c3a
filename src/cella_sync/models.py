"""Value types shared by the sync engine, the orchestrator and the CLI.

All of them are immutable: a `SyncSession` is built once after inputs are
resolved and then handed to exactly one workflow.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from .constants import DEFAULT_DIVERGED_FILE


@dataclass(frozen=True)
class RepositoryRef:
    """A branch, optionally on a named remote.

    Attributes:
        remote_name (str | None): The git remote, or None for a local branch.
        branch_name (str): The branch name on that remote.
        remote_url (str | None): The URL the remote should point at, if known.
    """

    remote_name: str | None
    branch_name: str
    remote_url: str | None = None

    @property
    def ref(self) -> str:
        """The ref as git addresses it (`upstream/development` or `main`)."""
        if self.remote_name:
            return f"{self.remote_name}/{self.branch_name}"
        return self.branch_name

    @classmethod
    def local(cls, branch_name: str) -> "RepositoryRef":
        return cls(None, branch_name)


@dataclass(frozen=True)
class ForkTarget:
    """A fork that PR branches can be pushed to.

    Attributes:
        name (str): The git remote name used for the fork.
        remote_url (str): The fork's clone URL.
        branch (str): The fork branch the PR will target.
    """

    name: str
    remote_url: str
    branch: str


@dataclass(frozen=True)
class IgnoreRuleSet:
    """An ordered, read-only sequence of ignore patterns.

    Attributes:
        patterns (tuple[str, ...]): Explicit patterns first, then file patterns.
    """

    patterns: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.patterns)

    def __iter__(self) -> Iterator[str]:
        return iter(self.patterns)


FileSet = frozenset[str]


# --- Workflows ---


@dataclass(frozen=True)
class DetectDivergence:
    """List files that differ between the local and upstream branches."""


@dataclass(frozen=True)
class PullUpstream:
    """Merge the upstream branch into the local branch."""


@dataclass(frozen=True)
class PullFork:
    """Push the local branch to a fork as a new PR branch.

    Attributes:
        fork (ForkTarget): The resolved destination.
        pr_branch (str): The branch to create and push.
    """

    fork: ForkTarget
    pr_branch: str


Workflow = DetectDivergence | PullUpstream | PullFork

WORKFLOW_NAMES: dict[str, str] = {
    "diverged": "Diverged files",
    "pull-upstream": "Pull from upstream",
    "pull-fork": "Pull from fork",
}
"""dict[str, str]: CLI names of the workflows and their menu labels."""


@dataclass(frozen=True)
class SyncSession:
    """Everything one run needs, resolved up front.

    Attributes:
        working_dir (Path): The repository root (the process's cwd).
        workflow (Workflow): The selected workflow.
        local (RepositoryRef): The local branch.
        upstream (RepositoryRef): The upstream remote branch.
        rules (IgnoreRuleSet): Paths excluded from the divergence report.
        diverged_file (Path): Where the divergence report is written.
    """

    working_dir: Path
    workflow: Workflow
    local: RepositoryRef
    upstream: RepositoryRef
    rules: IgnoreRuleSet = field(default_factory=IgnoreRuleSet)
    diverged_file: Path = Path(DEFAULT_DIVERGED_FILE)


# --- Outcomes ---


@dataclass(frozen=True)
class DivergenceResult:
    """The result of a divergence run.

    Attributes:
        files (list[str]): The diverged paths, in report order.
        report_path (Path): The report file location.
        written (bool): True if the report was written, False if it was removed.
    """

    files: list[str]
    report_path: Path
    written: bool


@dataclass(frozen=True)
class PullOutcome:
    """Base type of the upstream pull results.

    Attributes:
        branch (str): The local branch the pull targeted.
    """

    branch: str


@dataclass(frozen=True)
class UpToDate(PullOutcome):
    """Upstream has no commits the local branch lacks."""


@dataclass(frozen=True)
class FastForwarded(PullOutcome):
    """The local branch was moved forward to upstream without a merge commit."""

    commits: int = 0


@dataclass(frozen=True)
class Merged(PullOutcome):
    """Upstream was merged into the local branch with a merge commit."""

    commits: int = 0


@dataclass(frozen=True)
class ConflictsPresent(PullOutcome):
    """The merge stopped on conflicts; the repository is left mid-merge."""

    files: tuple[str, ...] = ()


@dataclass(frozen=True)
class PushOutcome:
    """The result of pushing a PR branch to a fork.

    Attributes:
        branch (str): The pushed PR branch.
        remote (str): The fork remote name.
        remote_url (str): The fork URL.
        base_branch (str): The fork branch the PR should target.
        compare_url (str | None): A web link to open the PR, when derivable.
    """

    branch: str
    remote: str
    remote_url: str
    base_branch: str
    compare_url: str | None = None


WorkflowResult = DivergenceResult | PullOutcome | PushOutcome

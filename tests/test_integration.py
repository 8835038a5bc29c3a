"""End-to-end checks of the sync engine against real git repositories."""

import shutil
import subprocess
import sys
from pathlib import Path

import pytest

from cella_sync import ops
from cella_sync.errors import BranchExistsError, GitCommandError, RemoteConflictError
from cella_sync.git_wrapper import GitRepo
from cella_sync.models import (
    ConflictsPresent,
    FastForwarded,
    ForkTarget,
    IgnoreRuleSet,
    Merged,
    RepositoryRef,
    UpToDate,
)

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

LOCAL = RepositoryRef.local("main")
UPSTREAM = RepositoryRef("upstream", "development")


@pytest.fixture(autouse=True)
def isolated_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keeps user and system git config out of the fixture repositories."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(home / ".gitconfig"))
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Sync Test")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "sync@example.com")


def _git(cwd: Path, *args: str) -> str:
    res = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return res.stdout.strip()


def _commit(repo: Path, files: dict[str, str], message: str) -> None:
    for name, content in files.items():
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        _git(repo, "add", name)
    _git(repo, "commit", "-q", "-m", message)


def _template(tmp_path: Path, files: dict[str, str]) -> Path:
    template = tmp_path / "template"
    template.mkdir()
    _git(template, "init", "-q")
    _git(template, "checkout", "-q", "-b", "development")
    _commit(template, files, "template")
    return template


def _fork_of(tmp_path: Path, template: Path) -> Path:
    local = tmp_path / "local"
    _git(tmp_path, "clone", "-q", str(template), str(local))
    _git(local, "checkout", "-q", "-b", "main")
    _git(local, "remote", "add", "upstream", str(template))
    return local


def test_detect_divergence_in_fixture_repository(tmp_path: Path) -> None:
    """Verifies only common, content-differing, tracked files are reported.

    Upstream tracks a.txt, c.txt, same.txt and u.txt. Local tracks a.txt
    (changed), b.txt and same.txt (unchanged), and has u.txt only as an
    untracked file.
    """
    template = _template(
        tmp_path,
        {"a.txt": "upstream\n", "c.txt": "c\n", "same.txt": "same\n", "u.txt": "u\n"},
    )
    local = tmp_path / "local"
    local.mkdir()
    _git(local, "init", "-q")
    _git(local, "checkout", "-q", "-b", "main")
    _commit(local, {"a.txt": "local\n", "b.txt": "b\n", "same.txt": "same\n"}, "local")
    (local / "u.txt").write_text("untracked\n")
    _git(local, "remote", "add", "upstream", str(template))

    report = ops.detect_divergence(GitRepo(local), LOCAL, UPSTREAM, IgnoreRuleSet())

    assert report == ["a.txt"]


def test_detect_divergence_missing_upstream_branch(tmp_path: Path) -> None:
    """Verifies comparing against a branch upstream does not have is fatal."""
    template = _template(tmp_path, {"a.txt": "a\n"})
    local = _fork_of(tmp_path, template)

    with pytest.raises(GitCommandError):
        ops.detect_divergence(
            GitRepo(local),
            LOCAL,
            RepositoryRef("upstream", "no-such-branch"),
            IgnoreRuleSet(),
        )


def test_detect_divergence_on_branch_named_like_a_directory(tmp_path: Path) -> None:
    """Verifies a local branch sharing its name with a tracked directory still compares."""
    template = _template(tmp_path, {"docs/x.md": "upstream\n", "a.txt": "a\n"})
    local = _fork_of(tmp_path, template)
    _git(local, "checkout", "-q", "-b", "docs")
    _commit(local, {"docs/x.md": "local\n"}, "local docs")

    report = ops.detect_divergence(
        GitRepo(local), RepositoryRef.local("docs"), UPSTREAM, IgnoreRuleSet()
    )

    assert report == ["docs/x.md"]


def test_pull_upstream_outcomes(tmp_path: Path) -> None:
    """Verifies up-to-date, fast-forward and merge pulls end to end."""
    template = _template(tmp_path, {"shared.ts": "base\n"})
    local = _fork_of(tmp_path, template)
    repo = GitRepo(local)

    assert ops.pull_upstream(repo, LOCAL, UPSTREAM) == UpToDate("main")

    _commit(template, {"new.ts": "new\n"}, "upstream change")
    assert ops.pull_upstream(repo, LOCAL, UPSTREAM) == FastForwarded("main", commits=1)
    assert (local / "new.ts").read_text() == "new\n"

    _commit(local, {"local.ts": "mine\n"}, "local change")
    _commit(template, {"other.ts": "other\n"}, "another upstream change")
    assert ops.pull_upstream(repo, LOCAL, UPSTREAM) == Merged("main", commits=1)
    assert (local / "local.ts").exists()
    assert (local / "other.ts").exists()


def test_pull_upstream_conflict_is_left_for_the_operator(tmp_path: Path) -> None:
    """Verifies a textual conflict is reported and no resolving commit is made."""
    template = _template(tmp_path, {"shared.ts": "base\n"})
    local = _fork_of(tmp_path, template)
    _commit(template, {"shared.ts": "upstream\n"}, "upstream edit")
    _commit(local, {"shared.ts": "local\n"}, "local edit")
    head_before = _git(local, "rev-parse", "HEAD")

    outcome = ops.pull_upstream(GitRepo(local), LOCAL, UPSTREAM)

    assert outcome == ConflictsPresent("main", files=("shared.ts",))
    assert _git(local, "rev-parse", "HEAD") == head_before
    assert (local / ".git" / "MERGE_HEAD").exists()


def test_push_fork_to_bare_repository(tmp_path: Path) -> None:
    """Verifies a PR branch is created and pushed, and never pushed twice."""
    template = _template(tmp_path, {"a.txt": "a\n"})
    local = _fork_of(tmp_path, template)
    fork_repo = tmp_path / "fork.git"
    _git(tmp_path, "init", "-q", "--bare", str(fork_repo))
    fork = ForkTarget("fork", str(fork_repo), "development")
    repo = GitRepo(local)

    outcome = ops.push_fork(repo, "main", fork, "pr-1")

    assert outcome.branch == "pr-1"
    assert "refs/heads/pr-1" in _git(fork_repo, "for-each-ref", "--format=%(refname)")
    assert _git(local, "rev-parse", "--abbrev-ref", "HEAD") == "pr-1"

    with pytest.raises(BranchExistsError):
        ops.push_fork(repo, "main", fork, "pr-1")


@pytest.mark.skipif(sys.platform == "win32", reason="needs a shell hook")
def test_push_fork_rejected_push_can_be_retried(tmp_path: Path) -> None:
    """Verifies a rejected push returns to the source branch and frees the PR name."""
    template = _template(tmp_path, {"a.txt": "a\n"})
    local = _fork_of(tmp_path, template)
    fork_repo = tmp_path / "fork.git"
    _git(tmp_path, "init", "-q", "--bare", str(fork_repo))
    hook = fork_repo / "hooks" / "pre-receive"
    hook.parent.mkdir(exist_ok=True)
    hook.write_text("#!/bin/sh\nexit 1\n")
    hook.chmod(0o755)
    fork = ForkTarget("fork", str(fork_repo), "development")
    repo = GitRepo(local)

    with pytest.raises(GitCommandError):
        ops.push_fork(repo, "main", fork, "pr-1")

    assert _git(local, "rev-parse", "--abbrev-ref", "HEAD") == "main"
    assert _git(local, "branch", "--list", "pr-1") == ""

    hook.unlink()
    outcome = ops.push_fork(repo, "main", fork, "pr-1")

    assert outcome.branch == "pr-1"
    assert "refs/heads/pr-1" in _git(fork_repo, "for-each-ref", "--format=%(refname)")


def test_push_fork_remote_url_mismatch(tmp_path: Path) -> None:
    """Verifies an existing fork remote pointing elsewhere stops the push."""
    template = _template(tmp_path, {"a.txt": "a\n"})
    local = _fork_of(tmp_path, template)
    _git(local, "remote", "add", "fork", "https://old.example.com/fork.git")

    with pytest.raises(RemoteConflictError):
        ops.push_fork(
            GitRepo(local),
            "main",
            ForkTarget("fork", "https://new.example.com/fork.git", "development"),
            "pr-1",
        )

    assert _git(local, "branch", "--list", "pr-1") == ""
    assert _git(local, "remote", "get-url", "fork") == "https://old.example.com/fork.git"

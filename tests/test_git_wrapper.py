import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from cella_sync import git_wrapper
from cella_sync.errors import ConfigurationError, GitCommandError
from cella_sync.git_wrapper import GitRepo
from conftest import FakeGit


def test_repo_requires_git_directory(tmp_path: Path) -> None:
    """Verifies that a directory without .git is rejected up front."""
    with pytest.raises(ConfigurationError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_run_tokenizes_and_disables_path_quoting(
    mocker: MagicMock, tmp_path: Path
) -> None:
    """Verifies the command string is split shell-style and run in the repo."""
    (tmp_path / ".git").mkdir()
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value.stdout = "a.txt\nb.txt\n"

    repo = GitRepo(tmp_path)
    output = repo.run("ls-tree -r 'upstream/development' --name-only")

    assert output == "a.txt\nb.txt"
    mock_run.assert_called_once_with(
        [
            "git",
            "-c",
            "core.quotePath=false",
            "ls-tree",
            "-r",
            "upstream/development",
            "--name-only",
        ],
        cwd=tmp_path,
        capture_output=True,
        text=True,
        check=True,
    )


def test_run_translates_non_zero_exit(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that a failing git command raises a typed error with stderr."""
    (tmp_path / ".git").mkdir()
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(
            128, ["git", "fetch", "upstream"], stderr="fatal: 'upstream' does not exist\n"
        ),
    )

    repo = GitRepo(tmp_path)
    with pytest.raises(GitCommandError) as exc_info:
        repo.run("fetch upstream")

    err = exc_info.value
    assert err.command == "fetch upstream"
    assert err.exit_code == 128
    assert err.stderr == "fatal: 'upstream' does not exist"
    assert "'git fetch upstream' failed with exit code 128" in str(err)


def test_run_translates_launch_failure(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that a missing git executable is reported, not leaked as OSError."""
    (tmp_path / ".git").mkdir()
    mocker.patch("subprocess.run", side_effect=FileNotFoundError("git"))

    repo = GitRepo(tmp_path)
    with pytest.raises(GitCommandError) as exc_info:
        repo.run("status")

    assert exc_info.value.exit_code is None
    assert "Could not run 'git status'" in str(exc_info.value)


def test_list_tree_drops_blank_lines(fake_git: FakeGit) -> None:
    """Verifies tree listings split into paths without empty entries."""
    fake_git.responses["ls-tree -r main --name-only"] = "a.txt\n\nsrc/b.ts\n"

    assert git_wrapper.list_tree(fake_git, "main") == ["a.txt", "src/b.ts"]


def test_list_tree_of_empty_tree(fake_git: FakeGit) -> None:
    """Verifies an empty tree yields no paths rather than one empty path."""
    assert git_wrapper.list_tree(fake_git, "main") == []


def test_diff_names_separates_refs_from_paths(fake_git: FakeGit) -> None:
    """Verifies refs are followed by `--` so a branch named like a directory stays a ref."""
    fake_git.responses["diff --name-only docs upstream/development --"] = "docs/x.md\n"

    assert git_wrapper.diff_names(fake_git, "docs", "upstream/development") == [
        "docs/x.md"
    ]


def test_is_ancestor_maps_exit_code_one_to_false(fake_git: FakeGit) -> None:
    """Verifies that 'not an ancestor' is an answer, not an error."""
    fake_git.fail("merge-base --is-ancestor main upstream/development", exit_code=1)
    assert git_wrapper.is_ancestor(fake_git, "main", "upstream/development") is False

    assert git_wrapper.is_ancestor(fake_git, "a", "b") is True


def test_is_ancestor_propagates_real_failures(fake_git: FakeGit) -> None:
    """Verifies that an unknown ref still fails the step."""
    fake_git.fail("merge-base --is-ancestor main nope", exit_code=128)

    with pytest.raises(GitCommandError):
        git_wrapper.is_ancestor(fake_git, "main", "nope")


def test_branch_and_remote_queries(fake_git: FakeGit) -> None:
    """Verifies the existence helpers read git's listings."""
    fake_git.responses["remote"] = "origin\nupstream\n"
    fake_git.responses["branch --list pr-1"] = "  pr-1"
    fake_git.responses["ls-remote --heads fork refs/heads/pr-2"] = (
        "abc123\trefs/heads/pr-2"
    )
    fake_git.responses["rev-list --count main..upstream/development"] = "3"

    assert git_wrapper.remotes(fake_git) == ["origin", "upstream"]
    assert git_wrapper.branch_exists(fake_git, "pr-1") is True
    assert git_wrapper.branch_exists(fake_git, "pr-9") is False
    assert git_wrapper.remote_branch_exists(fake_git, "fork", "pr-2") is True
    assert git_wrapper.remote_branch_exists(fake_git, "fork", "pr-3") is False
    assert git_wrapper.count_commits(fake_git, "main", "upstream/development") == 3

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Protocol

from .constants import APP_NAME
from .errors import ConfigurationError, GitCommandError

logger = logging.getLogger(APP_NAME)


class GitGateway(Protocol):
    """The command-execution surface the sync engine needs from git.

    `GitRepo` is the real implementation. Tests substitute an in-memory fake
    that returns canned output for each command string.
    """

    path: Path

    def run(self, command: str) -> str: ...


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Commands are executed synchronously with `subprocess`; each call blocks
    until git exits. No command is retried.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ConfigurationError: If the path does not contain a .git entry.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise ConfigurationError(f"Not a git repository: {self.path}")

    def _run(self, args: list[str]) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.

        Returns:
            str: The stdout of the command with surrounding whitespace removed.

        Raises:
            GitCommandError: If git exits non-zero or cannot be started.
        """
        command = shlex.join(args)
        logger.debug(f"git {command}")
        try:
            res = subprocess.run(
                ["git", "-c", "core.quotePath=false", *args],
                cwd=self.path,
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise GitCommandError(command, e.returncode, e.stderr or "") from e
        except OSError as e:
            raise GitCommandError(command, None, str(e)) from e
        return res.stdout.strip()

    def run(self, command: str) -> str:
        """Executes a git subcommand given as a single command string.

        Args:
            command (str): The subcommand and its arguments, e.g. `fetch upstream`.
                Arguments containing spaces must be shell-quoted.

        Returns:
            str: The captured stdout.
        """
        return self._run(shlex.split(command))


def _lines(output: str) -> list[str]:
    return [line for line in output.splitlines() if line.strip()]


def current_branch(git: GitGateway) -> str:
    """Returns the name of the checked-out branch (`HEAD` when detached)."""
    return git.run("rev-parse --abbrev-ref HEAD")


def remotes(git: GitGateway) -> list[str]:
    """Lists the names of the configured remotes."""
    return _lines(git.run("remote"))


def remote_url(git: GitGateway, name: str) -> str:
    """Returns the fetch URL of an existing remote."""
    return git.run(f"remote get-url {shlex.quote(name)}")


def list_tree(git: GitGateway, ref: str) -> list[str]:
    """Lists every tracked path in the tree of a ref.

    Args:
        git (GitGateway): The repository gateway.
        ref (str): A branch or remote-tracking ref, e.g. `upstream/development`.

    Returns:
        list[str]: Repository-relative paths, in git's order.
    """
    return _lines(git.run(f"ls-tree -r {shlex.quote(ref)} --name-only"))


def diff_names(git: GitGateway, a: str, b: str) -> list[str]:
    """Lists the paths whose content differs between two refs."""
    return _lines(git.run(f"diff --name-only {shlex.quote(a)} {shlex.quote(b)} --"))


def unmerged_paths(git: GitGateway) -> list[str]:
    """Lists paths left in a conflicted state by the last merge."""
    return _lines(git.run("diff --name-only --diff-filter=U"))


def branch_exists(git: GitGateway, name: str) -> bool:
    """Checks for a local branch without raising when it is missing."""
    return bool(git.run(f"branch --list {shlex.quote(name)}").strip())


def remote_branch_exists(git: GitGateway, remote: str, branch: str) -> bool:
    """Asks the remote whether it has a branch with the given name."""
    output = git.run(
        f"ls-remote --heads {shlex.quote(remote)} {shlex.quote('refs/heads/' + branch)}"
    )
    return bool(output.strip())


def count_commits(git: GitGateway, base: str, tip: str) -> int:
    """Counts the commits reachable from `tip` but not from `base`."""
    output = git.run(f"rev-list --count {shlex.quote(base)}..{shlex.quote(tip)}")
    return int(output.strip() or 0)


def is_ancestor(git: GitGateway, ancestor: str, descendant: str) -> bool:
    """Checks whether `ancestor` is reachable from `descendant`.

    `merge-base --is-ancestor` signals "no" with exit code 1, so that exit code
    is translated into False. Any other failure propagates.
    """
    try:
        git.run(
            f"merge-base --is-ancestor {shlex.quote(ancestor)} {shlex.quote(descendant)}"
        )
    except GitCommandError as e:
        if e.exit_code == 1:
            return False
        raise
    return True

"""Shared fixtures: an in-memory stand-in for the git command gateway."""

from collections.abc import Callable
from pathlib import Path

import pytest

from cella_sync.errors import GitCommandError

Response = str | Exception | Callable[[], str]


class FakeGit:
    """Returns canned output per command string and records every call.

    Commands without a canned response return an empty string.
    """

    def __init__(self, path: Path, responses: dict[str, Response] | None = None):
        self.path = path
        self.responses: dict[str, Response] = dict(responses or {})
        self.calls: list[str] = []

    def run(self, command: str) -> str:
        self.calls.append(command)
        response = self.responses.get(command, "")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response()
        return response

    def fail(self, command: str, exit_code: int = 1, stderr: str = "") -> None:
        self.responses[command] = GitCommandError(command, exit_code, stderr)

    def ran(self, prefix: str) -> list[str]:
        return [c for c in self.calls if c.startswith(prefix)]


@pytest.fixture
def fake_git(tmp_path: Path) -> FakeGit:
    """A FakeGit rooted at a temporary directory."""
    return FakeGit(tmp_path)

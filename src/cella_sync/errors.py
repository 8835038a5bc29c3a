"""Error taxonomy for the sync engine.

Every failure the engine raises derives from `SyncError`, so the CLI can
report it and exit non-zero without catching unrelated exceptions.
"""


class SyncError(Exception):
    """Base class for all errors raised by cella-sync."""


class GitCommandError(SyncError):
    """A git subcommand exited non-zero or could not be launched.

    Attributes:
        command (str): The git command line, without the leading `git`.
        exit_code (int | None): The process exit code, or None if git never ran.
        stderr (str): The captured standard error output.
    """

    def __init__(self, command: str, exit_code: int | None, stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        if exit_code is None:
            message = f"Could not run 'git {command}'{detail}"
        else:
            message = f"'git {command}' failed with exit code {exit_code}{detail}"
        super().__init__(message)


class ConfigurationError(SyncError):
    """Required inputs are missing or invalid after resolution."""


class RemoteConflictError(SyncError):
    """A remote with the requested name already points at another URL.

    Attributes:
        name (str): The remote name.
        existing_url (str): The URL the remote currently points at.
        requested_url (str): The URL that was requested.
    """

    def __init__(self, name: str, existing_url: str, requested_url: str):
        self.name = name
        self.existing_url = existing_url
        self.requested_url = requested_url
        super().__init__(
            f"Remote '{name}' URL mismatch: it points at {existing_url}, "
            f"expected {requested_url}"
        )


class BranchExistsError(SyncError):
    """The branch that was about to be created already exists.

    Attributes:
        branch (str): The branch name.
        location (str): Where it exists ('local' or a remote name).
    """

    def __init__(self, branch: str, location: str):
        self.branch = branch
        self.location = location
        where = "locally" if location == "local" else f"on remote '{location}'"
        super().__init__(f"Branch '{branch}' already exists {where}")


class IntegrationBranchError(SyncError):
    """The upstream integration branch can no longer be fast-forwarded."""

"""Global constants and default values for cella-sync.

This module defines the application identifiers, the default file locations
looked up in the working repository, and the naming conventions used for the
branches the sync engine creates.
"""

# --- Identity ---
APP_NAME = "cella-sync"
"""str: The human-readable application name (also the logger name)."""

# --- Configuration Paths ---
CONFIG_FILE_NAME = "cella-sync.toml"
"""str: The repository-local configuration file name."""

PYPROJECT_SECTION = "tool.cella-sync"
"""str: The pyproject.toml table read when no local config file exists."""

# --- Defaults ---
DEFAULT_DIVERGED_FILE = "diverged.txt"
"""str: Where the divergence report is written, relative to the repo root."""

DEFAULT_UPSTREAM_BRANCH = "development"
"""str: The template branch compared against when none is configured."""

DEFAULT_UPSTREAM_REMOTE = "upstream"
"""str: The name of the remote pointing at the template repository."""

IGNORE_COMMENT_PREFIX = "#"
"""str: Lines in an ignore file starting with this prefix are skipped."""

# --- Branch Naming ---
INTEGRATION_BRANCH_PREFIX = "sync"
"""str: Namespace for the local mirror of the upstream branch."""

PR_BRANCH_PREFIX = "pr-branch"
"""str: Prefix of the dated branches pushed to forks."""

PR_BRANCH_DATE_FORMAT = "%Y%m%d-%H%M%S"
"""str: strftime format used for the date part of a PR branch name."""

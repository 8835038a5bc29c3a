import logging
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE_NAME,
    DEFAULT_DIVERGED_FILE,
    DEFAULT_UPSTREAM_BRANCH,
    DEFAULT_UPSTREAM_REMOTE,
    PYPROJECT_SECTION,
)
from .errors import ConfigurationError
from .models import ForkTarget

logger = logging.getLogger(APP_NAME)


@dataclass
class SyncConfig:
    """Settings for comparing against and pulling from the template.

    Attributes:
        diverged_file (str): Report file path, relative to the repo root.
        ignore_file (str | None): Optional file with one ignore pattern per line.
        ignore_list (list[str]): Ignore patterns applied before the file's.
        upstream_branch (str): The template branch.
        upstream_remote (str): The remote name of the template repository.
        upstream_url (str | None): The template URL, used to add the remote.
        local_branch (str | None): The branch to sync. Defaults to the current one.
    """

    diverged_file: str = DEFAULT_DIVERGED_FILE
    ignore_file: str | None = None
    ignore_list: list[str] = field(default_factory=list)
    upstream_branch: str = DEFAULT_UPSTREAM_BRANCH
    upstream_remote: str = DEFAULT_UPSTREAM_REMOTE
    upstream_url: str | None = None
    local_branch: str | None = None


@dataclass
class Config:
    """Configuration aggregator.

    Attributes:
        sync (SyncConfig): Template sync settings.
        forks (list[ForkTarget]): Forks PR branches can be pushed to.
        source (Path | None): The file the settings were read from, if any.
    """

    sync: SyncConfig = field(default_factory=SyncConfig)
    forks: list[ForkTarget] = field(default_factory=list)
    source: Path | None = None

    @classmethod
    def load(cls, repo_path: Path, config_file: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults and config files.

        The repository's `cella-sync.toml` (or the `[tool.cella-sync]` table of
        its `pyproject.toml`) is read first; an explicit config file is merged
        on top of it.

        Args:
            repo_path (Path): The repository root to search for local config.
            config_file (Path | None): An explicitly requested config file.

        Returns:
            Config: The merged configuration object.

        Raises:
            ConfigurationError: If the explicit file is missing or unreadable, or
                a fork entry is incomplete.
        """
        instance = cls()

        local_toml = repo_path / CONFIG_FILE_NAME
        pyproject = repo_path / "pyproject.toml"

        if local_toml.exists():
            instance._merge_from_file(local_toml)
        elif pyproject.exists():
            instance._merge_from_file(pyproject, section=PYPROJECT_SECTION)

        if config_file is not None:
            if not config_file.is_file():
                raise ConfigurationError(f'Config file: "{config_file}" not found.')
            instance._merge_from_file(config_file, strict=True)

        return instance

    def _merge_from_file(
        self, path: Path, section: str | None = None, strict: bool = False
    ) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
            section (str | None): Dot-separated table path (e.g., 'tool.cella-sync').
            strict (bool): Raise on syntax and type errors instead of logging them.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            if strict:
                raise ConfigurationError(f"Invalid config file {path}: {e}") from e
            logger.error(f"Config syntax error in {path}: {e}")
            return
        except OSError as e:
            if strict:
                raise ConfigurationError(f"Could not read {path}: {e}") from e
            logger.warning(f"Failed to load config from {path}: {e}")
            return

        if section:
            for key in section.split("."):
                data = data.get(key, {})

        if not data:
            return

        unknown = set(data.keys()) - {"sync", "forks"}
        if unknown:
            logger.warning(
                f"Unknown config sections in {path.name}: {', '.join(sorted(unknown))}. Ignoring."
            )

        if "sync" in data:
            sync_table = data["sync"]
            if not isinstance(sync_table, dict):
                message = f"Config error in {path}: [sync] must be a table."
                if strict:
                    raise ConfigurationError(message)
                logger.warning(f"{message} Ignoring.")
                sync_table = {}
            updates = dict(sync_table)
            # Ignore lists accumulate across files instead of replacing each other.
            new_ignores = updates.pop("ignore_list", [])
            self.sync = self._update_dataclass("sync", self.sync, updates, strict)
            try:
                new_ignores = _check_sync_value("ignore_list", new_ignores)
            except ValueError as e:
                if strict:
                    raise ConfigurationError(
                        f"Config error in [sync].ignore_list: {e}"
                    ) from e
                logger.warning(
                    f"Config error in [sync].ignore_list: {e}. Falling back to default."
                )
                new_ignores = []
            if new_ignores:
                merged = [*self.sync.ignore_list, *new_ignores]
                self.sync.ignore_list = list(dict.fromkeys(merged))

        if "forks" in data:
            self.forks = [parse_fork(entry, path) for entry in data["forks"]]

        self.source = path

    @staticmethod
    def _update_dataclass(
        section_name: str, instance: Any, updates: dict, strict: bool = False
    ) -> Any:
        """Updates a dataclass, warning on invalid keys and mistyped values."""
        valid_keys = instance.__dataclass_fields__.keys()

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        filtered_updates = {}
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                filtered_updates[k] = _check_sync_value(k, v)
            except ValueError as e:
                if strict:
                    raise ConfigurationError(
                        f"Config error in [{section_name}].{k}: {e}"
                    ) from e
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)


def _check_sync_value(key: str, value: Any) -> Any:
    """Checks the TOML type of a `[sync]` value.

    Raises:
        ValueError: If `ignore_list` is not a list of strings, or any other
            setting is not a string.
    """
    if key == "ignore_list":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"expected a list of strings, got {value!r}")
        return value

    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {value!r}")
    return value


def parse_fork(entry: Any, path: Path) -> ForkTarget:
    """Validates one `[[forks]]` table.

    Args:
        entry (Any): The parsed TOML table.
        path (Path): The file it came from, for error messages.

    Returns:
        ForkTarget: The fork.

    Raises:
        ConfigurationError: If a required key is missing or not a string.
    """
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Invalid fork entry in {path}: {entry!r}")

    missing = [
        key
        for key in ("name", "remote_url", "branch")
        if not isinstance(entry.get(key), str) or not entry[key].strip()
    ]
    if missing:
        raise ConfigurationError(
            f"Fork entry in {path} is missing {', '.join(missing)}: {entry!r}"
        )

    return ForkTarget(
        name=entry["name"].strip(),
        remote_url=entry["remote_url"].strip(),
        branch=entry["branch"].strip(),
    )

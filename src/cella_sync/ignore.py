"""Ignore-pattern resolution and path filtering.

Patterns come from two sources, an explicit list (config or CLI) and an ignore
file, and are merged into one ordered `IgnoreRuleSet`. A path is excluded if
any rule matches it:

- the path equals the rule,
- the path lies under the rule as a directory (`dist` or `dist/` excludes
  `dist/app.js`),
- the rule is a shell glob matching the path. `*`, `?` and `[...]` stay
  within one path segment; `**` spans any number of segments.

Matching is case-sensitive on every platform.
"""

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from wcmatch import glob

from .constants import APP_NAME, IGNORE_COMMENT_PREFIX
from .errors import ConfigurationError
from .models import IgnoreRuleSet

logger = logging.getLogger(APP_NAME)


def read_ignore_file(path: Path) -> list[str]:
    """Reads patterns from an ignore file, one per line.

    Blank lines and comment lines are skipped.

    Args:
        path (Path): The ignore file.

    Returns:
        list[str]: The patterns in file order.

    Raises:
        ConfigurationError: If the file is not valid UTF-8.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"Ignore file {path} is not valid UTF-8: {e}") from e

    patterns = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(IGNORE_COMMENT_PREFIX):
            continue
        patterns.append(line)
    return patterns


def resolve(
    explicit_patterns: Iterable[str] | None = None,
    ignore_file: Path | None = None,
) -> IgnoreRuleSet:
    """Merges explicit patterns and ignore-file patterns into one rule set.

    Explicit patterns come first, file patterns are appended. A repeated
    pattern keeps its first position.

    Args:
        explicit_patterns (Iterable[str] | None): Patterns from config or CLI.
        ignore_file (Path | None): Optional ignore file. A missing file
            contributes no patterns.

    Returns:
        IgnoreRuleSet: The merged, ordered rules.
    """
    patterns = [p.strip() for p in explicit_patterns or [] if p.strip()]

    if ignore_file is not None:
        if ignore_file.is_file():
            patterns.extend(read_ignore_file(ignore_file))
        else:
            logger.debug(f"Ignore file {ignore_file} not found. Skipping.")

    return IgnoreRuleSet(tuple(dict.fromkeys(patterns)))


# Case-sensitive, `/`-separated matching on every platform; `*` also matches
# dotfiles.
_GLOB_FLAGS = glob.GLOBSTAR | glob.DOTGLOB | glob.FORCEUNIX


def matches(path: str, pattern: str) -> bool:
    """Checks whether a single rule excludes a path.

    Args:
        path (str): A repository-relative path using `/` separators.
        pattern (str): An ignore rule.

    Returns:
        bool: True if the rule matches the path.
    """
    if path == pattern:
        return True

    prefix = pattern.rstrip("/")
    if prefix and path.startswith(prefix + "/"):
        return True

    return glob.globmatch(path, pattern, flags=_GLOB_FLAGS)


def is_ignored(path: str, rules: IgnoreRuleSet) -> bool:
    """Checks a path against every rule, in rule order."""
    return any(matches(path, pattern) for pattern in rules.patterns)


def exclude(paths: Sequence[str], rules: IgnoreRuleSet) -> list[str]:
    """Removes every path matched by any rule.

    The input order is preserved and applying the filter twice gives the same
    result as applying it once.

    Args:
        paths (Sequence[str]): Candidate paths.
        rules (IgnoreRuleSet): The rules to apply.

    Returns:
        list[str]: The paths no rule matched.
    """
    if not rules:
        return list(paths)

    kept = []
    for path in paths:
        if is_ignored(path, rules):
            logger.debug(f"Ignoring {path}")
            continue
        kept.append(path)
    return kept

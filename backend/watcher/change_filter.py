"""
WatchX Change Filter.

Decides whether a changed path should be ignored.
Requires Python 3.11+.
"""

import fnmatch
import re
from collections.abc import Iterable
from pathlib import Path, PurePath

from watcher.models import REGEX_DELIMITER, IgnoreRule, IgnoreRuleSet, RuleKind
from utils.logger import get_logger


logger = get_logger("change_filter")

BACKUP_SUFFIX = "~"


def parse_rule(pattern: str) -> IgnoreRule:
    """
    Parse one ignore pattern.

    Args:
        pattern: `/regex/` or a glob; a trailing `/` on a glob marks a directory

    Returns:
        IgnoreRule (an invalid regex yields a rule that never matches)
    """
    if (
        len(pattern) > 2
        and pattern.startswith(REGEX_DELIMITER)
        and pattern.endswith(REGEX_DELIMITER)
    ):
        expression = pattern[1:-1]
        try:
            compiled = re.compile(expression)
        except re.error as e:
            logger.debug("invalid_ignore_regex", pattern=pattern, error=str(e))
            compiled = None
        return IgnoreRule(source=pattern, kind=RuleKind.REGEX, pattern=expression, regex=compiled)

    glob = pattern.replace("\\", "/").rstrip("/")
    if glob.startswith("./"):
        glob = glob[2:]
    return IgnoreRule(source=pattern, kind=RuleKind.GLOB, pattern=glob or pattern)


def parse_rules(patterns: Iterable[str] | None) -> IgnoreRuleSet:
    """Build an ignore rule set, skipping blank patterns."""
    if not patterns:
        return IgnoreRuleSet()
    return IgnoreRuleSet(
        rules=tuple(parse_rule(p.strip()) for p in patterns if p and p.strip())
    )


def _candidates(path: PurePath, root: Path | None) -> list[str]:
    """The path itself followed by each of its ancestors, as `/`-joined strings."""
    if root is not None:
        try:
            path = path.relative_to(root)
        except ValueError:
            pass

    candidates = [path.as_posix()]
    for parent in path.parents:
        text = parent.as_posix()
        if text in (".", "", "/") or parent == parent.parent:
            continue
        candidates.append(text)
    return candidates


def _matches(rule: IgnoreRule, candidate: str) -> bool:
    if rule.kind is RuleKind.REGEX:
        return rule.regex is not None and rule.regex.search(candidate) is not None

    if fnmatch.fnmatchcase(candidate, rule.pattern):
        return True
    name = candidate.rsplit("/", 1)[-1]
    return fnmatch.fnmatchcase(name, rule.pattern)


def is_ignored(path: PurePath | str, rules: IgnoreRuleSet, root: Path | None = None) -> bool:
    """
    Check whether a changed path should be ignored.

    Editor backup files (trailing `~`) are always ignored. Otherwise each
    rule is tried against the path and every ancestor directory, so a rule
    matching a directory ignores everything beneath it.

    Args:
        path: Changed path, absolute or relative
        rules: Parsed ignore rules
        root: Watch root; paths under it are matched relative to it

    Returns:
        True if the path should be ignored
    """
    path = PurePath(path)
    if path.name.endswith(BACKUP_SUFFIX):
        return True
    if not rules:
        return False

    candidates = _candidates(path, root)
    return any(_matches(rule, candidate) for rule in rules for candidate in candidates)

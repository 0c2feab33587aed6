"""
WatchX Watcher Data Models.

Change events and ignore rules shared by the filter, gate and watcher.
Requires Python 3.11+.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ChangeKind(str, Enum):
    """Kinds of filesystem changes."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """One filesystem change; a move carries its source and destination."""

    paths: tuple[Path, ...]
    kind: ChangeKind

    @classmethod
    def of(cls, kind: ChangeKind, *paths: Path | str) -> "WatchEvent":
        return cls(paths=tuple(Path(p) for p in paths), kind=kind)


class RuleKind(str, Enum):
    """How an ignore rule is matched."""

    GLOB = "glob"
    REGEX = "regex"


REGEX_DELIMITER = "/"


@dataclass(frozen=True, slots=True)
class IgnoreRule:
    """
    A single ignore pattern.

    `/pattern/` is a regular expression searched in each candidate path;
    anything else is a shell glob. `regex` is None when the expression
    failed to compile, in which case the rule never matches.
    """

    source: str
    kind: RuleKind
    pattern: str
    regex: re.Pattern[str] | None = field(default=None, compare=False)

    @property
    def is_valid(self) -> bool:
        return self.kind is RuleKind.GLOB or self.regex is not None


@dataclass(frozen=True, slots=True)
class IgnoreRuleSet:
    """Ordered, immutable collection of ignore rules."""

    rules: tuple[IgnoreRule, ...] = ()

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def patterns(self) -> list[str]:
        return [rule.source for rule in self.rules]

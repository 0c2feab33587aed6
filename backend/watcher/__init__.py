"""
WatchX File Watcher Package.

Change filtering, debouncing and file system monitoring.
Requires Python 3.11+.
"""

from watcher.models import ChangeKind, IgnoreRule, IgnoreRuleSet, WatchEvent
from watcher.change_filter import is_ignored, parse_rules
from watcher.debouncer import DebounceGate, GateState, Skip, SkipReason, Trigger
from watcher.file_watcher import EventSourceDisconnected, FileWatcher, WatchAttachError

__all__ = [
    "ChangeKind",
    "IgnoreRule",
    "IgnoreRuleSet",
    "WatchEvent",
    "is_ignored",
    "parse_rules",
    "DebounceGate",
    "GateState",
    "Skip",
    "SkipReason",
    "Trigger",
    "EventSourceDisconnected",
    "FileWatcher",
    "WatchAttachError",
]

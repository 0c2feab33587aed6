"""
WatchX Debounce Gate.

Turns bursts of filesystem events into at most one restart per window.
Requires Python 3.11+.
"""

import threading
import time
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from watcher.change_filter import is_ignored
from watcher.models import IgnoreRuleSet, WatchEvent
from utils.config import ResetPolicy
from utils.logger import LoggerMixin


class GateState(str, Enum):
    """States of the debounce gate."""

    IDLE = "idle"
    RESTART_IN_FLIGHT = "restart_in_flight"


class SkipReason(str, Enum):
    """Why a batch of events did not trigger a restart."""

    IGNORED = "ignored"
    IN_FLIGHT = "in_flight"
    DEBOUNCED = "debounced"


@dataclass(frozen=True, slots=True)
class Trigger:
    """A batch of events accepted as a restart trigger."""

    paths: tuple[Path, ...]

    triggered = True


@dataclass(frozen=True, slots=True)
class Skip:
    """A batch of events that was dropped."""

    reason: SkipReason
    warned: bool = False

    triggered = False


GateDecision = Trigger | Skip


@dataclass
class RestartState:
    """Timestamps and state guarded by the gate's lock."""

    state: GateState = GateState.IDLE
    last_accepted_at: float | None = None
    last_warned_at: float | None = None


class DebounceGate(LoggerMixin):
    """
    Debounces restart triggers.

    The first relevant batch after the window has elapsed is accepted and
    moves the gate to RESTART_IN_FLIGHT. Everything else is skipped, with a
    "debounce active" warning emitted at most once per window.

    The gate returns to IDLE either when the restart reports completion
    (ResetPolicy.COMPLETION) or when a timer started on acceptance fires
    after one window (ResetPolicy.FIXED). Under the fixed policy a restart
    slower than the window may overlap the next accepted trigger.
    """

    def __init__(
        self,
        window_seconds: float = 1.0,
        rules: IgnoreRuleSet | None = None,
        root: Path | None = None,
        reset_policy: ResetPolicy = ResetPolicy.COMPLETION,
        clock: Callable[[], float] = time.monotonic,
        lock: AbstractContextManager | None = None,
    ) -> None:
        """
        Initialize the gate.

        Args:
            window_seconds: Minimum time between two accepted triggers
            rules: Ignore rules applied before debouncing
            root: Watch root, used for relative rule matching
            reset_policy: How the gate returns to IDLE
            clock: Monotonic time source
            lock: Lock shared with the process supervisor
        """
        self._window = window_seconds
        self._rules = rules or IgnoreRuleSet()
        self._root = root
        self._reset_policy = reset_policy
        self._clock = clock
        self._lock = lock if lock is not None else threading.RLock()
        self._state = RestartState()
        self._timer: threading.Timer | None = None

    @property
    def window(self) -> float:
        return self._window

    @property
    def reset_policy(self) -> ResetPolicy:
        return self._reset_policy

    @property
    def state(self) -> GateState:
        with self._lock:
            return self._state.state

    @property
    def last_accepted_at(self) -> float | None:
        with self._lock:
            return self._state.last_accepted_at

    def relevant_paths(self, events: Iterable[WatchEvent]) -> tuple[Path, ...]:
        """Non-ignored paths of the batch, de-duplicated in arrival order."""
        seen: dict[Path, None] = {}
        for event in events:
            for path in event.paths:
                if path not in seen and not is_ignored(path, self._rules, self._root):
                    seen[path] = None
        return tuple(seen)

    def on_events(self, events: Iterable[WatchEvent]) -> GateDecision:
        """
        Decide whether a batch of events triggers a restart.

        Args:
            events: Events received since the previous call

        Returns:
            Trigger with the relevant paths, or Skip with the reason
        """
        paths = self.relevant_paths(events)
        if not paths:
            return Skip(SkipReason.IGNORED)

        with self._lock:
            now = self._clock()
            state = self._state

            if state.state is GateState.RESTART_IN_FLIGHT:
                return Skip(SkipReason.IN_FLIGHT, warned=self._warn_debounced(now))

            if state.last_accepted_at is None or now - state.last_accepted_at > self._window:
                state.state = GateState.RESTART_IN_FLIGHT
                state.last_accepted_at = now
                if self._reset_policy is ResetPolicy.FIXED:
                    self._start_reset_timer()
                return Trigger(paths)

            return Skip(SkipReason.DEBOUNCED, warned=self._warn_debounced(now))

    def restart_finished(self) -> None:
        """Report that the triggered restart completed."""
        if self._reset_policy is not ResetPolicy.COMPLETION:
            return
        with self._lock:
            self._state.state = GateState.IDLE

    def close(self) -> None:
        """Cancel any pending reset timer."""
        with self._lock:
            self._cancel_reset_timer()

    def _warn_debounced(self, now: float) -> bool:
        """Emit the skipped-reload warning at most once per window. Lock held."""
        last = self._state.last_warned_at
        if last is not None and now - last <= self._window:
            return False
        self._state.last_warned_at = now
        self.log.warning("debounce_active", window_seconds=self._window)
        return True

    def _start_reset_timer(self) -> None:
        """Lock held."""
        self._cancel_reset_timer()
        timer = threading.Timer(self._window, self._on_window_elapsed)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_reset_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_window_elapsed(self) -> None:
        with self._lock:
            self._state.state = GateState.IDLE
            self._timer = None

"""
WatchX Watch Session.

The consumer loop tying the watcher, debounce gate and supervisor together.
Requires Python 3.11+.
"""

import threading
from pathlib import Path

from supervisor.port_lookup import default_port_owner_lookup
from supervisor.port_reclaimer import PortReclaimer
from supervisor.process_supervisor import ProcessSupervisor
from watcher.change_filter import parse_rules
from watcher.debouncer import DebounceGate, Trigger
from watcher.file_watcher import EventSourceDisconnected, FileWatcher, WatchAttachError
from watcher.models import WatchEvent
from utils.config import Settings, WatchConfig, get_settings
from utils.logger import LoggerMixin


EXIT_OK = 0
EXIT_FAILURE = 1


class WatchSession(LoggerMixin):
    """
    One run of the watcher.

    Events are consumed on the calling thread in arrival order; restarts
    run synchronously on that same loop.
    """

    def __init__(
        self,
        config: WatchConfig,
        settings: Settings | None = None,
        watcher: FileWatcher | None = None,
        supervisor: ProcessSupervisor | None = None,
        gate: DebounceGate | None = None,
    ) -> None:
        self._config = config
        self._settings = settings or get_settings()
        self._stop_requested = threading.Event()
        self._lock = threading.RLock()

        watcher_settings = self._settings.watcher
        supervisor_settings = self._settings.supervisor

        self._root = config.watch_dir.resolve()
        self._port = config.port
        self._watcher = watcher or FileWatcher(self._root)
        self._gate = gate or DebounceGate(
            window_seconds=watcher_settings.debounce_seconds,
            rules=parse_rules(config.ignore),
            root=self._root,
            reset_policy=watcher_settings.reset_policy,
            lock=self._lock,
        )
        self._supervisor = supervisor or ProcessSupervisor(
            reclaimer=PortReclaimer(
                lookup=default_port_owner_lookup(supervisor_settings.lookup_timeout_seconds),
                policy=supervisor_settings.reclaim_policy,
                grace_period=supervisor_settings.reclaim_grace_seconds,
            ),
            kill_timeout=supervisor_settings.kill_timeout_seconds,
            poll_interval=supervisor_settings.poll_interval_seconds,
            port_retries=supervisor_settings.port_retries,
            retry_delay=supervisor_settings.retry_delay_seconds,
            kill_tree=supervisor_settings.kill_tree,
            lock=self._lock,
        )

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def gate(self) -> DebounceGate:
        return self._gate

    @property
    def port(self) -> int:
        return self._port

    def request_stop(self) -> None:
        """Ask the loop to exit at its next tick. Safe from signal handlers."""
        self._stop_requested.set()

    def run(self) -> int:
        """
        Watch and supervise until stopped.

        Returns:
            0 after a requested stop, 1 if the watcher could not attach or
            the event source disconnected
        """
        try:
            self._watcher.start()
        except WatchAttachError as e:
            self.log.error("watch_attach_failed", path=str(self._root), error=str(e))
            return EXIT_FAILURE

        self.log.info(
            "watch_started",
            path=str(self._root),
            debounce_seconds=self._gate.window,
            reset_policy=self._gate.reset_policy.value,
            port=self._port,
            ignore=self._config.ignore,
        )

        try:
            self._supervisor.start(self._config.commands, self._config.env)
            return self._loop()
        finally:
            self._shutdown()

    def _loop(self) -> int:
        poll_timeout = self._settings.watcher.poll_timeout_seconds
        while not self._stop_requested.is_set():
            try:
                events = self._watcher.next_batch(timeout=poll_timeout)
            except EventSourceDisconnected as e:
                self.log.error("event_source_disconnected", error=str(e))
                return EXIT_FAILURE

            if events:
                self.handle_events(events)

        return EXIT_OK

    def handle_events(self, events: list[WatchEvent]) -> bool:
        """
        Run one batch through the gate and restart on a trigger.

        Returns:
            True if a restart was triggered
        """
        decision = self._gate.on_events(events)
        if not isinstance(decision, Trigger):
            return False

        self.log.info("change_detected", paths=[self._display(p) for p in decision.paths])
        try:
            self._supervisor.restart(self._config.commands, self._config.env, self._port)
        finally:
            self._gate.restart_finished()
        return True

    def _display(self, path: Path) -> str:
        try:
            return path.relative_to(self._root).as_posix()
        except ValueError:
            return str(path)

    def _shutdown(self) -> None:
        self.log.info("shutting_down")
        self._gate.close()
        self._watcher.stop()
        self._supervisor.shutdown()

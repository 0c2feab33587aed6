"""
WatchX Process Supervisor.

Owns the running generation of child processes and restarts it safely.
Requires Python 3.11+.
"""

import subprocess
import threading
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import AbstractContextManager, contextmanager

import psutil

from supervisor.port_reclaimer import PortReclaimer
from supervisor.spawner import ProcessSpec, spawn_all
from utils.logger import LoggerMixin


Spawner = Callable[[Sequence[str | ProcessSpec], Mapping[str, str]], list[subprocess.Popen]]


class ProcessSupervisor(LoggerMixin):
    """
    Supervises one generation of child processes.

    A restart reclaims the target port, kills the current generation with a
    bounded wait, retries the port reclaim a bounded number of times and
    spawns the next generation. Only one restart runs at a time; a call made
    while another is in flight is dropped, not queued. Nothing raised inside
    a restart escapes it.
    """

    def __init__(
        self,
        reclaimer: PortReclaimer,
        kill_timeout: float = 5.0,
        poll_interval: float = 0.1,
        port_retries: int = 3,
        retry_delay: float = 1.0,
        kill_tree: bool = True,
        spawner: Spawner = spawn_all,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        lock: AbstractContextManager | None = None,
    ) -> None:
        """
        Initialize the supervisor.

        Args:
            reclaimer: Port reclaimer used before and after killing children
            kill_timeout: Seconds to wait for each child to exit
            poll_interval: Seconds between exit status polls
            port_retries: Extra reclaim attempts while the port stays bound
            retry_delay: Seconds to sleep after each extra attempt
            kill_tree: Also kill descendants of each child
            spawner: Starts a generation from commands and environment
            sleep: Sleep function
            clock: Monotonic time source
            lock: Lock shared with the debounce gate
        """
        self._reclaimer = reclaimer
        self._kill_timeout = kill_timeout
        self._poll_interval = poll_interval
        self._port_retries = port_retries
        self._retry_delay = retry_delay
        self._kill_tree = kill_tree
        self._spawner = spawner
        self._sleep = sleep
        self._clock = clock
        self._lock = lock if lock is not None else threading.RLock()
        self._handles: list[subprocess.Popen] = []
        self._in_flight = False
        self._generation = 0

    @property
    def handles(self) -> list[subprocess.Popen]:
        """Snapshot of the current generation's handles."""
        with self._lock:
            return list(self._handles)

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def is_restarting(self) -> bool:
        with self._lock:
            return self._in_flight

    def try_begin_restart(self) -> bool:
        """Claim the restart slot; False if a restart is already running."""
        with self._lock:
            if self._in_flight:
                return False
            self._in_flight = True
            return True

    def end_restart(self) -> None:
        """Release the restart slot."""
        with self._lock:
            self._in_flight = False

    @contextmanager
    def _single_flight(self) -> Iterator[bool]:
        acquired = self.try_begin_restart()
        try:
            yield acquired
        finally:
            if acquired:
                self.end_restart()

    def start(self, commands: Sequence[str | ProcessSpec], env: Mapping[str, str]) -> None:
        """Spawn the initial generation."""
        with self._single_flight() as acquired:
            if not acquired:
                self.log.info("restart_already_in_progress")
                return
            handles = self._spawner(commands, env)
            with self._lock:
                self._handles = handles
                self._generation += 1
            self.log.info("processes_started", count=len(handles), commands=len(commands))

    def restart(
        self,
        commands: Sequence[str | ProcessSpec],
        env: Mapping[str, str],
        port: int,
    ) -> bool:
        """
        Replace the current generation.

        Args:
            commands: Commands of the new generation, in order
            env: Entries laid over the inherited environment
            port: TCP port to reclaim before spawning

        Returns:
            True if this call performed the restart, False if it was dropped
        """
        with self._single_flight() as acquired:
            if not acquired:
                self.log.info("restart_already_in_progress", port=port)
                return False
            try:
                self._restart(commands, env, port)
            except Exception:
                self.log.exception("restart_failed", port=port)
            return True

    def shutdown(self) -> None:
        """Kill every tracked process with a bounded wait."""
        with self._lock:
            handles = self._handles
            self._handles = []

        if not handles:
            return

        self.log.info("stopping_processes", count=len(handles))
        for handle in handles:
            self._terminate(handle)

    def _restart(
        self,
        commands: Sequence[str | ProcessSpec],
        env: Mapping[str, str],
        port: int,
    ) -> None:
        started_at = self._clock()
        with self._lock:
            old_handles = list(self._handles)

        self.log.info("restart_started", port=port, processes=len(old_handles))

        outcome = self._reclaimer.reclaim(port)

        for handle in old_handles:
            self._terminate(handle)

        with self._lock:
            self._handles = []

        # Killing the old generation may release the port after the reclaim.
        freed = outcome.freed if not old_handles else self._reclaimer.is_free(port)
        self._ensure_port_free(port, freed)

        handles = self._spawner(commands, env)
        with self._lock:
            self._handles = handles
            self._generation += 1

        self.log.info(
            "restart_finished",
            processes=len(handles),
            commands=len(commands),
            elapsed_seconds=round(self._clock() - started_at, 2),
        )

    def _ensure_port_free(self, port: int, freed: bool) -> bool:
        attempts = 0
        while not freed and attempts < self._port_retries:
            self.log.warning(
                "port_still_in_use",
                port=port,
                attempts_left=self._port_retries - attempts,
            )
            attempts += 1
            freed = self._reclaimer.reclaim(port).freed
            if not freed:
                self._sleep(self._retry_delay)

        if freed:
            return True

        self.log.warning("could_not_free_port", port=port, attempts=attempts)
        return False

    def _terminate(self, handle: subprocess.Popen) -> bool:
        """Kill a child (and its descendants) and wait a bounded time for it."""
        if handle.poll() is not None:
            return True

        descendants = self._descendants(handle.pid) if self._kill_tree else []

        try:
            handle.kill()
        except OSError as e:
            self.log.warning("process_kill_failed", pid=handle.pid, error=str(e))

        for child in descendants:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.Error as e:
                self.log.warning("process_kill_failed", pid=child.pid, error=str(e))

        deadline = self._clock() + self._kill_timeout
        while handle.poll() is None:
            if self._clock() >= deadline:
                self.log.warning(
                    "process_kill_timed_out",
                    pid=handle.pid,
                    timeout_seconds=self._kill_timeout,
                )
                return False
            self._sleep(self._poll_interval)

        self.log.debug("process_stopped", pid=handle.pid, returncode=handle.returncode)
        return True

    def _descendants(self, pid: int) -> list[psutil.Process]:
        try:
            return psutil.Process(pid).children(recursive=True)
        except psutil.NoSuchProcess:
            return []
        except psutil.Error as e:
            self.log.debug("process_children_lookup_failed", pid=pid, error=str(e))
            return []

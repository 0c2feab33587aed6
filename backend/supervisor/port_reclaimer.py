"""
WatchX Port Reclaimer.

Stops whatever process holds a TCP port so the next generation can bind it.
Requires Python 3.11+.
"""

import socket
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import psutil

from supervisor.port_lookup import PortOwnerLookup, default_port_owner_lookup
from utils.config import ReclaimPolicy
from utils.logger import LoggerMixin


LOCAL_HOST = "127.0.0.1"


def _bind_option() -> int:
    """
    Socket option for the bind probe.

    On Windows SO_REUSEADDR lets a bind succeed next to a live listener, so
    the probe asks for exclusive use there instead.
    """
    if sys.platform == "win32":
        return socket.SO_EXCLUSIVEADDRUSE
    return socket.SO_REUSEADDR


def is_port_available(port: int, host: str = LOCAL_HOST) -> bool:
    """Check whether a local listener can bind `port`."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, _bind_option(), 1)
        sock.bind((host, port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


@dataclass
class ReclaimOutcome:
    """Result of one reclaim pass."""

    port: int
    freed: bool = False
    owners: list[int] = field(default_factory=list)
    terminated: list[int] = field(default_factory=list)
    force_killed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


class PortReclaimer(LoggerMixin):
    """
    Terminates the owners of a TCP port.

    Each call makes a single pass: discover owners, stop them, then verify
    with a local bind. Retrying is the caller's business.
    """

    def __init__(
        self,
        lookup: PortOwnerLookup | None = None,
        policy: ReclaimPolicy = ReclaimPolicy.GRACEFUL,
        grace_period: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        port_probe: Callable[[int], bool] = is_port_available,
    ) -> None:
        """
        Initialize the reclaimer.

        Args:
            lookup: Port owner discovery; platform default when omitted
            policy: GRACEFUL sends terminate first, FORCE kills immediately
            grace_period: Seconds to wait after terminate before force killing
            sleep: Sleep function
            port_probe: Bind check used to verify release
        """
        self._lookup = lookup or default_port_owner_lookup()
        self._policy = policy
        self._grace_period = grace_period
        self._sleep = sleep
        self._port_probe = port_probe

    @property
    def lookup(self) -> PortOwnerLookup:
        return self._lookup

    @property
    def policy(self) -> ReclaimPolicy:
        return self._policy

    def is_free(self, port: int) -> bool:
        return self._port_probe(port)

    def reclaim(self, port: int) -> ReclaimOutcome:
        """
        Stop every process listening on `port`.

        Args:
            port: TCP port number

        Returns:
            ReclaimOutcome; `freed` reflects a final bind check
        """
        outcome = ReclaimOutcome(port=port)
        owners = sorted(self._lookup.owners(port))
        outcome.owners = owners

        if not owners:
            outcome.freed = self._port_probe(port)
            self.log.debug("port_reclaim_no_owners", port=port, freed=outcome.freed)
            return outcome

        self.log.info("port_reclaim_started", port=port, pids=owners, policy=self._policy.value)

        for pid in owners:
            if self._policy is ReclaimPolicy.FORCE:
                self._force_kill(pid, outcome)
            else:
                self._stop_gracefully(pid, port, outcome)

        outcome.freed = self._port_probe(port)
        if outcome.freed:
            self.log.info("port_reclaim_freed", port=port)
        else:
            self.log.warning("port_reclaim_still_bound", port=port)
        return outcome

    def _stop_gracefully(self, pid: int, port: int, outcome: ReclaimOutcome) -> None:
        try:
            psutil.Process(pid).terminate()
        except psutil.NoSuchProcess:
            outcome.terminated.append(pid)
            return
        except psutil.Error as e:
            self.log.warning("port_owner_terminate_failed", pid=pid, port=port, error=str(e))
            outcome.failed.append(pid)
            return

        self._sleep(self._grace_period)

        if pid in self._lookup.owners(port) and psutil.pid_exists(pid):
            self.log.info("port_owner_force_kill", pid=pid, port=port)
            self._force_kill(pid, outcome)
        else:
            self.log.info("port_owner_terminated", pid=pid, port=port)
            outcome.terminated.append(pid)

    def _force_kill(self, pid: int, outcome: ReclaimOutcome) -> None:
        try:
            psutil.Process(pid).kill()
            outcome.force_killed.append(pid)
        except psutil.NoSuchProcess:
            outcome.terminated.append(pid)
        except psutil.Error as e:
            self.log.warning("port_owner_kill_failed", pid=pid, error=str(e))
            outcome.failed.append(pid)

"""
WatchX Port Owner Lookup.

Finds the processes listening on a TCP port, one implementation per
platform family.
Requires Python 3.11+.
"""

import os
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod

import psutil

from utils.logger import LoggerMixin


class PortOwnerLookup(ABC, LoggerMixin):
    """Discovers PIDs of processes listening on a TCP port."""

    name = "abstract"

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout

    def owners(self, port: int) -> set[int]:
        """
        Get the PIDs listening on `port`.

        Lookup failures are logged and reported as no owners. The calling
        process is never reported.

        Args:
            port: TCP port number

        Returns:
            Set of owning PIDs
        """
        try:
            pids = self._lookup(port)
        except (OSError, subprocess.SubprocessError, psutil.Error) as e:
            self.log.warning("port_owner_lookup_failed", lookup=self.name, port=port, error=str(e))
            return set()

        own_pid = os.getpid()
        return {pid for pid in pids if pid > 0 and pid != own_pid}

    @abstractmethod
    def _lookup(self, port: int) -> set[int]:
        """Platform-specific discovery; may raise."""

    def _run(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=self._timeout,
            check=False,
        )


class LsofPortOwnerLookup(PortOwnerLookup):
    """Unix lookup through `lsof`."""

    name = "lsof"

    def _lookup(self, port: int) -> set[int]:
        result = self._run(["lsof", "-nP", "-t", f"-iTCP:{port}", "-sTCP:LISTEN"])
        # lsof exits 1 when nothing matches
        if result.returncode not in (0, 1):
            raise subprocess.SubprocessError(
                f"lsof exited with {result.returncode}: {result.stderr.strip()}"
            )
        return parse_lsof_output(result.stdout)


class NetstatPortOwnerLookup(PortOwnerLookup):
    """Windows lookup through the active connections table."""

    name = "netstat"

    def _lookup(self, port: int) -> set[int]:
        result = self._run(["netstat", "-ano", "-p", "TCP"])
        if result.returncode != 0:
            raise subprocess.SubprocessError(
                f"netstat exited with {result.returncode}: {result.stderr.strip()}"
            )
        return parse_netstat_output(result.stdout, port)


class PsutilPortOwnerLookup(PortOwnerLookup):
    """Portable lookup through psutil's socket table."""

    name = "psutil"

    def _lookup(self, port: int) -> set[int]:
        pids: set[int] = set()
        for conn in psutil.net_connections(kind="inet"):
            if (
                conn.status == psutil.CONN_LISTEN
                and conn.laddr
                and conn.laddr.port == port
                and conn.pid
            ):
                pids.add(conn.pid)
        return pids


def parse_lsof_output(output: str) -> set[int]:
    """Parse `lsof -t` output: one PID per line."""
    pids: set[int] = set()
    for token in output.split():
        if token.isdigit():
            pids.add(int(token))
    return pids


def parse_netstat_output(output: str, port: int) -> set[int]:
    """
    Parse `netstat -ano` output for listeners on `port`.

    Rows look like `TCP  0.0.0.0:3000  0.0.0.0:0  LISTENING  4242`.
    """
    pids: set[int] = set()
    suffix = f":{port}"
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 5 or parts[0].upper() != "TCP":
            continue
        local, state, pid = parts[1], parts[3], parts[4]
        if state.upper() == "LISTENING" and local.endswith(suffix) and pid.isdigit():
            pids.add(int(pid))
    return pids


def default_port_owner_lookup(timeout: float = 5.0) -> PortOwnerLookup:
    """Select the lookup for the current platform; called once at startup."""
    if sys.platform == "win32":
        if shutil.which("netstat"):
            return NetstatPortOwnerLookup(timeout=timeout)
    elif shutil.which("lsof"):
        return LsofPortOwnerLookup(timeout=timeout)
    return PsutilPortOwnerLookup(timeout=timeout)

"""
WatchX Test Configuration.

Pytest fixtures and configuration.
Requires Python 3.11+.
"""

import shlex
import socket
import subprocess
import sys
import time
from collections.abc import Generator
from pathlib import Path

import pytest

from supervisor.port_lookup import PortOwnerLookup
from supervisor.port_reclaimer import ReclaimOutcome


class FakeClock:
    """Manually advanced monotonic clock; sleeping advances it."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeReclaimer:
    """Stands in for PortReclaimer, answering bind checks from a script."""

    def __init__(self, free: bool | list[bool] = True) -> None:
        self._free = free
        self.reclaimed: list[int] = []
        self.probes = 0

    def reclaim(self, port: int) -> ReclaimOutcome:
        self.reclaimed.append(port)
        return ReclaimOutcome(port=port, freed=self.is_free(port))

    def is_free(self, port: int) -> bool:
        self.probes += 1
        if isinstance(self._free, list):
            return self._free.pop(0) if len(self._free) > 1 else self._free[0]
        return self._free


class ChildLookup(PortOwnerLookup):
    """Reports a child process as the port owner while it is running."""

    name = "child"

    def __init__(self, process: subprocess.Popen) -> None:
        super().__init__()
        self._process = process

    def _lookup(self, port: int) -> set[int]:
        return {self._process.pid} if self._process.poll() is None else set()


def python_command(code: str, *args: str) -> str:
    """A command string running `code` with the current interpreter."""
    return shlex.join([sys.executable, "-c", code, *args])


SLEEPER = "import time; time.sleep(60)"

LISTENER = (
    "import socket, sys, time\n"
    "s = socket.socket()\n"
    "s.bind(('127.0.0.1', int(sys.argv[1])))\n"
    "s.listen()\n"
    "print('ready', flush=True)\n"
    "time.sleep(60)\n"
)


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def free_port() -> int:
    """A port nothing is listening on right now."""
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def sleeper_command() -> str:
    return python_command(SLEEPER)


@pytest.fixture
def listener(free_port: int) -> Generator[subprocess.Popen, None, None]:
    """A child process listening on `free_port`."""
    process = subprocess.Popen(
        [sys.executable, "-c", LISTENER, str(free_port)],
        stdout=subprocess.PIPE,
        text=True,
    )
    assert process.stdout is not None
    assert process.stdout.readline().strip() == "ready"
    yield process
    if process.poll() is None:
        process.kill()
    process.wait(timeout=5)
    process.stdout.close()


@pytest.fixture
def watch_config_file(tmp_path: Path) -> Path:
    """A watch configuration pointing at a `src` directory next to it."""
    (tmp_path / "src").mkdir()
    config_file = tmp_path / "watchx.yaml"
    config_file.write_text(
        "watch_dir: src\n"
        "commands:\n"
        "  - node server.js\n"
        "env:\n"
        "  PORT: 3000\n"
        "  NODE_ENV: development\n"
        "ignore:\n"
        "  - build/\n"
        "  - '*.log'\n"
    )
    return config_file

"""
WatchX Process Spawner.

Parses command strings and starts one generation of child processes.
Requires Python 3.11+.
"""

import os
import shlex
import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from utils.logger import get_logger


logger = get_logger("spawner")


@dataclass(frozen=True, slots=True)
class ProcessSpec:
    """A command line to run, as configured and as parsed."""

    command: str
    argv: tuple[str, ...]

    @property
    def program(self) -> str:
        return self.argv[0]


def parse_command(command: str) -> ProcessSpec | None:
    """
    Split a command string into program and arguments.

    Returns None for blank commands and unbalanced quoting.
    """
    try:
        argv = shlex.split(command, posix=os.name != "nt")
    except ValueError as e:
        logger.error("invalid_command", command=command, error=str(e))
        return None
    if not argv:
        logger.error("invalid_command", command=command, error="empty command")
        return None
    return ProcessSpec(command=command, argv=tuple(argv))


def child_environment(env: Mapping[str, str]) -> dict[str, str]:
    """The inherited environment with the configured entries laid over it."""
    merged = dict(os.environ)
    merged.update(env)
    return merged


def spawn(spec: ProcessSpec, env: Mapping[str, str]) -> subprocess.Popen | None:
    """
    Start one process.

    Returns:
        The process handle, or None if it could not be started
    """
    try:
        process = subprocess.Popen(list(spec.argv), env=child_environment(env))
    except (OSError, ValueError, subprocess.SubprocessError) as e:
        logger.error("process_spawn_failed", command=spec.command, error=str(e))
        return None

    logger.info("process_started", program=spec.program, pid=process.pid)
    return process


def spawn_all(
    commands: Iterable[str | ProcessSpec], env: Mapping[str, str]
) -> list[subprocess.Popen]:
    """
    Start a generation, in command order.

    Command strings are parsed here. Invalid entries and spawn failures
    are logged and skipped without stopping the remaining entries.
    """
    handles: list[subprocess.Popen] = []
    for command in commands:
        spec = parse_command(command) if isinstance(command, str) else command
        if spec is None:
            continue
        process = spawn(spec, env)
        if process is not None:
            handles.append(process)
    return handles

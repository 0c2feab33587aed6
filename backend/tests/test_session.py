"""
Tests for the Watch Session and command line.

Requires Python 3.11+.
"""

import argparse
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from cli.main import _apply_overrides, build_parser, run
from cli.session import EXIT_FAILURE, EXIT_OK, WatchSession
from conftest import FakeClock, FakeReclaimer
from supervisor.process_supervisor import ProcessSupervisor
from utils.config import ConfigError, Settings, WatchConfig
from watcher.change_filter import parse_rules
from watcher.debouncer import DebounceGate
from watcher.file_watcher import EventSourceDisconnected, WatchAttachError
from watcher.models import ChangeKind, WatchEvent


class ScriptedWatcher:
    """Feeds prepared batches to the session, then asks it to stop."""

    def __init__(self, batches, clock: FakeClock | None = None, fail_start=None, fail_after=None):
        self.batches = list(batches)
        self.clock = clock
        self.fail_start = fail_start
        self.fail_after = fail_after
        self.session: WatchSession | None = None
        self.started = False
        self.stopped = False

    def start(self) -> None:
        if self.fail_start is not None:
            raise self.fail_start
        self.started = True

    def next_batch(self, timeout: float = 0.1) -> list[WatchEvent]:
        if self.batches:
            delay, batch = self.batches.pop(0)
            if self.clock is not None:
                self.clock.advance(delay)
            return batch
        if self.fail_after is not None:
            raise self.fail_after
        self.session.request_stop()
        return []

    def stop(self) -> None:
        self.stopped = True


class RecordingSpawner:
    def __init__(self) -> None:
        self.calls: list[tuple[list[str], dict[str, str]]] = []

    def __call__(self, commands, env):
        self.calls.append((list(commands), dict(env)))
        return []


def modified(path: Path) -> WatchEvent:
    return WatchEvent.of(ChangeKind.MODIFIED, path)


@pytest.fixture
def config(tmp_path: Path) -> WatchConfig:
    return WatchConfig(
        watch_dir=tmp_path,
        commands=["node server.js"],
        env={"PORT": "3000"},
        ignore=["build/"],
    )


def make_session(config: WatchConfig, watcher: ScriptedWatcher, clock: FakeClock):
    spawner = RecordingSpawner()
    reclaimer = FakeReclaimer()
    supervisor = ProcessSupervisor(reclaimer=reclaimer, spawner=spawner, retry_delay=0.0)
    gate = DebounceGate(
        window_seconds=1.0,
        rules=parse_rules(config.ignore),
        root=config.watch_dir.resolve(),
        clock=clock,
    )
    session = WatchSession(config, watcher=watcher, supervisor=supervisor, gate=gate)
    watcher.session = session
    return session, spawner, reclaimer


class TestWatchSession:
    """Test cases for WatchSession.run."""

    def test_bursts_within_window_restart_once(self, config: WatchConfig, clock: FakeClock):
        root = config.watch_dir.resolve()
        watcher = ScriptedWatcher(
            [
                (5.0, [modified(root / "src" / "app.js")]),
                (0.2, [modified(root / "src" / "app.js")]),
            ],
            clock=clock,
        )
        session, spawner, reclaimer = make_session(config, watcher, clock)

        with capture_logs() as logs:
            assert session.run() == EXIT_OK

        # initial generation plus exactly one restart
        assert len(spawner.calls) == 2
        assert spawner.calls[1] == (["node server.js"], {"PORT": "3000"})
        assert reclaimer.reclaimed == [3000]
        changes = [entry for entry in logs if entry["event"] == "change_detected"]
        assert changes[0]["paths"] == ["src/app.js"]
        assert any(entry["event"] == "debounce_active" for entry in logs)
        assert watcher.started and watcher.stopped

    def test_ignored_changes_do_not_restart(self, config: WatchConfig, clock: FakeClock):
        root = config.watch_dir.resolve()
        watcher = ScriptedWatcher([(5.0, [modified(root / "build" / "out.js")])], clock=clock)
        session, spawner, reclaimer = make_session(config, watcher, clock)

        assert session.run() == EXIT_OK
        assert len(spawner.calls) == 1
        assert reclaimer.reclaimed == []

    def test_separate_windows_restart_twice(self, config: WatchConfig, clock: FakeClock):
        root = config.watch_dir.resolve()
        watcher = ScriptedWatcher(
            [
                (5.0, [modified(root / "a.js")]),
                (2.0, [modified(root / "b.js")]),
            ],
            clock=clock,
        )
        session, spawner, _ = make_session(config, watcher, clock)

        session.run()

        assert len(spawner.calls) == 3

    def test_attach_failure_exits_non_zero(self, config: WatchConfig, clock: FakeClock):
        watcher = ScriptedWatcher([], fail_start=WatchAttachError("missing"))
        session, spawner, _ = make_session(config, watcher, clock)

        with capture_logs() as logs:
            assert session.run() == EXIT_FAILURE

        assert spawner.calls == []
        assert logs[0]["event"] == "watch_attach_failed"

    def test_disconnect_exits_non_zero(self, config: WatchConfig, clock: FakeClock):
        watcher = ScriptedWatcher([], fail_after=EventSourceDisconnected("gone"))
        session, _, _ = make_session(config, watcher, clock)

        with capture_logs() as logs:
            assert session.run() == EXIT_FAILURE

        assert "event_source_disconnected" in [entry["event"] for entry in logs]
        assert watcher.stopped

    def test_default_components_built_from_config(self, config: WatchConfig):
        session = WatchSession(config)

        assert session.port == 3000
        assert session.gate.window == 1.0
        assert session.supervisor.handles == []


class TestCommandLine:
    """Test cases for the argument parser and run command."""

    def test_defaults(self):
        args = build_parser().parse_args(["run"])

        assert args.command == "run"
        assert args.config == "watchx.yaml"
        assert args.debounce_ms is None

    def test_options(self):
        args = build_parser().parse_args(
            ["run", "--config", "dev.yaml", "--debounce-ms", "1500", "--log-level", "debug"]
        )

        assert args.config == "dev.yaml"
        assert args.debounce_ms == 1500
        assert args.log_level == "debug"

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_missing_config_exits_non_zero(self, tmp_path: Path):
        args = argparse.Namespace(
            command="run",
            config=str(tmp_path / "missing.yaml"),
            log_level=None,
            debounce_ms=None,
        )

        with capture_logs() as logs:
            assert run(args) == EXIT_FAILURE

        assert logs[-1]["event"] == "config_error"

    def test_debounce_override_applied(self):
        args = build_parser().parse_args(["run", "--debounce-ms", "1500"])

        settings = _apply_overrides(Settings(), args)

        assert settings.watcher.debounce_seconds == 1.5

    @pytest.mark.parametrize("debounce_ms", ["0", "-5", "49", "60001"])
    def test_debounce_override_out_of_range(self, debounce_ms: str):
        args = build_parser().parse_args(["run", "--debounce-ms", debounce_ms])

        with pytest.raises(ConfigError):
            _apply_overrides(Settings(), args)

    def test_invalid_debounce_exits_non_zero(self, watch_config_file: Path):
        args = build_parser().parse_args(
            ["run", "--config", str(watch_config_file), "--debounce-ms", "0"]
        )

        with capture_logs() as logs:
            assert run(args) == EXIT_FAILURE

        assert logs[-1]["event"] == "config_error"
        assert "debounce" in logs[-1]["error"]

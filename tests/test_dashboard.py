"""Tests for the dashboard main loop and CLI."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ttymon.config import Settings, load_config
from ttymon.dashboard import (
    FRAME_SECONDS,
    LOG_FORMAT,
    Dashboard,
    build_parser,
    main,
    resolve_settings,
    setup_logging,
)
from ttymon.keys import Debouncer, InputEvent, InputRouter
from ttymon.state import MetricSnapshot, ProcessRecord, SharedState, UiMode
from ttymon.terminal import TerminalError
from ttymon.theme import ThemeManager


class FakeTerminal:
    def __init__(self, cols: int = 120, rows: int = 40) -> None:
        self.cols, self.rows = cols, rows
        self.writes: list[str] = []

    def size(self) -> tuple[int, int]:
        return self.cols, self.rows

    def write(self, text: str) -> None:
        if text:
            self.writes.append(text)


class FakeReader:
    def __init__(self, batches: list[list[InputEvent]] | None = None) -> None:
        self.batches = list(batches or [])
        self.started = False
        self.stopped = False

    def drain(self) -> list[InputEvent]:
        return self.batches.pop(0) if self.batches else []

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _dashboard(
    tmp_path: Path,
    batches: list[list[InputEvent]] | None = None,
    state: SharedState | None = None,
    terminal: FakeTerminal | None = None,
    sampler: MagicMock | None = None,
) -> Dashboard:
    themes = ThemeManager()
    return Dashboard(
        state or SharedState(),
        themes,
        terminal or FakeTerminal(),  # type: ignore[arg-type]
        FakeReader(batches),  # type: ignore[arg-type]
        sampler=sampler,
        router=InputRouter(themes, Debouncer(interval=0.0)),
        config_path=tmp_path / "ttymon.conf",
        clock=FakeClock(),
        sleep=lambda _s: None,
    )


def _press(*keys: str) -> list[InputEvent]:
    return [InputEvent.press(k) for k in keys]


# ── run_cycle ──────────────────────────────────────────────────────────────


class TestRunCycle:
    def test_renders_base_frame(self, tmp_path: Path) -> None:
        terminal = FakeTerminal()
        dash = _dashboard(tmp_path, terminal=terminal)
        assert dash.run_cycle() is True
        assert " Top processes " in terminal.writes[-1]

    def test_quit_key(self, tmp_path: Path) -> None:
        dash = _dashboard(tmp_path, batches=[_press("q")])
        assert dash.run_cycle() is False

    def test_input_stored_in_state(self, tmp_path: Path) -> None:
        state = SharedState()
        dash = _dashboard(tmp_path, batches=[_press("f5", "h")], state=state)
        dash.run_cycle()
        assert state.hz == 10
        assert state.ui().mode is UiMode.HELP

    def test_selection_clamped_when_table_shrinks(self, tmp_path: Path) -> None:
        state = SharedState()
        procs = tuple(ProcessRecord(pid=i, name="p", working_set=0, threads=1, cpu_percent=0.0) for i in range(50))
        state.publish(MetricSnapshot(processes=procs))
        dash = _dashboard(tmp_path, batches=[_press("end")], state=state)
        dash.run_cycle()
        assert state.ui().selected == 49

        state.publish(MetricSnapshot(processes=procs[:5]))
        dash.run_cycle()
        assert state.ui().selected == 4
        assert state.ui().scroll == 0

    def test_modal_idle_cycle_writes_nothing(self, tmp_path: Path) -> None:
        terminal = FakeTerminal()
        dash = _dashboard(tmp_path, batches=[_press("h")], terminal=terminal)
        dash.run_cycle()
        writes = len(terminal.writes)
        dash.run_cycle()
        assert len(terminal.writes) == writes

    def test_resize_forces_redraw(self, tmp_path: Path) -> None:
        terminal = FakeTerminal()
        dash = _dashboard(tmp_path, batches=[_press("h")], terminal=terminal)
        dash.run_cycle()
        terminal.cols = 100
        dash.run_cycle()
        assert " Top processes " in terminal.writes[-1]


# ── run ────────────────────────────────────────────────────────────────────


class TestRun:
    def test_run_saves_and_stops(self, tmp_path: Path) -> None:
        sampler = MagicMock()
        dash = _dashboard(tmp_path, batches=[[], _press("f5"), _press("q")], sampler=sampler)
        dash.run()
        sampler.start.assert_called_once()
        sampler.stop.assert_called_once()
        assert dash.reader.started and dash.reader.stopped  # type: ignore[attr-defined]
        assert load_config(tmp_path / "ttymon.conf") == Settings(theme="Default", hz=10)

    def test_run_saves_on_error(self, tmp_path: Path) -> None:
        dash = _dashboard(tmp_path)
        with patch.object(dash, "run_cycle", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                dash.run()
        assert (tmp_path / "ttymon.conf").is_file()

    def test_frame_pacing(self, tmp_path: Path) -> None:
        sleeps: list[float] = []
        clock = FakeClock()
        themes = ThemeManager()
        dash = Dashboard(
            SharedState(),
            themes,
            FakeTerminal(),  # type: ignore[arg-type]
            FakeReader([[], _press("q")]),  # type: ignore[arg-type]
            router=InputRouter(themes, Debouncer(interval=0.0)),
            config_path=tmp_path / "ttymon.conf",
            clock=clock,
            sleep=sleeps.append,
        )
        dash.run()
        assert sleeps == [pytest.approx(FRAME_SECONDS)]

    def test_no_sleep_after_overrun(self, tmp_path: Path) -> None:
        sleeps: list[float] = []
        times = iter([0.0, 0.0, 1.0, 1.0, 1.0, 1.0])
        themes = ThemeManager()
        dash = Dashboard(
            SharedState(),
            themes,
            FakeTerminal(),  # type: ignore[arg-type]
            FakeReader([[], _press("q")]),  # type: ignore[arg-type]
            router=InputRouter(themes, Debouncer(interval=0.0)),
            config_path=tmp_path / "ttymon.conf",
            clock=lambda: next(times),
            sleep=sleeps.append,
        )
        dash.run()
        assert sleeps == []


# ── CLI ────────────────────────────────────────────────────────────────────


class TestCli:
    def test_defaults(self) -> None:
        args = build_parser().parse_args([])
        assert args.hz is None
        assert args.config is None
        assert args.log_level == "WARNING"
        assert not args.dump_config

    @pytest.mark.parametrize("value", ["0", "-1", "abc"])
    def test_bad_hz_rejected(self, value: str) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--hz", value])

    def test_overrides_win(self, tmp_path: Path) -> None:
        conf = tmp_path / "ttymon.conf"
        conf.write_text("theme=Nord\nhz=2\n")
        args = build_parser().parse_args(["--config", str(conf), "--hz", "20", "--theme", "Dracula"])
        assert resolve_settings(args) == Settings(theme="Dracula", hz=20)

    def test_dump_config(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        conf = tmp_path / "ttymon.conf"
        conf.write_text("theme=Nord\nhz=10\n")
        main(["--config", str(conf), "--dump-config"])
        assert capsys.readouterr().out == "theme=Nord\nhz=10\n"

    @patch("ttymon.dashboard.setup_logging")
    @patch("ttymon.dashboard.PsutilProvider")
    @patch("ttymon.dashboard.Terminal")
    def test_terminal_error_exits_1(
        self,
        mock_terminal: MagicMock,
        _provider: MagicMock,
        _logging: MagicMock,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        _provider.return_value.logical_core_count.return_value = 4
        mock_terminal.return_value.__enter__.side_effect = TerminalError("stdin is not a terminal")
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(tmp_path / "c.conf"), "--themes", str(tmp_path)])
        assert exc.value.code == 1
        assert "stdin is not a terminal" in capsys.readouterr().err


# ── Logging ────────────────────────────────────────────────────────────────


def test_setup_logging_writes_file(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "error.log"
    handler = setup_logging("INFO", path)
    assert handler is not None
    try:
        logging.getLogger("ttymon.test").info("hello from test")
        handler.flush()
        text = path.read_text(encoding="utf-8")
        assert "| INFO: hello from test" in text
        assert handler.formatter is not None
        assert handler.formatter._fmt == LOG_FORMAT
    finally:
        logging.getLogger("ttymon").removeHandler(handler)
        handler.close()


def test_setup_logging_unwritable(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("")
    assert setup_logging("WARNING", blocker / "error.log") is None
    assert "cannot open log file" in capsys.readouterr().err

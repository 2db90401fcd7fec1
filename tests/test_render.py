"""Tests for ttymon.render."""

from __future__ import annotations

import pytest

from ttymon.render import (
    CPU_W,
    MEM_W,
    PID_W,
    THREADS_W,
    ColumnLayout,
    RedrawPolicy,
    Renderer,
    bg,
    build_frame,
    build_help,
    build_main_menu,
    build_theme_picker,
    compute_columns,
    compute_layout,
    compute_table_metrics,
    cpu_color,
    disk_line,
    ellipsis,
    fg,
    fmt_bytes,
    fmt_rate,
    fmt_uptime,
    middle_ellipsis,
    net_line,
    sort_processes,
    spark_braille,
)
from ttymon.state import MetricSnapshot, ProcessRecord, SharedState, SortMode, StateView, UiMode, UiState
from ttymon.theme import CRITICAL, WARNING, ThemeManager, default_theme

FIXED = PID_W + THREADS_W + MEM_W + CPU_W


def _proc(pid: int, name: str = "", ws: int = 0, cpu: float = 0.0, user: str = "", cmd: str = "") -> ProcessRecord:
    return ProcessRecord(
        pid=pid,
        name=name or f"proc{pid}",
        working_set=ws,
        threads=1,
        cpu_percent=cpu,
        user=user,
        command_line=cmd,
    )


# ── Formatting ─────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, "0.0 B"),
        (512, "512.0 B"),
        (1024, "1.0 KiB"),
        (1024 * 1024, "1.0 MiB"),
        (1024**3, "1.0 GiB"),
        (1024**4, "1.0 TiB"),
        (1536, "1.5 KiB"),
    ],
)
def test_fmt_bytes(value: int | float, expected: str) -> None:
    assert fmt_bytes(value) == expected


@pytest.mark.parametrize(
    ("bps", "expected"),
    [
        (0, "0 B/s"),
        (500, "500 B/s"),
        (1024, "1.0 KB/s"),
        (1024 * 1024, "1.0 MB/s"),
        (1024**3, "1.0 GB/s"),
    ],
)
def test_fmt_rate(bps: float, expected: str) -> None:
    assert fmt_rate(bps) == expected


def test_fmt_uptime() -> None:
    assert fmt_uptime(90000) == "1d 1h"
    assert fmt_uptime(None) == "?"


class TestTruncation:
    @pytest.mark.parametrize(
        ("s", "width", "expected"),
        [
            ("abcdef", 4, "abc…"),
            ("ab", 4, "ab  "),
            ("abcd", 4, "abcd"),
            ("abc", 1, "a"),
            ("abc", 0, ""),
        ],
    )
    def test_ellipsis(self, s: str, width: int, expected: str) -> None:
        assert ellipsis(s, width) == expected

    def test_middle_keeps_both_ends(self) -> None:
        assert middle_ellipsis("/usr/bin/python3", 9) == "/usr…hon3"

    def test_middle_short_is_padded(self) -> None:
        assert middle_ellipsis("ls", 5) == "ls   "

    @pytest.mark.parametrize("width", range(0, 20))
    def test_exact_width(self, width: int) -> None:
        s = "/opt/some/really/long/command --with --flags"
        assert len(ellipsis(s, width)) == width
        assert len(middle_ellipsis(s, width)) == width


# ── Layout ─────────────────────────────────────────────────────────────────


class TestLayout:
    def test_two_column(self) -> None:
        layout = compute_layout(120, 40)
        assert layout.two_column
        assert layout.panel_width == 58
        assert (layout.left, layout.top, layout.right) == (2, 1, 118)

    def test_narrow_falls_back_to_single_column(self) -> None:
        layout = compute_layout(80, 24)
        assert not layout.two_column
        assert layout.panel_width == 76

    def test_table_metrics_two_column(self) -> None:
        tm = compute_table_metrics(compute_layout(120, 40))
        assert tm.table_top == 10
        assert tm.page_rows == 26

    def test_table_metrics_stacked(self) -> None:
        tm = compute_table_metrics(compute_layout(80, 40))
        assert tm.table_top == 18
        assert tm.page_rows == 18

    def test_page_rows_at_least_one(self) -> None:
        assert compute_table_metrics(compute_layout(120, 8)).page_rows == 1


class TestColumns:
    def test_wide_shows_command(self) -> None:
        cols = compute_columns(114)
        assert cols == ColumnLayout(name=15, user=16, command=46)
        assert FIXED + cols.name + cols.user + cols.command + 6 == 114

    def test_narrow_hides_command(self) -> None:
        cols = compute_columns(70)
        assert not cols.show_command
        assert (cols.name, cols.user) == (17, 17)

    def test_exact_threshold_trims_command(self) -> None:
        cols = compute_columns(FIXED + 6 + 35)
        assert cols == ColumnLayout(name=10, user=10, command=15)

    def test_below_threshold(self) -> None:
        assert not compute_columns(FIXED + 6 + 34).show_command

    @pytest.mark.parametrize("width", [72, 80, 100, 150, 200, 300])
    def test_columns_fill_width(self, width: int) -> None:
        cols = compute_columns(width)
        assert cols.show_command
        assert FIXED + cols.name + cols.user + cols.command + 6 == width
        assert cols.name >= 10 and cols.user >= 10 and cols.command >= 15


def test_sort_modes() -> None:
    procs = [
        _proc(3, "beta", ws=100, cpu=5.0),
        _proc(1, "Alpha", ws=300, cpu=5.0),
        _proc(2, "gamma", ws=300, cpu=50.0),
    ]
    assert [p.pid for p in sort_processes(procs, SortMode.MEMORY)] == [1, 2, 3]
    assert [p.pid for p in sort_processes(procs, SortMode.CPU)] == [2, 1, 3]
    assert [p.pid for p in sort_processes(procs, SortMode.PID)] == [1, 2, 3]
    assert [p.pid for p in sort_processes(procs, SortMode.NAME)] == [1, 3, 2]


@pytest.mark.parametrize(("pct", "kind"), [(10.0, "low"), (50.0, "low"), (50.1, "warn"), (80.0, "warn"), (80.1, "crit")])
def test_cpu_color(pct: float, kind: str) -> None:
    theme = default_theme()
    expected = {"low": theme.bar_low, "warn": WARNING, "crit": CRITICAL}[kind]
    assert cpu_color(pct, theme) == expected


# ── Sparkline ──────────────────────────────────────────────────────────────


class TestSparkBraille:
    def test_empty(self) -> None:
        assert spark_braille([], 10) == ""

    def test_flat_line_is_bottom_row(self) -> None:
        assert spark_braille([5.0] * 4, 2) == "⣀⣀"

    def test_low_then_high(self) -> None:
        # left: bottom dot only; right: full column
        assert spark_braille([0.0, 3.0], 1) == chr(0x2800 | 0x40 | 0x80 | 0x20 | 0x10 | 0x08)

    def test_width_is_exact(self) -> None:
        assert len(spark_braille([float(i) for i in range(100)], 24)) == 24

    def test_uses_most_recent_window(self) -> None:
        # the old spike falls out of the 2 * width window
        assert spark_braille([100.0, 1.0, 1.0], 1) == "⣀"

    def test_missing_tail_uses_minimum(self) -> None:
        assert spark_braille([0.0, 3.0, 3.0], 2)[-1] == chr(0x2800 | 0x47 | 0x80)


# ── Frame ──────────────────────────────────────────────────────────────────


def _view(processes=(), ui: UiState | None = None, **snap) -> StateView:
    snapshot = MetricSnapshot(
        cpu_percent=42.0,
        per_core=(10.0, 90.0),
        memory_total=8 * 1024**3,
        memory_used=4 * 1024**3,
        memory_available=4 * 1024**3,
        memory_percent=50.0,
        processes=tuple(processes),
        **snap,
    )
    return StateView(snapshot=snapshot, cpu_history=[1.0, 2.0], ui=ui or UiState())


class TestBuildFrame:
    def test_panels_and_table(self) -> None:
        out = build_frame(compute_layout(120, 40), _view([_proc(1, "sshd", ws=2048)]), default_theme())
        assert " CPU " in out
        assert " Memory " in out
        assert " Top processes " in out
        assert "Usage: 42.0%   (5 Hz)" in out
        assert "sshd" in out
        assert "Program" in out and "Command" in out

    def test_title_includes_uptime(self) -> None:
        out = build_frame(compute_layout(120, 40), _view(uptime_seconds=90000.0), default_theme())
        assert "\033]0;ttymon — Uptime: 1d 1h" in out

    def test_io_placeholders(self) -> None:
        out = build_frame(compute_layout(120, 40), _view(), default_theme())
        assert "disk: — | —" in out
        assert "net : — | —" in out

    def test_io_lines(self) -> None:
        snap = MetricSnapshot(disk_read_bps=2048.0, disk_write_bps=0.0, net_sent_bps=1024.0, net_recv_bps=0.0)
        assert disk_line(snap) == "disk: R 2.0 KB/s | W 0 B/s"
        assert net_line(snap) == "net : ↑ 1.0 KB/s | ↓ 0 B/s"

    def test_empty_command_shows_name(self) -> None:
        out = build_frame(compute_layout(160, 40), _view([_proc(1, "kworker")]), default_theme())
        assert out.count("kworker") == 2

    def test_selected_row_uses_selection_colors(self) -> None:
        theme = default_theme()
        view = _view([_proc(1), _proc(2)], ui=UiState(selected=1))
        out = build_frame(compute_layout(120, 40), view, theme)
        assert bg(theme.selection_bg) + fg(theme.selection_fg) in out

    def test_hot_process_colored_critical(self) -> None:
        view = _view([_proc(1, cpu=95.0)], ui=UiState(selected=5))
        out = build_frame(compute_layout(120, 40), view, default_theme())
        assert fg(CRITICAL) + "  95.0" in out

    def test_scroll_window(self) -> None:
        procs = [_proc(i, f"name{i:03d}", ws=1000 - i) for i in range(100)]
        view = _view(procs, ui=UiState(scroll=50, selected=50))
        out = build_frame(compute_layout(120, 40), view, default_theme())
        assert "name050" in out
        assert "name049" not in out
        assert "name076" not in out  # 26 visible rows: 50..75

    @pytest.mark.parametrize(("cols", "rows"), [(20, 5), (40, 12), (80, 24), (300, 100)])
    def test_any_size_renders(self, cols: int, rows: int) -> None:
        build_frame(compute_layout(cols, rows), _view([_proc(1)]), default_theme())


class TestOverlays:
    def test_main_menu(self) -> None:
        out = build_main_menu(compute_layout(120, 40), 1, default_theme())
        assert "> Help" in out
        assert "  Options" in out
        assert "Key bindings" in out

    def test_theme_picker(self) -> None:
        out = build_theme_picker(compute_layout(120, 40), "Nord", default_theme())
        assert "Theme: " in out
        assert "Nord" in out
        assert "Enter/Esc" in out

    def test_help(self) -> None:
        out = build_help(compute_layout(120, 40), default_theme())
        assert "Cycle update Hz" in out
        assert "Quit program" in out

    def test_help_too_small(self) -> None:
        assert build_help(compute_layout(10, 6), default_theme()) == ""


# ── Redraw policy ──────────────────────────────────────────────────────────


class TestRedrawPolicy:
    def test_normal_always_redraws(self) -> None:
        policy = RedrawPolicy()
        assert policy.needs_base(UiMode.NORMAL, 0.0)
        assert policy.needs_base(UiMode.NORMAL, 0.001)

    def test_modal_throttled(self) -> None:
        policy = RedrawPolicy()
        assert policy.needs_base(UiMode.HELP, 0.0)  # mode changed
        assert not policy.needs_base(UiMode.HELP, 0.1)
        assert not policy.needs_base(UiMode.HELP, 0.4)
        assert policy.needs_base(UiMode.HELP, 0.5)

    def test_dirty_and_resize_force_redraw(self) -> None:
        policy = RedrawPolicy()
        policy.needs_base(UiMode.MAIN_MENU, 0.0)
        assert policy.needs_base(UiMode.MAIN_MENU, 0.1, dirty=True)
        assert policy.needs_base(UiMode.MAIN_MENU, 0.2, resized=True)
        assert not policy.needs_base(UiMode.MAIN_MENU, 0.3)

    def test_mode_change_between_modals(self) -> None:
        policy = RedrawPolicy()
        policy.needs_base(UiMode.MAIN_MENU, 0.0)
        assert policy.needs_base(UiMode.THEME_PICKER, 0.1)


class TestRenderer:
    def test_normal_mode_writes_base(self) -> None:
        out = Renderer().render(compute_layout(120, 40), SharedState(), ThemeManager(), 0.0)
        assert " Top processes " in out

    def test_modal_only_redraws_changed_overlay(self) -> None:
        state = SharedState()
        state.store_ui(UiState(mode=UiMode.HELP))
        renderer = Renderer()
        layout = compute_layout(120, 40)
        themes = ThemeManager()

        first = renderer.render(layout, state, themes, 0.0)
        assert " Top processes " in first and " Help " in first
        # same overlay, no base redraw due: nothing to write
        assert renderer.render(layout, state, themes, 0.1) == ""

        state.store_ui(UiState(mode=UiMode.MAIN_MENU))
        out = renderer.render(layout, state, themes, 0.2)
        assert " Menu " in out

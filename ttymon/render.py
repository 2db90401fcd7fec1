"""Frame composition.

Everything here turns a :class:`StateView` plus the active :class:`Theme`
into one string of ANSI escapes (cursor moves, 24-bit colors) that the
terminal writes in a single call. Nothing in this module touches the
terminal or the shared state directly.
"""

from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass

from ttymon.state import (
    MetricSnapshot,
    ProcessRecord,
    SharedState,
    SortMode,
    StateView,
    UiMode,
)
from ttymon.theme import CRITICAL, WARNING, Rgb, Theme, ThemeManager

# ── Constants ──────────────────────────────────────────────────────────────

APP_NAME = "ttymon"

PANEL_HEIGHT = 8
PANEL_GAP = 1
MIN_PANEL_WIDTH = 40
SPARK_CELLS = 24
MODAL_REDRAW_SECONDS = 0.5

PID_W = 7
THREADS_W = 7
MEM_W = 11
CPU_W = 6
NAME_MIN = 10
USER_MIN = 10
CMD_MIN = 15

CORE_BAR_W = 12
CORE_COL_W = 18

CPU_WARN = 50.0
CPU_CRIT = 80.0

ELLIPSIS = "…"
H, V = "─", "│"
TL, TR, BL, BR = "┌", "┐", "└", "┘"

RESET = "\033[0m"
CLEAR = "\033[2J\033[H"


# ── ANSI helpers ───────────────────────────────────────────────────────────


def fg(c: Rgb) -> str:
    return f"\033[38;2;{c.r};{c.g};{c.b}m"


def bg(c: Rgb) -> str:
    return f"\033[48;2;{c.r};{c.g};{c.b}m"


def move(row: int, col: int) -> str:
    return f"\033[{row};{col}H"


def set_title(text: str) -> str:
    return f"\033]0;{text}\a"


# ── Formatting helpers ─────────────────────────────────────────────────────


def fmt_bytes(n: int | float) -> str:
    """Human-readable byte count (binary prefixes)."""
    v = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(v) < 1024:
            return f"{v:.1f} {unit}"
        v /= 1024
    return f"{v:.1f} TiB"


def fmt_rate(bps: float) -> str:
    """Human-readable transfer rate."""
    if bps < 1024:
        return f"{bps:.0f} B/s"
    if bps < 1024 * 1024:
        return f"{bps / 1024:.1f} KB/s"
    if bps < 1024**3:
        return f"{bps / 1024 ** 2:.1f} MB/s"
    return f"{bps / 1024 ** 3:.1f} GB/s"


def fmt_uptime(seconds: float | None) -> str:
    if seconds is None:
        return "?"
    days, rest = divmod(int(seconds), 86400)
    return f"{days}d {rest // 3600}h"


def ellipsis(s: str, width: int) -> str:
    """Pad or end-truncate *s* to exactly *width* characters."""
    if width <= 0:
        return ""
    if len(s) <= width:
        return s.ljust(width)
    if width == 1:
        return s[:1]
    return s[: width - 1] + ELLIPSIS


def middle_ellipsis(s: str, width: int) -> str:
    """Like :func:`ellipsis` but keeps both ends, for paths and commands."""
    if width <= 0:
        return ""
    if len(s) <= width:
        return s.ljust(width)
    if width == 1:
        return s[:1]
    left = (width - 1) // 2
    right = (width - 1) - left
    return s[:left] + ELLIPSIS + (s[-right:] if right else "")


# ── Layout ─────────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class Layout:
    cols: int
    rows: int
    left: int
    top: int
    right: int
    bottom: int
    panel_width: int
    two_column: bool


@dataclass(slots=True, frozen=True)
class TableMetrics:
    table_top: int
    page_rows: int


@dataclass(slots=True, frozen=True)
class ColumnLayout:
    name: int
    user: int
    command: int  # 0 when the command column is hidden

    @property
    def show_command(self) -> bool:
        return self.command > 0


def compute_layout(cols: int, rows: int) -> Layout:
    left, top = 2, 1
    right, bottom = cols - 2, rows - 1
    inner = right - left + 1
    panel_width = (inner - PANEL_GAP) // 2
    two_column = panel_width >= MIN_PANEL_WIDTH
    if not two_column:
        panel_width = cols - 4
    return Layout(cols, rows, left, top, right, bottom, panel_width, two_column)


def compute_table_metrics(layout: Layout) -> TableMetrics:
    stacked = 1 if layout.two_column else 2
    table_top = layout.top + PANEL_HEIGHT * stacked + 1
    # box border + header above the rows, border + footer below
    page_rows = max(1, layout.rows - table_top - 4)
    return TableMetrics(table_top, page_rows)


def compute_columns(inner_width: int) -> ColumnLayout:
    """Split the flexible table width between name, user and command."""
    fixed = PID_W + THREADS_W + MEM_W + CPU_W
    flex_no_cmd = max(0, inner_width - fixed - 5)
    flex_cmd = inner_width - fixed - 6

    if flex_cmd < NAME_MIN + USER_MIN + CMD_MIN:
        name = max(NAME_MIN, flex_no_cmd // 2)
        user = max(USER_MIN, flex_no_cmd - name)
        if name + user > flex_no_cmd:
            user = max(0, flex_no_cmd - name)
        return ColumnLayout(name=name, user=user, command=0)

    name = max(NAME_MIN, flex_cmd // 5)
    cmd = max(CMD_MIN, flex_cmd * 3 // 5)
    user = max(USER_MIN, flex_cmd - name - cmd)
    over = name + cmd + user - flex_cmd
    if over > 0:
        cut = min(over, user - USER_MIN)
        user -= cut
        over -= cut
    if over > 0:
        cut = min(over, cmd - CMD_MIN)
        cmd -= cut
        over -= cut
    if over > 0:
        name = max(0, name - over)
    return ColumnLayout(name=name, user=user, command=cmd)


def sort_processes(processes: Sequence[ProcessRecord], mode: SortMode) -> list[ProcessRecord]:
    if mode is SortMode.CPU:
        return sorted(processes, key=lambda p: (-p.cpu_percent, p.pid))
    if mode is SortMode.PID:
        return sorted(processes, key=lambda p: p.pid)
    if mode is SortMode.NAME:
        return sorted(processes, key=lambda p: (p.name.lower(), p.pid))
    return sorted(processes, key=lambda p: (-p.working_set, p.pid))


# ── Sparkline ──────────────────────────────────────────────────────────────

# braille dot bits per column, bottom row first
_LEFT_DOTS = (0x40, 0x04, 0x02, 0x01)
_RIGHT_DOTS = (0x80, 0x20, 0x10, 0x08)


def _level(v: float, lo: float, span: float) -> int:
    norm = min(1.0, max(0.0, (v - lo) / span))
    return round(norm * 3)


def spark_braille(values: Sequence[float], width: int) -> str:
    """Compress the last ``2 * width`` samples into *width* braille cells."""
    if not values or width <= 0:
        return ""
    window = list(values[-width * 2 :])
    lo, hi = min(window), max(window)
    span = hi - lo
    if span < 1e-9:
        span = 1.0

    cells: list[str] = []
    for c in range(width):
        pair = window[c * 2 : c * 2 + 2]
        pair += [lo] * (2 - len(pair))
        mask = 0
        for dots, v in ((_LEFT_DOTS, pair[0]), (_RIGHT_DOTS, pair[1])):
            for bit in dots[: _level(v, lo, span) + 1]:
                mask |= bit
        cells.append(chr(0x2800 + mask))
    return "".join(cells)


# ── Drawing primitives ─────────────────────────────────────────────────────


class Canvas:
    """Accumulates positioned, colored text into one output string."""

    def __init__(self, theme: Theme) -> None:
        self.theme = theme
        self._parts: list[str] = []

    def raw(self, text: str) -> None:
        self._parts.append(text)

    def put(self, row: int, col: int, text: str) -> None:
        self._parts.append(move(row, col) + text)

    def text(
        self,
        row: int,
        col: int,
        segments: Sequence[tuple[Rgb, str]],
        background: Rgb,
        width: int | None = None,
    ) -> None:
        """Write colored *segments* on *background*, clipped/padded to *width*."""
        out = [move(row, col), bg(background)]
        used = 0
        for color, s in segments:
            if width is not None:
                s = s[: max(0, width - used)]
            if s:
                out.append(fg(color) + s)
                used += len(s)
        if width is not None and used < width:
            out.append(" " * (width - used))
        out.append(RESET)
        self._parts.append("".join(out))

    def fill(self, top: int, left: int, height: int, width: int, color: Rgb) -> None:
        if height <= 0 or width <= 0:
            return
        line = bg(color) + " " * width + RESET
        for r in range(height):
            self.put(top + r, left, line)

    def box(
        self,
        top: int,
        left: int,
        height: int,
        width: int,
        title: str,
        background: Rgb,
        title_color: Rgb | None = None,
        filled: bool = True,
    ) -> bool:
        """Draw a framed box; False if it is too small to draw."""
        if height < 3 or width < 4:
            return False
        if filled:
            self.fill(top + 1, left + 1, height - 2, width - 2, background)
        frame = bg(background) + fg(self.theme.frame)
        self.put(top, left, frame + TL + H * (width - 2) + TR + RESET)
        for r in range(top + 1, top + height - 1):
            self.put(r, left, frame + V + RESET)
            self.put(r, left + width - 1, frame + V + RESET)
        self.put(top + height - 1, left, frame + BL + H * (width - 2) + BR + RESET)
        if title and len(title) + 2 < width:
            color = title_color or self.theme.header
            self.put(top, left + 2, bg(background) + fg(color) + title + RESET)
        return True

    def bar(self, row: int, col: int, width: int, percent: float) -> None:
        """Gradient meter from bar_low to bar_high over the filled part."""
        if width <= 0:
            return
        t = self.theme
        pct = min(100.0, max(0.0, percent))
        filled = round(pct / 100.0 * width)
        out = [move(row, col)]
        for i in range(filled):
            k = 1.0 if filled <= 1 else i / (filled - 1)
            color = Rgb(
                round(t.bar_low.r + (t.bar_high.r - t.bar_low.r) * k),
                round(t.bar_low.g + (t.bar_high.g - t.bar_low.g) * k),
                round(t.bar_low.b + (t.bar_high.b - t.bar_low.b) * k),
            )
            out.append(bg(color) + " ")
        out.append(bg(t.meter_bg) + " " * (width - filled) + RESET)
        self._parts.append("".join(out))

    def render(self) -> str:
        return "".join(self._parts)


# ── Base frame ─────────────────────────────────────────────────────────────


def cpu_color(pct: float, theme: Theme) -> Rgb:
    if pct > CPU_CRIT:
        return CRITICAL
    if pct > CPU_WARN:
        return WARNING
    return theme.bar_low


def _with_spark(line: str, spark: str, width: int) -> str:
    if width <= 12 or not spark:
        return line
    max_text = max(0, width - 2 - len(spark))
    if len(line) > max_text:
        line = line[: max(0, max_text - 1)] + ELLIPSIS
    return line + "  " + spark


def disk_line(snap: MetricSnapshot) -> str:
    if snap.disk_read_bps is None or snap.disk_write_bps is None:
        return "disk: — | —"
    return f"disk: R {fmt_rate(snap.disk_read_bps)} | W {fmt_rate(snap.disk_write_bps)}"


def net_line(snap: MetricSnapshot) -> str:
    if snap.net_sent_bps is None or snap.net_recv_bps is None:
        return "net : — | —"
    return f"net : ↑ {fmt_rate(snap.net_sent_bps)} | ↓ {fmt_rate(snap.net_recv_bps)}"


def _draw_cpu_panel(cv: Canvas, top: int, left: int, width: int, view: StateView) -> None:
    t = cv.theme
    inner = t.overlay
    if not cv.box(top, left, PANEL_HEIGHT, width, " CPU ", inner, t.box_cpu):
        return
    snap = view.snapshot
    text_w = width - 4
    usage = f"Usage: {snap.cpu_percent:.1f}%   ({view.ui.hz} Hz)"
    cv.text(top + 1, left + 2, [(t.text, usage)], inner, text_w)
    cv.bar(top + 2, left + 2, text_w, snap.cpu_percent)

    per_row = max(1, text_w // CORE_COL_W)
    row, col = top + 4, left + 2
    for i, pct in enumerate(snap.per_core):
        if row > top + PANEL_HEIGHT - 2:
            break
        cv.text(row, col, [(t.text, f"C{i:<2}:")], inner, 5)
        cv.bar(row, col + 5, min(CORE_BAR_W, max(0, text_w - 5)), pct)
        col += CORE_COL_W
        if (i + 1) % per_row == 0:
            row += 1
            col = left + 2


def _draw_mem_panel(cv: Canvas, top: int, left: int, width: int, view: StateView) -> None:
    t = cv.theme
    inner = t.overlay
    if not cv.box(top, left, PANEL_HEIGHT, width, " Memory ", inner, t.box_mem):
        return
    snap = view.snapshot
    text_w = width - 4
    cv.text(top + 1, left + 2, [(t.text, f"Total: {fmt_bytes(snap.memory_total)}")], inner, text_w)
    cv.text(top + 2, left + 2, [(t.text, f"Used : {fmt_bytes(snap.memory_used)}")], inner, text_w)
    cv.text(top + 3, left + 2, [(t.text, f"Avail: {fmt_bytes(snap.memory_available)}")], inner, text_w)
    cv.bar(top + 4, left + 2, text_w, snap.memory_percent)

    disk_spark = spark_braille(view.disk_read_history, SPARK_CELLS)
    net_spark = spark_braille(view.net_up_history, SPARK_CELLS)
    cv.text(top + 5, left + 2, [(t.text, _with_spark(disk_line(snap), disk_spark, text_w))], inner, text_w)
    cv.text(top + 6, left + 2, [(t.text, _with_spark(net_line(snap), net_spark, text_w))], inner, text_w)


def _header_text(cols: ColumnLayout) -> str:
    parts = [f"{'Pid':>{PID_W}}", "Program".ljust(cols.name)[: cols.name]]
    if cols.show_command:
        parts.append("Command".ljust(cols.command)[: cols.command])
    parts += [
        "Threads".ljust(THREADS_W),
        "User".ljust(cols.user)[: cols.user],
        "MemB".ljust(MEM_W),
        "Cpu%".ljust(CPU_W),
    ]
    return " ".join(parts)


def _row_segments(p: ProcessRecord, cols: ColumnLayout, t: Theme) -> list[tuple[Rgb, str]]:
    segs: list[tuple[Rgb, str]] = [
        (t.header, f"{p.pid:>{PID_W}} "),
        (t.text, ellipsis(p.name, cols.name) + " "),
    ]
    if cols.show_command:
        segs.append((t.dim, middle_ellipsis(p.command_line or p.name, cols.command) + " "))
    segs += [
        (t.header, f"{p.threads:>{THREADS_W}} "),
        (t.dim, ellipsis(p.user, cols.user) + " "),
        (t.bar_high, fmt_bytes(p.working_set).ljust(MEM_W) + " "),
        (cpu_color(p.cpu_percent, t), f"{p.cpu_percent:>{CPU_W}.1f}"),
    ]
    return segs


def _draw_process_table(cv: Canvas, layout: Layout, view: StateView) -> None:
    t = cv.theme
    tm = compute_table_metrics(layout)
    inner = t.overlay
    box_w = layout.cols - 4
    box_h = layout.rows - tm.table_top - 1
    if not cv.box(tm.table_top, 2, box_h, box_w, " Top processes ", inner, t.box_proc):
        return

    inner_w = box_w - 2
    cols = compute_columns(inner_w)
    row = tm.table_top + 1
    cv.text(row, 3, [(t.header, _header_text(cols))], inner, inner_w)
    row += 1

    procs = sort_processes(view.snapshot.processes, view.ui.sort)
    max_scroll = max(0, len(procs) - tm.page_rows)
    first = min(max(view.ui.scroll, 0), max_scroll)
    last_row = tm.table_top + box_h - 2
    for i in range(first, min(len(procs), first + tm.page_rows)):
        if row > last_row:
            break
        segs = _row_segments(procs[i], cols, t)
        if i == view.ui.selected:
            plain = "".join(s for _, s in segs)
            cv.text(row, 3, [(t.selection_fg, plain)], t.selection_bg, inner_w)
        else:
            cv.text(row, 3, segs, inner, inner_w)
        row += 1


FOOTER_HINTS = (
    ("Q", "quit"),
    ("F1", "cpu%"),
    ("F2", "mem"),
    ("F3", "pid"),
    ("F6", "name"),
    ("F5", "Hz"),
    ("PgUp/PgDn", "scroll"),
    ("Esc/M", "menu"),
    ("H", "help"),
)


def _draw_footer(cv: Canvas, layout: Layout) -> None:
    t = cv.theme
    segs: list[tuple[Rgb, str]] = []
    for key, label in FOOTER_HINTS:
        segs += [(t.dim, key + " "), (t.accent, label + "  ")]
    cv.text(layout.rows - 1, 2, segs, t.background, max(0, layout.cols - 3))


def build_frame(layout: Layout, view: StateView, theme: Theme) -> str:
    """Compose the full base frame: panels, process table and footer."""
    cv = Canvas(theme)
    title = (
        f"{APP_NAME} — Uptime: {fmt_uptime(view.snapshot.uptime_seconds)}"
        " — Q quit · F1 cpu% · F2 mem · F3 pid · F6 name · F5 Hz · Esc menu · H help"
    )
    cv.raw(set_title(title))
    cv.raw(bg(theme.background) + CLEAR + RESET)
    cv.fill(1, 1, layout.rows, layout.cols, theme.panel)
    cv.fill(2, 2, layout.rows - 2, layout.cols - 2, theme.background)

    top, left = layout.top, layout.left
    if layout.two_column:
        right_w = (layout.right - left + 1) - PANEL_GAP - layout.panel_width
        _draw_cpu_panel(cv, top, left, layout.panel_width, view)
        _draw_mem_panel(cv, top, left + layout.panel_width + PANEL_GAP, right_w, view)
    else:
        _draw_cpu_panel(cv, top, left, layout.panel_width, view)
        _draw_mem_panel(cv, top + PANEL_HEIGHT, left, layout.panel_width, view)

    _draw_process_table(cv, layout, view)
    _draw_footer(cv, layout)
    return cv.render()


# ── Overlays ───────────────────────────────────────────────────────────────

MENU_ITEMS = (
    ("Options", "Theme & colors. Pick visual style that suits you."),
    ("Help", "Key bindings and navigation."),
    ("Quit", "Save settings and exit."),
)


def _centered(layout: Layout, height: int, width: int) -> tuple[int, int]:
    top = max(1, (layout.rows - height) // 2)
    left = max(2, (layout.cols - width) // 2)
    return top, left


def build_main_menu(layout: Layout, menu_index: int, theme: Theme) -> str:
    t = theme
    title = f"{APP_NAME} system monitor"
    w = max(40, len(title) + 8)
    h = 12
    top, left = _centered(layout, h, w)

    cv = Canvas(t)
    cv.box(top, left, h, w, " Menu ", t.overlay)
    for i, (label, _) in enumerate(MENU_ITEMS):
        if i == menu_index:
            cv.text(top + 2 + i, left + 2, [(t.selection_fg, "> " + label)], t.selection_bg)
        else:
            cv.text(top + 2 + i, left + 2, [(t.text, "  " + label)], t.overlay)

    info_left = left + w // 2
    right_w = max(10, (left + w - 2) - info_left)
    cv.text(top + 2, info_left, [(t.header, ellipsis(title, right_w))], t.overlay)
    cv.text(top + 3, info_left, [(t.dim, ellipsis("Description", right_w))], t.overlay)
    description = MENU_ITEMS[min(max(menu_index, 0), len(MENU_ITEMS) - 1)][1]
    for n, line in enumerate(textwrap.wrap(description, right_w)[: h - 7]):
        cv.text(top + 4 + n, info_left, [(t.text, line)], t.overlay)

    inner_w = w - 4
    hint_long = "[↑/↓] select   [Enter] open   [Esc] close"
    hint = hint_long if len(hint_long) <= inner_w else ellipsis("↑/↓  Enter  Esc", inner_w)
    cv.text(top + h - 2, left + 2, [(t.dim, hint)], t.overlay)
    return cv.render()


def build_theme_picker(layout: Layout, theme_name: str, theme: Theme) -> str:
    t = theme
    title = "Options — Theme"
    w = max(36, len(title) + 6)
    h = 7
    top, left = _centered(layout, h, w)

    cv = Canvas(t)
    cv.box(top, left, h, w, " Options ", t.overlay)
    cv.text(top + 1, left + (w - len(title)) // 2, [(t.header, title)], t.overlay)

    pad = 3
    text_w = (w - 2) - pad - 1
    prefix = "Theme: "
    name = middle_ellipsis(theme_name, max(0, text_w - len(prefix))).rstrip()
    cv.text(top + 3, left + pad, [(t.text, prefix), (t.accent, name)], t.overlay)

    hints = (
        "[←/↑] prev   [→/↓] next   [Enter/Esc] back",
        "←/↑ prev  →/↓ next  Enter/Esc",
        "←/↑  →/↓  Enter/Esc",
    )
    hint = next((s for s in hints if len(s) + 2 <= text_w), None)
    if hint is None:
        hint = ellipsis("Up/Down  Enter/Esc", max(0, text_w))
    cv.text(top + 5, left + pad, [(t.dim, hint)], t.overlay)
    return cv.render()


HELP_LINES = (
    ("Q", "Quit program"),
    ("Esc / M", "Open/Close menu"),
    ("H", "Show this help"),
    ("T / Y", "Next / previous theme"),
    ("F1 / F2 / F3", "Sort by CPU% / MEM / PID"),
    ("F6", "Sort by NAME"),
    ("F5", "Cycle update Hz"),
    ("PgUp/PgDn", "Scroll processes"),
    ("↑/↓/Home/End", "Navigation"),
    ("Wheel", "Scroll (Shift: page)"),
)


def build_help(layout: Layout, theme: Theme) -> str:
    t = theme
    w = min(layout.cols - 8, 78)
    h = min(layout.rows - 6, 18)
    top, left = _centered(layout, h, w)

    cv = Canvas(t)
    if not cv.box(top, left, h, w, " Help ", t.overlay):
        return ""
    inner_w = w - 4
    row = top + 2
    cv.text(row, left + 2, [(t.header, "Keys — Description")], t.overlay, inner_w)
    row += 2
    for key, desc in HELP_LINES:
        if row >= top + h - 2:
            break
        cv.text(row, left + 2, [(t.accent, key.ljust(12)), (t.text, "  " + desc)], t.overlay, inner_w)
        row += 1
    cv.text(top + h - 2, left + 2, [(t.dim, "[Esc/Enter] back")], t.overlay, inner_w)
    return cv.render()


# ── Redraw decisions ───────────────────────────────────────────────────────


class RedrawPolicy:
    """Decides when the base frame must be recomposed."""

    def __init__(self, modal_interval: float = MODAL_REDRAW_SECONDS) -> None:
        self.modal_interval = modal_interval
        self.prev_mode = UiMode.NORMAL
        self.last_modal_base: float | None = None

    def needs_base(self, mode: UiMode, now: float, dirty: bool = False, resized: bool = False) -> bool:
        need = dirty or resized or mode is UiMode.NORMAL or mode is not self.prev_mode
        if not need and (
            self.last_modal_base is None or now - self.last_modal_base >= self.modal_interval
        ):
            need = True
        if need and mode is not UiMode.NORMAL:
            self.last_modal_base = now
        self.prev_mode = mode
        return need


class Renderer:
    """Produces the text to write for one UI cycle."""

    def __init__(self, policy: RedrawPolicy | None = None) -> None:
        self.policy = policy or RedrawPolicy()
        self._last_overlay = ""

    def render(
        self,
        layout: Layout,
        state: SharedState,
        themes: ThemeManager,
        now: float,
        dirty: bool = False,
        resized: bool = False,
    ) -> str:
        """Return the output for this cycle; empty when nothing changed."""
        ui = state.ui()
        theme = themes.current()
        out: list[str] = []
        base = self.policy.needs_base(ui.mode, now, dirty=dirty, resized=resized)
        if base:
            out.append(build_frame(layout, state.view(), theme))

        overlay = ""
        if ui.mode is UiMode.MAIN_MENU:
            overlay = build_main_menu(layout, ui.menu_index, theme)
        elif ui.mode is UiMode.THEME_PICKER:
            overlay = build_theme_picker(layout, theme.name, theme)
        elif ui.mode is UiMode.HELP:
            overlay = build_help(layout, theme)

        if base or overlay != self._last_overlay:
            out.append(overlay)
        self._last_overlay = overlay
        return "".join(out)

"""Input decoding, debounce and the UI state machine.

Raw terminal sequences are decoded into :class:`InputEvent` objects by
:func:`decode_key`. :class:`InputRouter` turns those events into changes to a
:class:`UiState` copy (mode, menu cursor, sort, rate, scroll, selection) and
into theme switches on the :class:`ThemeManager`.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from ttymon.state import SortMode, UiMode, UiState
from ttymon.theme import ThemeManager

DEBOUNCE_SECONDS = 0.180
DEBOUNCE_SLOTS = 8
WHEEL_STEP = 3
MENU_SIZE = 3
RATES = (2, 5, 10, 20)

# Navigation keys are left out so that auto-repeat keeps scrolling smoothly
DEBOUNCED_KEYS = frozenset(
    {"escape", "enter", "h", "m", "q", "t", "y", "f1", "f2", "f3", "f5", "f6"}
)

SORT_KEYS: dict[str, SortMode] = {
    "f1": SortMode.CPU,
    "f2": SortMode.MEMORY,
    "f3": SortMode.PID,
    "f6": SortMode.NAME,
}


# ── Events & decoding ──────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class InputEvent:
    kind: str  # "key" or "wheel"
    key: str = ""
    delta: int = 0  # wheel: -1 up, +1 down
    page: bool = False  # wheel with the page modifier held

    @classmethod
    def press(cls, key: str) -> InputEvent:
        return cls("key", key=key)

    @classmethod
    def wheel(cls, delta: int, page: bool = False) -> InputEvent:
        return cls("wheel", delta=delta, page=page)


ESCAPES: dict[str, str] = {
    "[A": "up", "OA": "up",
    "[B": "down", "OB": "down",
    "[C": "right", "OC": "right",
    "[D": "left", "OD": "left",
    "[H": "home", "OH": "home", "[1~": "home", "[7~": "home",
    "[F": "end", "OF": "end", "[4~": "end", "[8~": "end",
    "[5~": "page_up",
    "[6~": "page_down",
    "[2~": "insert",
    "[3~": "delete",
    "OP": "f1", "[11~": "f1",
    "OQ": "f2", "[12~": "f2",
    "OR": "f3", "[13~": "f3",
    "OS": "f4", "[14~": "f4",
    "[15~": "f5",
    "[17~": "f6",
    "[18~": "f7",
    "[19~": "f8",
    "[20~": "f9",
    "[21~": "f10",
    "[23~": "f11",
    "[24~": "f12",
}

# SGR mouse button-code modifier bits
_MOD_SHIFT = 4
_MOD_META = 8
_MOD_CTRL = 16


def _decode_mouse(seq: str) -> InputEvent | None:
    """``ESC[<b;x;yM``: only wheel notches are of interest."""
    try:
        button = int(seq[3:].split(";")[0])
    except ValueError:
        return None
    page = bool(button & (_MOD_SHIFT | _MOD_CTRL))
    base = button & ~(_MOD_SHIFT | _MOD_META | _MOD_CTRL)
    if base == 64:
        return InputEvent.wheel(-1, page)
    if base == 65:
        return InputEvent.wheel(1, page)
    return None


def split_sequences(data: str) -> list[str]:
    """Split a chunk read from stdin into single keys / escape sequences."""
    out: list[str] = []
    i, n = 0, len(data)
    while i < n:
        ch = data[i]
        if ch != "\033" or i + 1 >= n:
            out.append(ch)
            i += 1
            continue
        nxt = data[i + 1]
        if nxt == "[":
            j = i + 2
            # parameter bytes, then one final byte in @..~
            while j < n and not ("@" <= data[j] <= "~" and data[j] not in "[<"):
                j += 1
            out.append(data[i : j + 1])
            i = j + 1
        elif nxt == "O" and i + 2 < n:
            out.append(data[i : i + 3])
            i += 3
        else:
            # lone ESC, or Alt+key which we treat as ESC then the key
            out.append("\033")
            i += 1
    return out


def decode_key(seq: str) -> InputEvent | None:
    """Decode one raw input sequence; None if it means nothing to us."""
    if seq == "\033":
        return InputEvent.press("escape")
    if seq in ("\r", "\n"):
        return InputEvent.press("enter")
    if seq.startswith("\033[<"):
        return _decode_mouse(seq)
    if seq.startswith("\033"):
        body = seq[1:]
        # Modified keys arrive as e.g. "[1;2A" or "[15;2~"; drop the modifier
        if body.startswith("[1;") and len(body) >= 5 and not body.endswith("~"):
            body = "[" + body[-1]
        elif ";" in body and body.endswith("~"):
            body = body.split(";")[0] + "~"
        name = ESCAPES.get(body)
        return InputEvent.press(name) if name else None
    if len(seq) == 1 and seq.isprintable():
        return InputEvent.press(seq.lower())
    return None


# ── Debounce ───────────────────────────────────────────────────────────────


class Debouncer:
    """Fixed-capacity table of last-trigger times keyed by key name."""

    def __init__(
        self,
        interval: float = DEBOUNCE_SECONDS,
        capacity: int = DEBOUNCE_SLOTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._slots: list[tuple[str, float] | None] = [None] * capacity

    def allow(self, key: str, now: float | None = None) -> bool:
        """Record *key* and return False if it fired within the interval."""
        now = self._clock() if now is None else now
        free = -1
        for i, slot in enumerate(self._slots):
            if slot is None:
                if free < 0:
                    free = i
                continue
            if slot[0] == key:
                if now - slot[1] < self.interval:
                    return False
                self._slots[i] = (key, now)
                return True
        if free < 0:
            free = min(
                range(len(self._slots)),
                key=lambda i: self._slots[i][1],  # type: ignore[index]
            )
        self._slots[free] = (key, now)
        return True

    def keys(self) -> list[str]:
        return [slot[0] for slot in self._slots if slot is not None]


# ── Navigation ─────────────────────────────────────────────────────────────


def clamp_selection(ui: UiState, page_rows: int, total: int) -> None:
    """Keep selection inside the data and the visible page."""
    if total <= 0:
        ui.selected = 0
        ui.scroll = 0
        return
    page_rows = max(1, page_rows)
    ui.selected = min(max(ui.selected, 0), total - 1)
    if ui.selected < ui.scroll:
        ui.scroll = ui.selected
    elif ui.selected > ui.scroll + page_rows - 1:
        ui.scroll = ui.selected - (page_rows - 1)
    ui.scroll = min(max(ui.scroll, 0), max(0, total - page_rows))
    ui.selected = min(max(ui.selected, ui.scroll), ui.scroll + page_rows - 1)


def scroll_by(ui: UiState, rows: int, page_rows: int, total: int) -> None:
    """Move the scroll window and drag the selection by the actual delta."""
    page_rows = max(1, page_rows)
    max_scroll = max(0, total - page_rows)
    old = ui.scroll
    ui.scroll = min(max(ui.scroll + rows, 0), max_scroll)
    ui.selected += ui.scroll - old
    clamp_selection(ui, page_rows, total)


def move_selection(ui: UiState, rows: int, page_rows: int, total: int) -> None:
    ui.selected += rows
    clamp_selection(ui, page_rows, total)


def jump_to(ui: UiState, index: int, page_rows: int, total: int) -> None:
    ui.selected = index
    clamp_selection(ui, page_rows, total)


def next_rate(hz: int) -> int:
    """The refresh rate after *hz* in :data:`RATES`, wrapping around."""
    for rate in RATES:
        if rate > hz:
            return rate
    return RATES[0]


# ── Router ─────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class RouteResult:
    dirty: bool = False
    quit: bool = False
    theme_changed: bool = False


class InputRouter:
    """Applies decoded input events to a UiState copy."""

    def __init__(
        self,
        themes: ThemeManager,
        debouncer: Debouncer | None = None,
    ) -> None:
        self.themes = themes
        self.debouncer = debouncer or Debouncer()

    def handle(
        self,
        ui: UiState,
        events: Iterable[InputEvent],
        page_rows: int,
        total: int,
    ) -> RouteResult:
        result = RouteResult()
        for event in events:
            if event.kind == "wheel":
                if ui.mode is UiMode.NORMAL and event.delta:
                    step = max(1, page_rows) if event.page else WHEEL_STEP
                    scroll_by(ui, step * event.delta, page_rows, total)
                    result.dirty = True
            elif event.kind == "key":
                self._key(ui, event.key, page_rows, total, result)
            if result.quit:
                break
        return result

    def _debounced(self, key: str) -> bool:
        return key in DEBOUNCED_KEYS and not self.debouncer.allow(key)

    def _key(self, ui: UiState, key: str, page_rows: int, total: int, result: RouteResult) -> None:
        if key == "escape":
            if self._debounced(key):
                return
            if ui.mode in (UiMode.THEME_PICKER, UiMode.HELP):
                ui.mode = UiMode.MAIN_MENU
            elif ui.mode is UiMode.MAIN_MENU:
                ui.mode = UiMode.NORMAL
            else:
                ui.mode = UiMode.MAIN_MENU
            result.dirty = True
            return

        if ui.mode is UiMode.MAIN_MENU:
            self._main_menu(ui, key, result)
        elif ui.mode is UiMode.THEME_PICKER:
            self._theme_picker(ui, key, result)
        elif ui.mode is UiMode.HELP:
            if key == "enter" and not self._debounced(key):
                ui.mode = UiMode.MAIN_MENU
                result.dirty = True
        else:
            self._normal(ui, key, page_rows, total, result)

    def _main_menu(self, ui: UiState, key: str, result: RouteResult) -> None:
        if key == "up":
            ui.menu_index = max(0, ui.menu_index - 1)
            result.dirty = True
        elif key == "down":
            ui.menu_index = min(MENU_SIZE - 1, ui.menu_index + 1)
            result.dirty = True
        elif key == "enter" and not self._debounced(key):
            if ui.menu_index == 0:
                ui.mode = UiMode.THEME_PICKER
            elif ui.menu_index == 1:
                ui.mode = UiMode.HELP
            else:
                result.quit = True
            result.dirty = True

    def _theme_picker(self, ui: UiState, key: str, result: RouteResult) -> None:
        if key in ("left", "up"):
            self.themes.prev()
        elif key in ("right", "down"):
            self.themes.next()
        elif key == "enter":
            if not self._debounced(key):
                ui.mode = UiMode.MAIN_MENU
                result.dirty = True
            return
        else:
            return
        result.theme_changed = True
        result.dirty = True

    def _normal(self, ui: UiState, key: str, page_rows: int, total: int, result: RouteResult) -> None:
        page = max(1, page_rows)
        actions: dict[str, Callable[[], None]] = {
            "q": lambda: setattr(result, "quit", True),
            "h": lambda: setattr(ui, "mode", UiMode.HELP),
            "m": lambda: setattr(ui, "mode", UiMode.MAIN_MENU),
            "t": self.themes.next,
            "y": self.themes.prev,
            "f5": lambda: setattr(ui, "hz", next_rate(ui.hz)),
            "page_down": lambda: scroll_by(ui, page, page_rows, total),
            "page_up": lambda: scroll_by(ui, -page, page_rows, total),
            "down": lambda: move_selection(ui, 1, page_rows, total),
            "up": lambda: move_selection(ui, -1, page_rows, total),
            "home": lambda: jump_to(ui, 0, page_rows, total),
            "end": lambda: jump_to(ui, max(0, total - 1), page_rows, total),
        }
        if key in SORT_KEYS:
            sort = SORT_KEYS[key]
            actions[key] = lambda: setattr(ui, "sort", sort)

        action = actions.get(key)
        if action is None or self._debounced(key):
            return
        action()
        if key in ("t", "y"):
            result.theme_changed = True
        result.dirty = True

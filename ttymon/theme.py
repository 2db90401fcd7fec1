"""Theme loading, derived colors and contrast enforcement.

Theme files use the btop ``theme[key]="#RRGGBB"`` syntax. Only a fixed set
of keys is understood; everything else in the file is ignored.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import NamedTuple

logger = logging.getLogger(__name__)

THEMES_ENV = "TTYMON_THEMES"
THEME_SUFFIX = ".theme"
LIGHTEN_STEP = 14

MIN_TEXT_CONTRAST = 4.5
MIN_DIM_CONTRAST = 3.0

_LINE_RE = re.compile(r'theme\[(.+?)\]\s*=\s*"?(#?[A-Fa-f0-9]{6})"?')


class Rgb(NamedTuple):
    r: int
    g: int
    b: int

    @classmethod
    def from_hex(cls, value: str) -> Rgb | None:
        """Parse ``#RRGGBB`` or ``RRGGBB``; None if malformed."""
        value = value.strip().removeprefix("#")
        if len(value) != 6:
            return None
        try:
            return cls(int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))
        except ValueError:
            return None

    def lighten(self, step: int = LIGHTEN_STEP) -> Rgb:
        return Rgb(min(255, self.r + step), min(255, self.g + step), min(255, self.b + step))


WHITE = Rgb(255, 255, 255)
BLACK = Rgb(0, 0, 0)
WARNING = Rgb(255, 210, 120)
CRITICAL = Rgb(255, 120, 120)


@dataclass(slots=True)
class Theme:
    name: str = "Default"

    text: Rgb = Rgb(220, 220, 220)
    dim: Rgb = Rgb(160, 160, 160)
    header: Rgb = Rgb(200, 200, 200)

    panel: Rgb = Rgb(20, 20, 20)
    background: Rgb = Rgb(28, 28, 28)
    overlay: Rgb = Rgb(12, 12, 12)

    accent: Rgb = Rgb(120, 220, 255)
    selection_fg: Rgb = Rgb(255, 255, 255)
    selection_bg: Rgb = Rgb(120, 60, 140)

    meter_bg: Rgb = Rgb(60, 60, 60)
    frame: Rgb = Rgb(90, 90, 90)
    divider: Rgb = Rgb(60, 60, 60)

    bar_low: Rgb = Rgb(120, 255, 60)
    bar_high: Rgb = Rgb(255, 120, 60)

    box_cpu: Rgb = Rgb(120, 200, 255)
    box_mem: Rgb = Rgb(180, 255, 120)
    box_proc: Rgb = Rgb(180, 160, 255)


DEFAULT_THEME = Theme()

# theme file key -> Theme slots it sets
THEME_KEYS: dict[str, tuple[str, ...]] = {
    "main_bg": ("panel",),
    "main_fg": ("text",),
    "title": ("header",),
    "hi_fg": ("accent",),
    "selected_bg": ("selection_bg",),
    "selected_fg": ("selection_fg",),
    "inactive_fg": ("dim",),
    "graph_text": ("header",),
    "meter_bg": ("meter_bg",),
    "cpu_box": ("box_cpu",),
    "mem_box": ("box_mem",),
    "proc_box": ("box_proc",),
    "div_line": ("frame", "divider"),
    "bar_lo": ("bar_low",),
    "cpu_color_low": ("bar_low",),
    "bar_hi": ("bar_high",),
    "cpu_color_high": ("bar_high",),
}


# ── Contrast ───────────────────────────────────────────────────────────────


def _channel(u: int) -> float:
    c = u / 255.0
    return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4


def relative_luminance(color: Rgb) -> float:
    return 0.2126 * _channel(color.r) + 0.7152 * _channel(color.g) + 0.0722 * _channel(color.b)


def contrast_ratio(a: Rgb, b: Rgb) -> float:
    high, low = sorted((relative_luminance(a), relative_luminance(b)), reverse=True)
    return (high + 0.05) / (low + 0.05)


def readable_on(bg: Rgb) -> Rgb:
    """White or black, whichever reads better on *bg*."""
    return WHITE if contrast_ratio(WHITE, bg) >= contrast_ratio(BLACK, bg) else BLACK


# ── Parsing & derivation ───────────────────────────────────────────────────


def parse_theme(name: str, text: str) -> Theme:
    """Build a theme from file text. Unknown keys and bad lines are skipped."""
    values: dict[str, Rgb] = {}
    for line in text.splitlines():
        m = _LINE_RE.search(line)
        if not m:
            continue
        slots = THEME_KEYS.get(m.group(1).strip())
        color = Rgb.from_hex(m.group(2))
        if slots is None or color is None:
            continue
        for slot in slots:
            values[slot] = color
    theme = replace(DEFAULT_THEME, name=name, **values)
    derive_colors(theme)
    enforce_contrast(theme)
    return theme


def _untouched(theme: Theme, slot: str) -> bool:
    return getattr(theme, slot) == getattr(DEFAULT_THEME, slot)


# (slot, source) applied in order; each rule only fires on a default slot
DERIVATIONS: list[tuple[str, Callable[[Theme], Rgb]]] = [
    ("overlay", lambda t: t.panel.lighten()),
    ("background", lambda t: t.panel.lighten()),
    ("frame", lambda t: t.meter_bg),
    ("divider", lambda t: t.frame),
]


def derive_colors(theme: Theme) -> None:
    for slot, source in DERIVATIONS:
        if _untouched(theme, slot):
            setattr(theme, slot, source(theme))


def enforce_contrast(theme: Theme) -> None:
    if contrast_ratio(theme.text, theme.background) < MIN_TEXT_CONTRAST:
        theme.text = readable_on(theme.background)
    if contrast_ratio(theme.header, theme.background) < MIN_TEXT_CONTRAST:
        theme.header = readable_on(theme.background)
    if contrast_ratio(theme.dim, theme.background) < MIN_DIM_CONTRAST:
        theme.dim = theme.text
    if contrast_ratio(theme.selection_fg, theme.selection_bg) < MIN_TEXT_CONTRAST:
        theme.selection_fg = readable_on(theme.selection_bg)


def load_theme_file(path: Path) -> Theme:
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    return parse_theme(path.stem, text)


def default_theme() -> Theme:
    """The built-in palette with derivation and contrast applied."""
    theme = replace(DEFAULT_THEME)
    derive_colors(theme)
    enforce_contrast(theme)
    return theme


def resolve_themes_dir(environ: Mapping[str, str] | None = None) -> Path:
    """Environment override, then the bundled dir, then ./themes."""
    env = os.environ if environ is None else environ
    override = env.get(THEMES_ENV)
    if override and Path(override).is_dir():
        return Path(override)
    bundled = Path(__file__).resolve().parent / "themes"
    if bundled.is_dir():
        return bundled
    local = Path.cwd() / "themes"
    if local.is_dir():
        return local
    return Path("themes")


# ── Manager ────────────────────────────────────────────────────────────────


class ThemeManager:
    """Holds the loaded themes sorted by name and the active index."""

    def __init__(self, themes: list[Theme] | None = None) -> None:
        self._themes: list[Theme] = sorted(themes or [default_theme()], key=lambda t: t.name)
        self._index = 0

    def load_dir(self, directory: Path) -> bool:
        """Load every theme file in *directory*.

        Returns False, and keeps only the built-in palette, when nothing
        could be loaded.
        """
        loaded: list[Theme] = []
        try:
            paths = sorted(p for p in directory.iterdir() if p.suffix == THEME_SUFFIX)
        except OSError as e:
            logger.warning("cannot read theme directory %s: %s", directory, e)
            paths = []
        for path in paths:
            if not path.is_file():
                continue
            try:
                loaded.append(load_theme_file(path))
            except OSError as e:
                logger.warning("skipping theme %s: %s", path, e)

        if not loaded:
            logger.warning("no themes loaded from %s, using built-in default", directory)
            self._themes = [default_theme()]
            self._index = 0
            return False

        self._themes = sorted(loaded, key=lambda t: t.name)
        self._index = 0
        logger.info("loaded %d themes from %s", len(loaded), directory)
        return True

    def current(self) -> Theme:
        return self._themes[self._index]

    def names(self) -> list[str]:
        return [t.name for t in self._themes]

    def next(self) -> None:
        self._index = (self._index + 1) % len(self._themes)

    def prev(self) -> None:
        self._index = (self._index - 1) % len(self._themes)

    def select(self, name: str) -> None:
        for i, theme in enumerate(self._themes):
            if theme.name == name:
                self._index = i
                return

    def __len__(self) -> int:
        return len(self._themes)

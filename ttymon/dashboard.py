"""Interactive terminal dashboard: ttymon's main loop and CLI entry point.

Three threads cooperate: the Sampler fills SharedState, the KeyReader
queues decoded input, and the main thread runs a fixed 60 FPS cycle of
input → state update → render → pacing sleep.

Usage:
    ttymon
    ttymon --hz 10 --theme Nord
    ttymon --config path/to/ttymon.conf --themes path/to/themes
"""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import sys
import time
from collections.abc import Callable
from pathlib import Path

from ttymon.config import CONFIG_DIR, Settings, dump_config, load_config, save_config
from ttymon.keys import InputRouter, clamp_selection
from ttymon.provider import PsutilProvider
from ttymon.render import Renderer, compute_layout, compute_table_metrics
from ttymon.sampler import Sampler
from ttymon.state import SharedState
from ttymon.terminal import KeyReader, Terminal, TerminalError
from ttymon.theme import ThemeManager, resolve_themes_dir

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────

FPS = 60
FRAME_SECONDS = 1.0 / FPS
LOG_PATH = CONFIG_DIR / "error.log"
LOG_FORMAT = "%(asctime)s | %(levelname)s: %(message)s"
LOG_MAX_BYTES = 1 << 20
LOG_BACKUPS = 4


# ── Logging ────────────────────────────────────────────────────────────────


def setup_logging(level: str = "WARNING", path: Path = LOG_PATH) -> logging.Handler | None:
    """Send the package's log records to a rotating file.

    stderr is hidden behind the alternate screen while the UI runs, so the
    log goes to ``~/.config/ttymon/error.log`` instead. Returns the handler,
    or None if the file could not be opened.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
        )
    except OSError as e:
        print(f"ttymon: cannot open log file {path}: {e}", file=sys.stderr)
        return None
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%d/%m/%y (%X)"))
    root = logging.getLogger("ttymon")
    root.addHandler(handler)
    root.setLevel(level.upper())
    return handler


# ── Main loop ──────────────────────────────────────────────────────────────


class Dashboard:
    """Runs the UI cycle until quit is requested."""

    def __init__(
        self,
        state: SharedState,
        themes: ThemeManager,
        terminal: Terminal,
        reader: KeyReader,
        sampler: Sampler | None = None,
        router: InputRouter | None = None,
        renderer: Renderer | None = None,
        config_path: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.state = state
        self.themes = themes
        self.terminal = terminal
        self.reader = reader
        self.sampler = sampler
        self.router = router or InputRouter(themes)
        self.renderer = renderer or Renderer()
        self.config_path = config_path
        self._clock = clock
        self._sleep = sleep
        self._size: tuple[int, int] | None = None

    def run_cycle(self) -> bool:
        """One input → update → render pass. Returns False once quit is requested."""
        now = self._clock()
        cols, rows = self.terminal.size()
        resized = (cols, rows) != self._size
        self._size = (cols, rows)
        layout = compute_layout(cols, rows)
        page_rows = compute_table_metrics(layout).page_rows

        ui = self.state.ui()
        total = self.state.process_count()
        result = self.router.handle(ui, self.reader.drain(), page_rows, total)
        # the process count moves under us between samples
        clamp_selection(ui, page_rows, total)
        self.state.store_ui(ui)
        if result.quit:
            return False

        self.terminal.write(
            self.renderer.render(
                layout, self.state, self.themes, now, dirty=result.dirty, resized=resized
            )
        )
        return True

    def run(self) -> None:
        if self.sampler is not None:
            self.sampler.start()
        self.reader.start()
        try:
            while True:
                started = self._clock()
                if not self.run_cycle():
                    break
                elapsed = self._clock() - started
                if elapsed < FRAME_SECONDS:
                    self._sleep(FRAME_SECONDS - elapsed)
        finally:
            self.save_settings()
            self.reader.stop()
            if self.sampler is not None:
                self.sampler.stop()

    def settings(self) -> Settings:
        return Settings(theme=self.themes.current().name, hz=self.state.hz)

    def save_settings(self) -> bool:
        return save_config(self.settings(), self.config_path)


# ── CLI entry point ────────────────────────────────────────────────────────


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if n <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {n}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ttymon",
        description="Interactive terminal resource monitor.",
    )
    parser.add_argument(
        "--hz",
        type=_positive_int,
        default=None,
        metavar="N",
        help="Sampling rate in Hz (overrides the config file)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to the settings file (default: ~/.config/ttymon/ttymon.conf)",
    )
    parser.add_argument(
        "--themes",
        type=Path,
        default=None,
        metavar="DIR",
        help="Directory of .theme files",
    )
    parser.add_argument(
        "--theme",
        default=None,
        metavar="NAME",
        help="Theme to start with (overrides the config file)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Level for ~/.config/ttymon/error.log (default: WARNING)",
    )
    parser.add_argument(
        "--dump-config",
        action="store_true",
        help="Print the effective settings and exit",
    )
    return parser


def resolve_settings(args: argparse.Namespace) -> Settings:
    settings = load_config(args.config)
    if args.hz is not None:
        settings.hz = args.hz
    if args.theme:
        settings.theme = args.theme
    return settings


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = resolve_settings(args)
    if args.dump_config:
        print(dump_config(settings), end="")
        return

    setup_logging(args.log_level)
    themes = ThemeManager()
    themes.load_dir(args.themes or resolve_themes_dir())
    if settings.theme:
        themes.select(settings.theme)

    state = SharedState(hz=settings.hz)
    sampler = Sampler(state, PsutilProvider())
    try:
        with Terminal() as terminal:
            reader = KeyReader(terminal.fd)
            Dashboard(
                state, themes, terminal, reader, sampler=sampler, config_path=args.config
            ).run()
    except TerminalError as e:
        logger.error("%s", e)
        print(f"ttymon: {e}", file=sys.stderr)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

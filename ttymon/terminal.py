"""Terminal setup, output and the threaded key reader."""

from __future__ import annotations

import logging
import os
import queue
import sys
import termios
import threading
import tty
from select import select
from typing import TextIO

from ttymon.keys import InputEvent, decode_key, split_sequences

logger = logging.getLogger(__name__)

ALT_SCREEN = "\033[?1049h"
NORMAL_SCREEN = "\033[?1049l"
HIDE_CURSOR = "\033[?25l"
SHOW_CURSOR = "\033[?25h"
# button events + SGR extended coordinates
MOUSE_ON = "\033[?1002h\033[?1015h\033[?1006h"
MOUSE_OFF = "\033[?1002l\033[?1015l\033[?1006l"
RESET = "\033[0m"

POLL_SECONDS = 0.1
FALLBACK_SIZE = (80, 24)


class TerminalError(Exception):
    """The terminal could not be put into interactive mode."""


class Terminal:
    """Context manager owning the tty for the lifetime of the UI.

    On enter stdin is switched to cbreak mode, the alternate screen is
    entered, the cursor hidden and mouse reporting enabled. All of it is
    undone on exit, also when leaving through an exception.
    """

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        mouse: bool = True,
    ) -> None:
        self.stdin = sys.stdin if stdin is None else stdin
        self.stdout = sys.stdout if stdout is None else stdout
        self.mouse = mouse
        self._saved_attrs: list | None = None

    @property
    def fd(self) -> int:
        return self.stdin.fileno()

    def __enter__(self) -> Terminal:
        try:
            if not self.stdin.isatty():
                raise TerminalError("stdin is not a terminal")
            self._saved_attrs = termios.tcgetattr(self.fd)
            tty.setcbreak(self.fd)
        except (termios.error, OSError, ValueError) as e:
            raise TerminalError(f"cannot initialize terminal: {e}") from e
        self.write(ALT_SCREEN + HIDE_CURSOR + (MOUSE_ON if self.mouse else ""))
        return self

    def __exit__(self, *exc: object) -> None:
        try:
            self.write(RESET + (MOUSE_OFF if self.mouse else "") + SHOW_CURSOR + NORMAL_SCREEN)
        except OSError as e:
            logger.warning("could not restore screen: %s", e)
        if self._saved_attrs is not None:
            try:
                termios.tcsetattr(self.fd, termios.TCSANOW, self._saved_attrs)
            except termios.error as e:
                logger.warning("could not restore terminal attributes: %s", e)
            self._saved_attrs = None

    def size(self) -> tuple[int, int]:
        """(columns, rows) of the controlling terminal."""
        try:
            size = os.get_terminal_size(self.stdout.fileno())
        except (OSError, ValueError):
            return FALLBACK_SIZE
        return size.columns, size.lines

    def write(self, text: str) -> None:
        if not text:
            return
        self.stdout.write(text)
        self.stdout.flush()


def _incomplete(data: bytes) -> bool:
    """True if *data* ends inside an escape sequence split across reads."""
    start = data.rfind(b"\033")
    if start < 0:
        return False
    tail = data[start:]
    if len(tail) == 1:
        return True
    if tail[1:2] == b"O":
        return len(tail) < 3
    if tail[1:2] != b"[":
        return False
    # CSI ends with a final byte in @..~ other than the "<" / "[" introducers
    return len(tail) < 3 or not (0x40 <= tail[-1] <= 0x7E and tail[-1:] != b"[")


class KeyReader:
    """Reads raw input on a daemon thread and queues decoded events."""

    def __init__(self, fd: int, events: queue.Queue[InputEvent] | None = None) -> None:
        self.fd = fd
        self.events: queue.Queue[InputEvent] = queue.Queue() if events is None else events
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="KeyReader")
        self._thread.start()

    def stop(self, timeout: float | None = 1.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def drain(self) -> list[InputEvent]:
        """All pending events, without blocking."""
        out: list[InputEvent] = []
        while True:
            try:
                out.append(self.events.get_nowait())
            except queue.Empty:
                return out

    def feed(self, data: str) -> int:
        """Decode *data* and queue the resulting events; returns how many."""
        n = 0
        for seq in split_sequences(data):
            event = decode_key(seq)
            if event is None:
                logger.debug("ignoring input %r", seq)
                continue
            self.events.put(event)
            n += 1
        return n

    def _read_chunk(self) -> str:
        data = os.read(self.fd, 1024)
        while _incomplete(data):
            if not select([self.fd], [], [], 0.01)[0]:
                break
            more = os.read(self.fd, 1024)
            if not more:
                break
            data += more
        return data.decode("utf-8", errors="replace")

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                if not select([self.fd], [], [], POLL_SECONDS)[0]:
                    continue
                data = self._read_chunk()
                if not data:
                    logger.info("input closed, key reader exiting")
                    return
                self.feed(data)
        except Exception:
            logger.exception("key reader stopped")

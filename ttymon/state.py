"""Shared state between the sampler thread and the UI loop.

Everything the two threads exchange lives in :class:`SharedState` behind a
single lock. The sampler publishes whole :class:`MetricSnapshot` objects; the
UI copies its :class:`UiState` out, mutates the copy, and stores it back.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from enum import Enum

HISTORY_CAPACITY = 180
DEFAULT_HZ = 5


# ── Enums ──────────────────────────────────────────────────────────────────


class UiMode(Enum):
    NORMAL = "normal"
    MAIN_MENU = "main_menu"
    THEME_PICKER = "theme_picker"
    HELP = "help"


class SortMode(Enum):
    """Process table ordering."""

    MEMORY = "memory"  # working set, descending
    CPU = "cpu"  # cpu percent, descending
    PID = "pid"  # ascending
    NAME = "name"  # ascending


# ── Ring buffer ────────────────────────────────────────────────────────────


class RingBuffer:
    """Fixed-capacity FIFO history. Oldest values fall off the front."""

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._buf: deque[float] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._buf.maxlen or 0

    def push(self, value: float) -> None:
        self._buf.append(value)

    def values(self) -> list[float]:
        """Copy of the contents, oldest first."""
        return list(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def __iter__(self) -> Iterator[float]:
        return iter(self._buf)


# ── Snapshot records ───────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """One row of the process table for a single tick."""

    pid: int
    name: str
    working_set: int  # resident bytes
    threads: int
    cpu_percent: float  # 0.0 - 999.9
    user: str = ""
    command_line: str = ""


@dataclass(slots=True, frozen=True)
class MetricSnapshot:
    """Everything sampled in one tick. Never mutated after publishing."""

    cpu_percent: float = 0.0
    per_core: tuple[float, ...] = ()
    memory_total: int = 0
    memory_used: int = 0
    memory_available: int = 0
    memory_percent: float = 0.0
    processes: tuple[ProcessRecord, ...] = ()
    disk_read_bps: float | None = None
    disk_write_bps: float | None = None
    net_sent_bps: float | None = None
    net_recv_bps: float | None = None
    uptime_seconds: float | None = None
    logical_cores: int = 1


# ── UI fields ──────────────────────────────────────────────────────────────


@dataclass(slots=True)
class UiState:
    """UI-facing fields. Copied out of and back into SharedState as a unit."""

    mode: UiMode = UiMode.NORMAL
    menu_index: int = 0
    hz: int = DEFAULT_HZ
    sort: SortMode = SortMode.MEMORY
    scroll: int = 0
    selected: int = 0


@dataclass(slots=True, frozen=True)
class StateView:
    """Consistent copy of SharedState handed to the renderer."""

    snapshot: MetricSnapshot
    cpu_history: list[float] = field(default_factory=lambda: list[float]())
    mem_history: list[float] = field(default_factory=lambda: list[float]())
    disk_read_history: list[float] = field(default_factory=lambda: list[float]())
    net_up_history: list[float] = field(default_factory=lambda: list[float]())
    ui: UiState = field(default_factory=UiState)


# ── Shared state ───────────────────────────────────────────────────────────


class SharedState:
    """The one lock-guarded structure shared by the sampler and the UI.

    The lock is only ever held for copying whole field sets in or out.
    """

    def __init__(self, hz: int = DEFAULT_HZ, capacity: int = HISTORY_CAPACITY) -> None:
        self._lock = threading.Lock()
        self._snapshot = MetricSnapshot()
        self._cpu_history = RingBuffer(capacity)
        self._mem_history = RingBuffer(capacity)
        self._disk_read_history = RingBuffer(capacity)
        self._net_up_history = RingBuffer(capacity)
        self._ui = UiState(hz=max(1, hz))

    @property
    def hz(self) -> int:
        with self._lock:
            return self._ui.hz

    @hz.setter
    def hz(self, value: int) -> None:
        with self._lock:
            self._ui.hz = max(1, int(value))

    def publish(self, snapshot: MetricSnapshot) -> None:
        """Replace the snapshot and push its history samples in one step."""
        with self._lock:
            self._snapshot = snapshot
            self._cpu_history.push(snapshot.cpu_percent)
            self._mem_history.push(snapshot.memory_percent)
            if snapshot.disk_read_bps is not None:
                self._disk_read_history.push(snapshot.disk_read_bps)
            if snapshot.net_sent_bps is not None:
                self._net_up_history.push(snapshot.net_sent_bps)

    def snapshot(self) -> MetricSnapshot:
        with self._lock:
            return self._snapshot

    def process_count(self) -> int:
        with self._lock:
            return len(self._snapshot.processes)

    def ui(self) -> UiState:
        """Copy of the UI fields."""
        with self._lock:
            return replace(self._ui)

    def store_ui(self, ui: UiState) -> None:
        with self._lock:
            self._ui = replace(ui, hz=max(1, ui.hz))

    def view(self) -> StateView:
        with self._lock:
            return StateView(
                snapshot=self._snapshot,
                cpu_history=self._cpu_history.values(),
                mem_history=self._mem_history.values(),
                disk_read_history=self._disk_read_history.values(),
                net_up_history=self._net_up_history.values(),
                ui=replace(self._ui),
            )

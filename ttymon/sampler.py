"""Background sampling loop.

Turns raw provider counters into a :class:`MetricSnapshot` once per tick and
publishes it into :class:`SharedState`. Runs in its own daemon thread and is
stopped cooperatively through a :class:`threading.Event`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import replace

from ttymon.provider import TICKS_PER_SECOND, CpuTicks, MetricsProvider, RawProcess
from ttymon.state import MetricSnapshot, ProcessRecord, SharedState

logger = logging.getLogger(__name__)

ENRICH_LIMIT = 120  # top-N by working set that get user/cmdline lookups
MAX_PROCESS_CPU = 999.9


# ── CPU arithmetic ─────────────────────────────────────────────────────────


def compute_cpu_usage(prev: CpuTicks, curr: CpuTicks) -> float:
    """System CPU% between two samples. Kernel ticks include idle ticks."""
    idle = curr.idle - prev.idle
    kernel = curr.kernel - prev.kernel
    user = curr.user - prev.user
    busy = (kernel - idle) + user
    total = busy + idle
    if total <= 0:
        return 0.0
    return min(100.0, max(0.0, busy / total * 100.0))


def compute_process_cpu(
    prev: tuple[int, int] | None,
    kernel: int,
    user: int,
    elapsed: float,
    cores: int,
    ticks_per_second: int = TICKS_PER_SECOND,
) -> float:
    """Per-process CPU% over *elapsed* seconds, scaled by logical core count.

    Returns 0 when there is no previous sample for the pid.
    """
    if prev is None or elapsed <= 0:
        return 0.0
    busy = (kernel - prev[0]) + (user - prev[1])
    pct = busy / (elapsed * ticks_per_second * max(1, cores)) * 100.0
    return min(MAX_PROCESS_CPU, max(0.0, pct))


# ── Sampler ────────────────────────────────────────────────────────────────


class Sampler:
    """Periodically samples a MetricsProvider into SharedState."""

    def __init__(
        self,
        state: SharedState,
        provider: MetricsProvider,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._state = state
        self._provider = provider
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self._cores = max(1, provider.logical_core_count())
        self._prev_sys: CpuTicks | None = None
        self._prev_time: float | None = None
        self._prev_ticks: dict[int, tuple[int, int]] = {}
        self._name_cache: dict[int, str] = {}
        self._user_cache: dict[int, str] = {}
        self._cmd_cache: dict[int, str] = {}

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="Sampler")
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Ask the loop to exit and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                started = self._clock()
                try:
                    self.tick()
                except Exception:
                    logger.exception("sampler tick failed")
                period = 1.0 / max(1, self._state.hz)
                remaining = period - (self._clock() - started)
                if remaining > 0:
                    self._stop_event.wait(timeout=remaining)
        finally:
            self._provider.close()

    def tick(self) -> MetricSnapshot:
        """Take one sample, publish it, and return it."""
        now = self._clock()
        provider = self._provider

        cpu_total = 0.0
        sys_ticks = provider.system_cpu_ticks()
        if sys_ticks is not None:
            if self._prev_sys is not None:
                cpu_total = compute_cpu_usage(self._prev_sys, sys_ticks)
            self._prev_sys = sys_ticks

        memory = provider.memory_info()
        per_core = tuple(provider.per_core_cpu_percent())
        raw = provider.enumerate_processes()

        if self._prev_time is None:
            elapsed = 1.0 / max(1, self._state.hz)
        else:
            elapsed = now - self._prev_time
        self._prev_time = now

        records = [self._build_record(r, elapsed) for r in raw]
        # Fixed ranking for enrichment, independent of the display sort
        records.sort(key=lambda p: p.working_set, reverse=True)
        limit = min(len(records), ENRICH_LIMIT)
        records[:limit] = [self._enrich(p) for p in records[:limit]]

        disk = provider.disk_totals()
        net = provider.net_totals()
        snapshot = MetricSnapshot(
            cpu_percent=cpu_total,
            per_core=per_core,
            memory_total=memory.total,
            memory_used=memory.used,
            memory_available=memory.available,
            memory_percent=memory.percent,
            processes=tuple(records),
            disk_read_bps=disk.read_bps if disk else None,
            disk_write_bps=disk.write_bps if disk else None,
            net_sent_bps=net.sent_bps if net else None,
            net_recv_bps=net.recv_bps if net else None,
            uptime_seconds=provider.uptime_seconds(),
            logical_cores=self._cores,
        )
        self._state.publish(snapshot)
        self._purge({r.pid for r in raw})
        return snapshot

    def _build_record(self, raw: RawProcess, elapsed: float) -> ProcessRecord:
        pct = compute_process_cpu(
            self._prev_ticks.get(raw.pid),
            raw.kernel_ticks,
            raw.user_ticks,
            elapsed,
            self._cores,
        )
        self._prev_ticks[raw.pid] = (raw.kernel_ticks, raw.user_ticks)

        name = raw.name
        if not name:
            cached = self._name_cache.get(raw.pid)
            if cached is None:
                cached = self._provider.resolve_process_name(raw.pid) or ""
                self._name_cache[raw.pid] = cached
            name = cached

        return ProcessRecord(
            pid=raw.pid,
            name=name,
            working_set=raw.working_set,
            threads=raw.threads,
            cpu_percent=pct,
        )

    def _enrich(self, record: ProcessRecord) -> ProcessRecord:
        """Fill user and command line from the caches, resolving misses.

        Empty lookups are not cached so they are retried next tick.
        """
        pid = record.pid
        user = self._user_cache.get(pid)
        if user is None:
            user = self._provider.resolve_process_user(pid) or ""
            if user:
                self._user_cache[pid] = user
        cmd = self._cmd_cache.get(pid)
        if cmd is None:
            cmd = self._provider.resolve_process_command_line(pid) or ""
            if cmd:
                self._cmd_cache[pid] = cmd
        return replace(record, user=user, command_line=cmd)

    def _purge(self, alive: set[int]) -> None:
        for table in (self._prev_ticks, self._name_cache, self._user_cache, self._cmd_cache):
            for pid in [p for p in table if p not in alive]:
                del table[pid]

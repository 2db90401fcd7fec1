"""Raw metric acquisition.

The sampler only talks to the :class:`MetricsProvider` protocol. The one
real implementation, :class:`PsutilProvider`, wraps psutil and converts its
float seconds into integer CPU ticks. Every method degrades to an empty or
``None`` result instead of raising.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

import psutil

logger = logging.getLogger(__name__)

# 100 ns units, the resolution the tick arithmetic is written against.
TICKS_PER_SECOND = 10_000_000

_PROC_ERRORS = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess)


# ── Raw records ────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class CpuTicks:
    """System-wide CPU time. ``kernel`` includes ``idle``."""

    idle: int = 0
    kernel: int = 0
    user: int = 0


@dataclass(slots=True, frozen=True)
class MemoryInfo:
    total: int = 0
    available: int = 0
    used: int = 0
    percent: float = 0.0


@dataclass(slots=True, frozen=True)
class RawProcess:
    pid: int
    parent_pid: int
    threads: int
    working_set: int
    kernel_ticks: int
    user_ticks: int
    name: str = ""


@dataclass(slots=True, frozen=True)
class DiskTotals:
    read_bps: float
    write_bps: float


@dataclass(slots=True, frozen=True)
class NetTotals:
    sent_bps: float
    recv_bps: float


# ── Protocol ───────────────────────────────────────────────────────────────


class MetricsProvider(Protocol):
    def system_cpu_ticks(self) -> CpuTicks | None: ...

    def per_core_cpu_percent(self) -> list[float]: ...

    def memory_info(self) -> MemoryInfo: ...

    def enumerate_processes(self) -> list[RawProcess]: ...

    def resolve_process_name(self, pid: int) -> str | None: ...

    def resolve_process_user(self, pid: int) -> str | None: ...

    def resolve_process_command_line(self, pid: int) -> str | None: ...

    def disk_totals(self) -> DiskTotals | None: ...

    def net_totals(self) -> NetTotals | None: ...

    def uptime_seconds(self) -> float | None: ...

    def logical_core_count(self) -> int: ...

    def close(self) -> None: ...


# ── psutil implementation ──────────────────────────────────────────────────


def _to_ticks(seconds: float | None) -> int:
    return int((seconds or 0.0) * TICKS_PER_SECOND)


class PsutilProvider:
    """MetricsProvider backed by psutil."""

    def __init__(self) -> None:
        self._prev_disk: tuple[int, int, float] | None = None
        self._prev_net: tuple[int, int, float] | None = None
        # Prime psutil's per-cpu delta so the first real call is meaningful
        try:
            psutil.cpu_percent(interval=None, percpu=True)
        except (OSError, RuntimeError):
            logger.debug("per-core cpu priming failed", exc_info=True)

    def system_cpu_ticks(self) -> CpuTicks | None:
        try:
            t = psutil.cpu_times()
        except (OSError, RuntimeError):
            logger.debug("cpu_times failed", exc_info=True)
            return None
        idle = t.idle + getattr(t, "iowait", 0.0)
        user = t.user + getattr(t, "nice", 0.0)
        busy_kernel = (
            t.system
            + getattr(t, "irq", 0.0)
            + getattr(t, "softirq", 0.0)
            + getattr(t, "steal", 0.0)
            + getattr(t, "interrupt", 0.0)
            + getattr(t, "dpc", 0.0)
        )
        return CpuTicks(
            idle=_to_ticks(idle),
            kernel=_to_ticks(busy_kernel + idle),
            user=_to_ticks(user),
        )

    def per_core_cpu_percent(self) -> list[float]:
        try:
            return [float(p) for p in psutil.cpu_percent(interval=None, percpu=True)]
        except (OSError, RuntimeError):
            logger.debug("per-core cpu failed", exc_info=True)
            return []

    def memory_info(self) -> MemoryInfo:
        try:
            vm = psutil.virtual_memory()
        except (OSError, RuntimeError):
            logger.debug("virtual_memory failed", exc_info=True)
            return MemoryInfo()
        return MemoryInfo(
            total=int(vm.total),
            available=int(vm.available),
            used=int(vm.used),
            percent=float(vm.percent),
        )

    def enumerate_processes(self) -> list[RawProcess]:
        procs: list[RawProcess] = []
        try:
            iterator = psutil.process_iter(
                ["pid", "ppid", "name", "num_threads", "memory_info", "cpu_times"],
            )
            for proc in iterator:
                try:
                    info = proc.info
                    mem_info = info.get("memory_info")
                    cpu_times = info.get("cpu_times")
                    procs.append(
                        RawProcess(
                            pid=int(info.get("pid", proc.pid)),
                            parent_pid=int(info.get("ppid") or 0),
                            threads=int(info.get("num_threads") or 0),
                            working_set=int(mem_info.rss) if mem_info else 0,
                            kernel_ticks=_to_ticks(cpu_times.system) if cpu_times else 0,
                            user_ticks=_to_ticks(cpu_times.user) if cpu_times else 0,
                            name=info.get("name") or "",
                        )
                    )
                except (*_PROC_ERRORS, AttributeError):
                    continue
        except (OSError, RuntimeError):
            logger.warning("process enumeration failed", exc_info=True)
        return procs

    def resolve_process_name(self, pid: int) -> str | None:
        try:
            return psutil.Process(pid).name() or None
        except _PROC_ERRORS:
            return None

    def resolve_process_user(self, pid: int) -> str | None:
        try:
            return psutil.Process(pid).username() or None
        except (*_PROC_ERRORS, KeyError):
            # KeyError: uid without a passwd entry
            return None

    def resolve_process_command_line(self, pid: int) -> str | None:
        try:
            cmdline = psutil.Process(pid).cmdline()
        except _PROC_ERRORS:
            return None
        return " ".join(cmdline) or None

    def disk_totals(self) -> DiskTotals | None:
        try:
            io = psutil.disk_io_counters()
        except (OSError, RuntimeError):
            logger.debug("disk_io_counters failed", exc_info=True)
            return None
        if io is None:
            return None
        now = time.monotonic()
        read_rate = write_rate = 0.0
        if self._prev_disk is not None and now > self._prev_disk[2]:
            dt = now - self._prev_disk[2]
            read_rate = max(0.0, (io.read_bytes - self._prev_disk[0]) / dt)
            write_rate = max(0.0, (io.write_bytes - self._prev_disk[1]) / dt)
        self._prev_disk = (io.read_bytes, io.write_bytes, now)
        return DiskTotals(read_bps=read_rate, write_bps=write_rate)

    def net_totals(self) -> NetTotals | None:
        try:
            io = psutil.net_io_counters()
        except (OSError, RuntimeError):
            logger.debug("net_io_counters failed", exc_info=True)
            return None
        if io is None:  # pyright: ignore[reportUnnecessaryComparison]
            return None
        now = time.monotonic()
        sent_rate = recv_rate = 0.0
        if self._prev_net is not None and now > self._prev_net[2]:
            dt = now - self._prev_net[2]
            sent_rate = max(0.0, (io.bytes_sent - self._prev_net[0]) / dt)
            recv_rate = max(0.0, (io.bytes_recv - self._prev_net[1]) / dt)
        self._prev_net = (io.bytes_sent, io.bytes_recv, now)
        return NetTotals(sent_bps=sent_rate, recv_bps=recv_rate)

    def uptime_seconds(self) -> float | None:
        try:
            return max(0.0, time.time() - psutil.boot_time())
        except (OSError, RuntimeError):
            return None

    def logical_core_count(self) -> int:
        try:
            return psutil.cpu_count(logical=True) or 1
        except (OSError, RuntimeError):
            return 1

    def close(self) -> None:
        self._prev_disk = None
        self._prev_net = None

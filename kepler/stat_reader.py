"""Readers for per-container cgroupfs statistics and their standard names."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from kepler.pathutil import read_kv, read_line_k_equal_to_v, read_uint64

CGROUPFS_MEMORY = "cgroupfs_memory_usage_bytes"
CGROUPFS_KERNEL_MEMORY = "cgroupfs_kernel_memory_usage_bytes"
CGROUPFS_TCP_MEMORY = "cgroupfs_tcp_memory_usage_bytes"
CGROUPFS_CPU = "cgroupfs_cpu_usage_us"
CGROUPFS_SYSTEM_CPU = "cgroupfs_system_cpu_usage_us"
CGROUPFS_USER_CPU = "cgroupfs_user_cpu_usage_us"
CGROUPFS_READ_IO = "cgroupfs_ioread_bytes"
CGROUPFS_WRITE_IO = "cgroupfs_iowrite_bytes"

MEM_USAGE_FILES = (
    "memory.usage_in_bytes",  # hierarchy: system + kernel
    "memory.kmem.usage_in_bytes",  # hierarchy: kernel
    "memory.kmem.tcp.usage_in_bytes",  # hierarchy: tcp buff
    "memory.current",  # top path memory stat
)

CPU_USAGE_FILES = (
    "cpuacct.usage",
    "cpuacct.usage_sys",
    "cpuacct.usage_user",
    "cpu.stat",
)

IO_USAGE_FILES = ("io.stat",)

Converter = Callable[[Mapping[str, Any], str], Any]


class StatReader(Protocol):
    def read(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class MemoryStatReader:
    """Reads the memory usage files found in a cgroup directory."""

    path: str

    def read(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for usage_file in MEM_USAGE_FILES:
            try:
                values[usage_file] = read_uint64(os.path.join(self.path, usage_file))
            except (OSError, ValueError):
                continue
        return values


@dataclass(frozen=True)
class CPUStatReader:
    """Reads CPU usage, preferring cpu.stat when it carries user_usec."""

    path: str

    def read(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for usage_file in CPU_USAGE_FILES:
            file_name = os.path.join(self.path, usage_file)
            if usage_file == "cpu.stat":
                try:
                    kv = read_kv(file_name)
                except OSError:
                    continue
                if "user_usec" in kv:
                    return dict(kv)
            else:
                try:
                    values[usage_file] = read_uint64(file_name)
                except (OSError, ValueError):
                    continue
        return values


@dataclass(frozen=True)
class IOStatReader:
    """Reads the io.stat totals of a cgroup directory."""

    path: str

    def read(self) -> dict[str, Any]:
        for usage_file in IO_USAGE_FILES:
            try:
                return dict(read_line_k_equal_to_v(os.path.join(self.path, usage_file)))
            except OSError:
                continue
        return {}


def default_converter(stats: Mapping[str, Any], key: str) -> Any:
    """Return the raw value."""
    return stats[key]


def nano_to_micro_converter(stats: Mapping[str, Any], key: str) -> int:
    """Convert nanoseconds to microseconds."""
    return stats[key] // 1000


@dataclass(frozen=True)
class CgroupFSReadMetric:
    """A raw cgroupfs entry name and how to turn it into a standard value."""

    name: str
    converter: Converter


STANDARD_METRIC_NAME: dict[str, tuple[CgroupFSReadMetric, ...]] = {
    CGROUPFS_MEMORY: (
        CgroupFSReadMetric("memory.current", default_converter),
        CgroupFSReadMetric("memory.usage_in_bytes", default_converter),
    ),
    CGROUPFS_KERNEL_MEMORY: (
        CgroupFSReadMetric("memory.kmem.usage_in_bytes", default_converter),
    ),
    CGROUPFS_TCP_MEMORY: (
        CgroupFSReadMetric("memory.kmem.tcp.usage_in_bytes", default_converter),
    ),
    CGROUPFS_CPU: (
        CgroupFSReadMetric("cpuacct.usage", nano_to_micro_converter),
        CgroupFSReadMetric("usage_usec", default_converter),
    ),
    CGROUPFS_SYSTEM_CPU: (
        CgroupFSReadMetric("cpuacct.usage_sys", nano_to_micro_converter),
        CgroupFSReadMetric("system_usec", default_converter),
    ),
    CGROUPFS_USER_CPU: (
        CgroupFSReadMetric("cpuacct.usage_user", nano_to_micro_converter),
        CgroupFSReadMetric("user_usec", default_converter),
    ),
    CGROUPFS_READ_IO: (CgroupFSReadMetric("rbytes", default_converter),),
    CGROUPFS_WRITE_IO: (CgroupFSReadMetric("wbytes", default_converter),),
}

EXPORT_METRICS = frozenset(
    {CGROUPFS_CPU, CGROUPFS_MEMORY, CGROUPFS_SYSTEM_CPU, CGROUPFS_USER_CPU}
)


def convert_to_standard(stats: Mapping[str, Any]) -> dict[str, Any]:
    """Map raw cgroupfs stats to standard metric names, first matching source wins."""
    values: dict[str, Any] = {}
    for key, read_metrics in STANDARD_METRIC_NAME.items():
        metric = next((m for m in read_metrics if m.name in stats), None)
        if metric is not None:
            values[key] = metric.converter(stats, metric.name)
    return values
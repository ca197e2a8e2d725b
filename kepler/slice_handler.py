"""Locates container cgroup directories and collects their standard statistics."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from kepler.pathutil import search_by_container_id, search_by_suffix
from kepler.stat_reader import (
    EXPORT_METRICS,
    CPUStatReader,
    IOStatReader,
    MemoryStatReader,
    StatReader,
    convert_to_standard,
)

logger = logging.getLogger(__name__)

BASE_CGROUP_PATH = "/sys/fs/cgroup"
KUBEPOD_SLICE = "kubepods.slice"
SYSTEM_SLICE = "system.slice"
SCOPE_SUFFIX = ".scope"


def cgroup_slice_path(base_path: str, slice_name: str) -> str:
    """Join a cgroup base path and a slice name."""
    return os.path.join(base_path, slice_name)


@dataclass
class SliceHandler:
    """Top-level cgroup paths and the stat readers set up for each container."""

    cpu_top_path: str
    memory_top_path: str
    io_top_path: str
    stat_readers: dict[str, list[StatReader]] = field(default_factory=dict)

    def get_stats(self, container_id: str) -> dict[str, Any]:
        """Merge the raw values of every reader registered for the container."""
        values: dict[str, Any] = {}
        for reader in self.stat_readers.get(container_id, ()):
            values.update(reader.read())
        return values

    def try_init_stat_readers(self, container_id: str) -> None:
        """Register readers for a container unless it already has some."""
        if container_id in self.stat_readers:
            return
        cpu_path = search_by_container_id(self.cpu_top_path, container_id)
        memory_path = cpu_path.replace(self.cpu_top_path, self.memory_top_path, 1)
        io_path = cpu_path.replace(self.cpu_top_path, self.io_top_path, 1)
        self.stat_readers[container_id] = [
            CPUStatReader(cpu_path),
            MemoryStatReader(memory_path),
            IOStatReader(io_path),
        ]

    def get_standard_stat(self, container_id: str) -> dict[str, Any]:
        """Return the container's stats under standard metric names."""
        return convert_to_standard(self.get_stats(container_id))

    def find_example_container_id(self) -> str:
        """Return the id of some container scope below the CPU top path, or ''."""
        scope_path = search_by_suffix(self.cpu_top_path, SCOPE_SUFFIX)
        if not scope_path:
            logger.info(
                "Not able to find any valid .scope file in %s, "
                "this likely cause all cgroup metrics to be 0",
                self.cpu_top_path,
            )
            return ""
        file_name = scope_path.split("/")[-1]
        scope_name = file_name.split(SCOPE_SUFFIX)[0]
        return scope_name.split("-")[-1]

    def get_available_cgroup_metrics(self) -> list[str]:
        """List the standard metrics readable for an example container."""
        container_id = self.find_example_container_id()
        self.try_init_stat_readers(container_id)
        return list(self.get_standard_stat(container_id))


def _uniform(path: str) -> SliceHandler:
    return SliceHandler(cpu_top_path=path, memory_top_path=path, io_top_path=path)


def init_slice_handler(base_cgroup_path: str = BASE_CGROUP_PATH) -> SliceHandler:
    """Pick top paths for cgroup v2 slices, v1 hierarchies, or plain v1 controllers."""
    kubepod_path = cgroup_slice_path(base_cgroup_path, KUBEPOD_SLICE)
    system_path = cgroup_slice_path(base_cgroup_path, SYSTEM_SLICE)
    if os.path.exists(kubepod_path):
        handler = _uniform(kubepod_path)
    elif os.path.exists(system_path):
        handler = _uniform(system_path)
    else:
        cpu_base = os.path.join(base_cgroup_path, "cpu")
        memory_base = os.path.join(base_cgroup_path, "memory")
        io_base = os.path.join(base_cgroup_path, "blkio")
        for slice_name in (KUBEPOD_SLICE, SYSTEM_SLICE):
            if os.path.exists(cgroup_slice_path(cpu_base, slice_name)):
                handler = SliceHandler(
                    cpu_top_path=cgroup_slice_path(cpu_base, slice_name),
                    memory_top_path=cgroup_slice_path(memory_base, slice_name),
                    io_top_path=cgroup_slice_path(io_base, slice_name),
                )
                break
        else:
            handler = SliceHandler(
                cpu_top_path=cpu_base,
                memory_top_path=memory_base,
                io_top_path=io_base,
            )
    logger.debug("init_slice_handler: %s", handler)
    return handler


def has_cgroup_export_metric(available_metrics: Iterable[str]) -> bool:
    """Tell whether every exported cgroup metric is among the available ones."""
    expected = len(EXPORT_METRICS)
    found = 0
    for metric in available_metrics:
        if metric in EXPORT_METRICS:
            found += 1
        if found >= expected:
            return True
    return False
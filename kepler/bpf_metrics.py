"""Per-process records read from the eBPF process table, and pruning of stale entries."""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable, Collection, Iterable, MutableMapping
from dataclasses import dataclass
from typing import Any

from kepler.attacher import CACHE_MISS_LABEL, CPU_CYCLE_LABEL, CPU_INSTRUCTION_LABEL

logger = logging.getLogger(__name__)

MAX_IRQ = 10
COMMAND_LENGTH = 16
_LAYOUT = f"6Q{MAX_IRQ}H{COMMAND_LENGTH}s"
_PREFIX = {"little": "<", "big": ">"}


@dataclass(frozen=True)
class ProcessBPFMetrics:
    """One process entry: ids, CPU time, hardware counters, softirq counts, command."""

    cgroup_id: int
    pid: int
    process_run_time: int
    cpu_cycles: int
    cpu_instr: int
    cache_misses: int
    vec_nr: tuple[int, ...]
    command: str

    @classmethod
    def size(cls) -> int:
        """Return the size in bytes of one encoded entry."""
        return struct.calcsize("<" + _LAYOUT)

    @classmethod
    def from_bytes(cls, data: bytes, byteorder: str = "little") -> ProcessBPFMetrics:
        """Decode an entry; trailing bytes are ignored, short data raises ValueError."""
        try:
            layout = _PREFIX[byteorder] + _LAYOUT
        except KeyError:
            raise ValueError(f"unknown byte order: {byteorder!r}") from None
        size = struct.calcsize(layout)
        if len(data) < size:
            raise ValueError(f"entry needs {size} bytes, got {len(data)}")
        fields = struct.unpack(layout, bytes(data[:size]))
        counters = fields[:6]
        vec_nr = tuple(fields[6 : 6 + MAX_IRQ])
        raw_command = fields[6 + MAX_IRQ].split(b"\0", 1)[0]
        return cls(
            *counters,
            vec_nr=vec_nr,
            command=raw_command.decode("utf-8", errors="replace"),
        )

    def counter_value(self, counter_key: str) -> int:
        """Return the hardware counter for a label, 0 for counters not recorded."""
        return {
            CPU_CYCLE_LABEL: self.cpu_cycles,
            CPU_INSTRUCTION_LABEL: self.cpu_instr,
            CACHE_MISS_LABEL: self.cache_misses,
        }.get(counter_key, 0)


def prune_inactive_containers(
    containers: MutableMapping[str, Any],
    found: Collection[str],
    system_process_name: str,
    max_inactive: int,
    alive_lookup: Callable[[], Iterable[str]],
) -> list[str]:
    """Drop containers no pod reports once too many went unseen; return the removed ids."""
    if len(containers) - len(found) <= max_inactive:
        return []
    try:
        alive = set(alive_lookup())
    except Exception as exc:  # listing pods is best effort; keep everything on failure
        logger.debug("failed to list alive containers: %s", exc)
        return []
    removed = [
        cid for cid in containers if cid != system_process_name and cid not in alive
    ]
    for cid in removed:
        del containers[cid]
    return removed


def prune_inactive_processes(
    processes: MutableMapping[int, Any],
    found: Collection[int],
    max_inactive: int,
) -> list[int]:
    """Drop processes not seen this round once too many went unseen; return removed pids."""
    if len(processes) - len(found) <= max_inactive:
        return []
    removed = [pid for pid in processes if pid not in found]
    for pid in removed:
        del processes[pid]
    return removed
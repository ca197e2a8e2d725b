"""Hardware counter and eBPF table definitions used by the collector."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

PROGRAM = "bpfassets/perf_event/perf_event.c"

CPU_CYCLE_LABEL = "cpu_cycles"
CPU_REF_CYCLE_LABEL = "cpu_ref_cycles"
CPU_INSTRUCTION_LABEL = "cpu_instr"
CACHE_MISS_LABEL = "cache_miss"

CPU_TIME = "bpf_cpu_time_us"
IRQ_NET_TX_LABEL = "bpf_net_tx_irq"
IRQ_NET_RX_LABEL = "bpf_net_rx_irq"
IRQ_BLOCK_LABEL = "bpf_block_irq"

# softirq vector numbers, per the irq:softirq_entry tracepoint format
IRQ_NET_TX = 2
IRQ_NET_RX = 3
IRQ_BLOCK = 4

PERF_TYPE_HARDWARE = 0
PERF_COUNT_HW_CPU_CYCLES = 0
PERF_COUNT_HW_INSTRUCTIONS = 1
PERF_COUNT_HW_CACHE_MISSES = 3
PERF_COUNT_HW_REF_CPU_CYCLES = 9

BPF_PERF_ARRAY_SUFFIX = "_hc_reader"


class AttachError(Exception):
    """The eBPF program could not be loaded or attached."""


@dataclass
class PerfCounter:
    """A perf event type/config pair and whether it could be opened."""

    ev_type: int
    ev_config: int
    enabled: bool = True


def default_counters() -> dict[str, PerfCounter]:
    """Return the hardware counters the eBPF program reads, all enabled."""
    return {
        CPU_CYCLE_LABEL: PerfCounter(PERF_TYPE_HARDWARE, PERF_COUNT_HW_CPU_CYCLES),
        CPU_REF_CYCLE_LABEL: PerfCounter(
            PERF_TYPE_HARDWARE, PERF_COUNT_HW_REF_CPU_CYCLES
        ),
        CPU_INSTRUCTION_LABEL: PerfCounter(
            PERF_TYPE_HARDWARE, PERF_COUNT_HW_INSTRUCTIONS
        ),
        CACHE_MISS_LABEL: PerfCounter(PERF_TYPE_HARDWARE, PERF_COUNT_HW_CACHE_MISSES),
    }


class Table:
    """A key/leaf table of raw byte entries, as exposed by an eBPF map."""

    def __init__(self) -> None:
        self._entries: dict[bytes, bytes] = {}

    def update(self, key: bytes, leaf: bytes) -> None:
        """Insert or replace the leaf stored under key."""
        self._entries[bytes(key)] = bytes(leaf)

    def iter(self) -> Iterator[tuple[bytes, bytes]]:
        """Yield (key, leaf) pairs of a snapshot of the table."""
        yield from list(self._entries.items())

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        return self.iter()

    def __len__(self) -> int:
        return len(self._entries)

    def delete_all(self) -> None:
        """Remove every entry."""
        self._entries.clear()


@dataclass
class BpfModuleTables:
    """The process table and CPU frequency table of a loaded module."""

    table: Table = field(default_factory=Table)
    cpu_freq_table: Table = field(default_factory=Table)


def attach_bpf_assets() -> BpfModuleTables:
    """Load and attach the eBPF program; unavailable in this build."""
    raise AttachError(f"failed to attach {PROGRAM}: eBPF loading is not supported")


def detach_bpf_modules(bpf_modules: BpfModuleTables) -> None:
    """Release a module's tables."""
    bpf_modules.table.delete_all()
    bpf_modules.cpu_freq_table.delete_all()


def enabled_hw_counters(counters: Mapping[str, PerfCounter], expose: bool) -> list[str]:
    """List the names of enabled hardware counters, or none when not exposed."""
    logger.debug("hardware counter metrics config %s", expose)
    if not expose:
        logger.debug("hardware counter metrics not enabled")
        return []
    return [name for name, counter in counters.items() if counter.enabled]


def enabled_bpf_counters(expose_irq: bool) -> list[str]:
    """List eBPF metrics: CPU time, plus the IRQ counters when exposed."""
    metrics = [CPU_TIME]
    logger.debug("irq counter metrics config %s", expose_irq)
    if not expose_irq:
        logger.debug("irq counter metrics not enabled")
        return metrics
    metrics.extend((IRQ_NET_TX_LABEL, IRQ_NET_RX_LABEL, IRQ_BLOCK_LABEL))
    return metrics
"""Disk I/O totals read from cgroup io.stat files."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from kepler.resolve import DEFAULT_CGROUP_ROOT, CgroupError

IO_STAT_FILE = "io.stat"
# e.g. "8:16 rbytes=58032128 wbytes=0 rios=120 wios=0 dbytes=0 dios=0"
_IO_STAT = re.compile(r"(\d+):(\d+).rbytes=(\d+).wbytes=(\d+)")
_UINT64_MAX = 2**64 - 1
_RUNTIMES = ("crio", "docker", "containerd")


@dataclass(frozen=True)
class IOStat:
    """Bytes read and written, summed over the physical disks counted."""

    read_bytes: int = 0
    write_bytes: int = 0
    disks: int = 0


def is_virtual_disk(major: str) -> bool:
    """Tell whether a device major number belongs to a virtual (device-mapper) disk."""
    return major == "253"


def _to_uint64(text: str) -> int | None:
    value = int(text.strip())
    return value if value <= _UINT64_MAX else None


def read_io_stat(path: str) -> IOStat:
    """Sum read and write bytes of every non-virtual disk in an io.stat file."""
    read_bytes = write_bytes = disks = 0
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            match = _IO_STAT.search(line)
            if match is None:
                continue
            major, _minor, rbytes, wbytes = match.groups()
            if is_virtual_disk(major.strip()):
                continue
            disks += 1
            if (value := _to_uint64(rbytes)) is not None:
                read_bytes += value
            if (value := _to_uint64(wbytes)) is not None:
                write_bytes += value
    return IOStat(read_bytes, write_bytes, disks)


def read_all_cgroup_io_stat(cgroup_root: str = DEFAULT_CGROUP_ROOT) -> IOStat:
    """Read the host-wide io.stat at the cgroup root."""
    return read_io_stat(os.path.join(cgroup_root, IO_STAT_FILE))


def read_cgroup_io_stat(path: str) -> IOStat:
    """Read io.stat of a container cgroup directory managed by a known runtime."""
    if any(runtime in path for runtime in _RUNTIMES):
        return read_io_stat(os.path.join(path, IO_STAT_FILE))
    raise CgroupError("no cgroup path found")
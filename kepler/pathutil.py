"""Helpers for walking cgroup trees and reading cgroupfs value files."""

from __future__ import annotations

import os
from collections.abc import Iterator

_UINT64_MAX = 2**64 - 1


def _parse_uint64(text: str) -> int:
    """Parse an unsigned 64-bit decimal integer, rejecting signs and overflow."""
    if not text or not text.isascii() or not text.isdigit():
        raise ValueError(f"invalid unsigned integer: {text!r}")
    value = int(text)
    if value > _UINT64_MAX:
        raise ValueError(f"value out of range for uint64: {text!r}")
    return value


def _descend(path: str) -> Iterator[tuple[str, str]]:
    try:
        with os.scandir(path) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError:
        return
    for entry in entries:
        child = os.path.normpath(os.path.join(path, entry.name))
        yield entry.name, child
        if entry.is_dir(follow_symlinks=False):
            yield from _descend(child)


def _walk(top_folder: str) -> Iterator[tuple[str, str]]:
    """Yield (name, path) pairs depth-first in lexical order, root first."""
    if not os.path.lexists(top_folder):
        return
    yield os.path.basename(os.path.normpath(top_folder)), top_folder
    if os.path.isdir(top_folder) and not os.path.islink(top_folder):
        yield from _descend(top_folder)


def search_by_container_id(top_folder: str, container_id: str) -> str:
    """Return the first path under top_folder whose name contains container_id, or ''."""
    return next(
        (path for name, path in _walk(top_folder) if container_id in name), ""
    )


def search_by_suffix(top_folder: str, suffix: str) -> str:
    """Return the first path under top_folder that ends with suffix, or ''."""
    return next(
        (path for _, path in _walk(top_folder) if path.endswith(suffix)), ""
    )


def read_uint64(file_name: str) -> int:
    """Read a file holding a single unsigned integer."""
    with open(file_name, encoding="utf-8") as handle:
        return _parse_uint64(handle.read().strip())


def read_kv(file_name: str) -> dict[str, int]:
    """Read 'key value' lines; lines not made of exactly a key and an integer are skipped."""
    values: dict[str, int] = {}
    with open(file_name, encoding="utf-8") as handle:
        for line in handle:
            fields = line.split()
            if len(fields) != 2:
                continue
            try:
                values[fields[0]] = _parse_uint64(fields[1])
            except ValueError:
                continue
    return values


def read_line_k_equal_to_v(file_name: str) -> dict[str, int]:
    """Sum 'key=value' fields over all lines, skipping device-mapper (253:x) lines."""
    values: dict[str, int] = {}
    with open(file_name, encoding="utf-8") as handle:
        for line in handle:
            fields = line.split()
            if not fields or "253:" in fields[0]:
                continue
            for field in fields:
                if "=" not in field:
                    continue
                parts = field.split("=")
                key, raw = parts[0], parts[1]
                values.setdefault(key, 0)
                try:
                    values[key] += _parse_uint64(raw)
                except ValueError:
                    continue
    return values
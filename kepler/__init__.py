"""Cgroup statistics readers, container resolution, eBPF record decoding and an HTTP exporter."""

__version__ = "0.1.0"
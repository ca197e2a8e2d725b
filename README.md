# kepler

Reads per-container resource usage from the Linux cgroup filesystem, maps
processes and cgroup ids to Kubernetes containers, decodes per-process
records of an eBPF process table, and runs a small HTTP exporter.

## Installation

    pip install .

For running the tests:

    pip install ".[test]"
    pytest

## Running the exporter

    kepler --address 0.0.0.0:8888 --metrics-path /metrics

The server (`kepler.exporter.main`) answers on:

- `/` – an HTML index page linking to the metrics path
- `/healthz` – returns `ok`
- the metrics path – text exposition output

Other options: `--enable-gpu`, `--enable-cgroup-id`,
`--expose-hardware-counter-metrics`, `--enable-msr` (booleans, given alone
or with a value such as `true`/`false`), `--cpuprofile FILE` and
`--memprofile FILE` (write a sampled stack profile or a `tracemalloc`
snapshot after `--profile-duration` seconds, default 60). Each option can
also be written with a single dash. Run `kepler --help` for the full list.

`kepler.exporter` also offers `parse_args`, `index_page`, `make_handler` and
`make_server(options, metrics_provider)`, so the server can be embedded with
your own function that returns the metrics text.

## Library use

Read cgroup statistics for a container:

```python
from kepler.slice_handler import init_slice_handler

handler = init_slice_handler("/sys/fs/cgroup")
container_id = handler.find_example_container_id()
handler.try_init_stat_readers(container_id)
print(handler.get_standard_stat(container_id))
```

`init_slice_handler` picks the `kubepods.slice` or `system.slice` directory
(cgroup v2), or the `cpu`, `memory` and `blkio` controller hierarchies
(cgroup v1). Standard metric names include `cgroupfs_cpu_usage_us`,
`cgroupfs_memory_usage_bytes`, `cgroupfs_ioread_bytes` and others;
`has_cgroup_export_metric` tells whether all exported ones are present.

Sum the disk counters of an `io.stat` file (device-mapper disks, major
253, are skipped):

```python
from kepler.iostat import read_io_stat

stat = read_io_stat("/sys/fs/cgroup/io.stat")
print(stat.read_bytes, stat.write_bytes, stat.disks)
```

Extract a container id from a cgroup path:

```python
from kepler.resolve import extract_pod_container_id_from_path

extract_pod_container_id_from_path(
    "0::/kubepods.slice/kubepods-pod1.slice/crio-abc123.scope", 2
)  # "abc123"
```

`kepler.resolve.ContainerResolver` maps pids and cgroup ids to
`ContainerInfo` records. It takes a pod lister: any object with a
`list_pods()` method returning `Pod` objects. Failed lookups raise
`CgroupError`, whose `fallback` attribute holds the value the lookup falls
back to (for example the system-process container).

`kepler.bpf_metrics.ProcessBPFMetrics.from_bytes` decodes one raw entry of
the process table; `prune_inactive_containers` and
`prune_inactive_processes` drop entries that went unseen.
`kepler.attacher.Table` is an in-memory key/leaf table of raw bytes.

The lower-level readers in `kepler.pathutil` (`read_uint64`, `read_kv`,
`read_line_k_equal_to_v`, `search_by_suffix`, `search_by_container_id`) and
the converters in `kepler.stat_reader` (`convert_to_standard`) can be used
on their own.

## What this package does not do

- It does not load or attach eBPF programs: `attach_bpf_assets` always
  raises `AttachError`, and nothing fills the process table from the kernel.
- It does not estimate energy or read power sensors, GPUs or MSRs. The
  `--enable-gpu` and `--enable-msr` options are accepted but only logged.
- The exporter's metrics path serves only a `kepler_exporter_build_info`
  line; collected container statistics are not published by the command.
- It does not talk to the kubelet or the Kubernetes API; pod lists come
  from the pod lister you pass to `ContainerResolver`.
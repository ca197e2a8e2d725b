"""HTTP exporter serving energy metrics, a health probe and an index page."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
import tracemalloc
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

VERSION = "0.0.0"
FINISHING_MSG = "Exiting..."
STARTED_MSG = "Started Kepler in %s"
EXIT_CODE = 10
METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
_SAMPLE_INTERVAL = 0.01

MetricsProvider = Callable[[], str]

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


@dataclass(frozen=True)
class ExporterOptions:
    """Command-line settings of the exporter."""

    address: str = "0.0.0.0:8888"
    metrics_path: str = "/metrics"
    enable_gpu: bool = False
    enable_cgroup_id: bool = True
    expose_hardware_counter_metrics: bool = True
    cpu_profile: str = ""
    mem_profile: str = ""
    profile_duration: int = 60
    enable_msr: bool = False


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {text!r}")


def _build_parser() -> argparse.ArgumentParser:
    defaults = ExporterOptions()
    parser = argparse.ArgumentParser(prog="kepler", description="Energy stats exporter")

    def option(name: str, **kwargs) -> None:
        parser.add_argument(f"-{name}", f"--{name}", **kwargs)

    def flag(name: str, default: bool, help_text: str) -> None:
        option(name, type=_parse_bool, nargs="?", const=True, default=default,
               metavar="BOOL", help=help_text)

    option("address", default=defaults.address, help="bind address")
    option("metrics-path", default=defaults.metrics_path, help="metrics path")
    flag("enable-gpu", defaults.enable_gpu,
         "whether enable gpu (need to have libnvidia-ml installed)")
    flag("enable-cgroup-id", defaults.enable_cgroup_id,
         "whether enable eBPF to collect cgroup id")
    flag("expose-hardware-counter-metrics", defaults.expose_hardware_counter_metrics,
         "whether expose hardware counter as prometheus metrics")
    option("cpuprofile", default=defaults.cpu_profile, help="dump cpu profile to a file")
    option("memprofile", default=defaults.mem_profile, help="dump mem profile to a file")
    option("profile-duration", type=int, default=defaults.profile_duration,
           help="duration in seconds")
    flag("enable-msr", defaults.enable_msr,
         "whether MSR is allowed to obtain energy data")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> ExporterOptions:
    """Parse command-line arguments into options."""
    ns = _build_parser().parse_args(argv)
    return ExporterOptions(
        address=ns.address,
        metrics_path=ns.metrics_path,
        enable_gpu=ns.enable_gpu,
        enable_cgroup_id=ns.enable_cgroup_id,
        expose_hardware_counter_metrics=ns.expose_hardware_counter_metrics,
        cpu_profile=ns.cpuprofile,
        mem_profile=ns.memprofile,
        profile_duration=ns.profile_duration,
        enable_msr=ns.enable_msr,
    )


def index_page(metrics_path: str) -> str:
    """Return the HTML landing page linking to the metrics path."""
    return (
        "<html>\n"
        "<head><title>Energy Stats Exporter</title></head>\n"
        "<body>\n"
        "<h1>Energy Stats Exporter</h1>\n"
        f'<p><a href="{metrics_path}">Metrics</a></p>\n'
        "</body>\n"
        "</html>"
    )


def make_handler(
    metrics_path: str, metrics_provider: MetricsProvider
) -> type[BaseHTTPRequestHandler]:
    """Build a request handler serving metrics, /healthz and the index page."""

    class ExporterHandler(BaseHTTPRequestHandler):
        def _send(self, body: bytes, content_type: str) -> None:
            self.send_response(HTTPStatus.OK)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(body)

        def do_GET(self) -> None:  # noqa: N802
            path = urlsplit(self.path).path
            if path == metrics_path:
                try:
                    text = metrics_provider()
                except Exception as exc:
                    logger.error("failed to gather metrics: %s", exc)
                    self.send_error(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))
                    return
                self._send(text.encode("utf-8"), METRICS_CONTENT_TYPE)
            elif path == "/healthz":
                self._send(b"ok", "text/plain; charset=utf-8")
            else:
                self._send(index_page(metrics_path).encode("utf-8"),
                           "text/html; charset=utf-8")

        do_HEAD = do_GET  # noqa: N815

        def log_message(self, format: str, *args) -> None:  # noqa: A002
            logger.debug("%s - " + format, self.address_string(), *args)

    return ExporterHandler


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid bind address: {address!r}")
    port_number = int(port)
    if port_number > 65535:
        raise ValueError(f"invalid port in bind address: {address!r}")
    return host.strip("[]"), port_number


def make_server(
    options: ExporterOptions, metrics_provider: MetricsProvider
) -> ThreadingHTTPServer:
    """Create (and bind) the HTTP server described by the options."""
    host, port = _split_address(options.address)
    handler = make_handler(options.metrics_path, metrics_provider)
    return ThreadingHTTPServer((host, port), handler)


def default_metrics() -> str:
    """Render the exporter build information in the text exposition format."""
    return (
        "# HELP kepler_exporter_build_info A metric with a constant '1' value "
        "labeled by version.\n"
        "# TYPE kepler_exporter_build_info gauge\n"
        f'kepler_exporter_build_info{{version="{VERSION}"}} 1\n'
    )


def _sample_cpu(output_path: str, duration: float) -> None:
    """Sample the stacks of all other threads for ``duration`` seconds."""
    own_id = threading.get_ident()
    samples: Counter[tuple[str, int, str]] = Counter()
    deadline = time.monotonic() + duration
    while time.monotonic() < deadline:
        for thread_id, frame in sys._current_frames().items():
            if thread_id == own_id:
                continue
            code = frame.f_code
            samples[(code.co_filename, frame.f_lineno, code.co_name)] += 1
        time.sleep(_SAMPLE_INTERVAL)
    with open(output_path, "w", encoding="utf-8") as handle:
        for (filename, line, name), count in samples.most_common():
            handle.write(f"{count}\t{filename}:{line}({name})\n")
    logger.info("Stopped CPU profiling")


def _start_profiling(options: ExporterOptions) -> None:
    if options.cpu_profile:
        logger.info("Started CPU profiling")
        sampler = threading.Thread(
            target=_sample_cpu,
            args=(options.cpu_profile, options.profile_duration),
            daemon=True,
        )
        sampler.start()
    if options.mem_profile:
        tracemalloc.start()
        logger.info("Started Memory profiling")

        def stop_mem() -> None:
            tracemalloc.take_snapshot().dump(options.mem_profile)
            tracemalloc.stop()
            logger.info("Stopped Memory profiling")

        timer = threading.Timer(options.profile_duration, stop_mem)
        timer.daemon = True
        timer.start()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the exporter until interrupted; return the process exit code."""
    start = time.monotonic()
    logging.basicConfig(level=logging.INFO)
    options = parse_args(argv)
    _start_profiling(options)
    logger.info("Kepler running on version: %s", VERSION)
    logger.info("configuration: %s", options)

    try:
        server = make_server(options, default_metrics)
    except (OSError, ValueError) as exc:
        logger.critical("failed to bind on %s: %s", options.address, exc)
        return 1

    logger.info(STARTED_MSG, f"{time.monotonic() - start:.6f}s")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        logger.info(FINISHING_MSG)
    return EXIT_CODE
"""Prometheus exposition of the metric store.

PULL-BASED DESIGN:
- StoreCollector turns a store snapshot into metric families on every scrape
- The snapshot is taken first and serialized afterwards, so no store lock is
  held while a response is written
- MetricsServer serves /metrics plus /ready and /health from daemon threads,
  independently of the sampling loop
"""

from __future__ import annotations

import socket
import threading
from collections.abc import Iterable
from socketserver import ThreadingMixIn
from typing import TYPE_CHECKING
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

import structlog
from prometheus_client import CollectorRegistry, make_wsgi_app
from prometheus_client.core import GaugeMetricFamily, InfoMetricFamily, Metric
from prometheus_client.registry import Collector

from cpu_energy_exporter.config import parse_address
from cpu_energy_exporter.errors import ExporterBindError

if TYPE_CHECKING:
    from cpu_energy_exporter.clock import ClockRate
    from cpu_energy_exporter.energy import PowerModel
    from cpu_energy_exporter.hostinfo import HostInfo
    from cpu_energy_exporter.store import MetricStore

log = structlog.get_logger()

PROCESS_LABELS = ["hostname", "process_name", "cmdline", "pid"]
READY_PATHS = frozenset({"/ready", "/health"})


class StoreCollector(Collector):
    """Custom collector exposing per-process gauges and static info records.

    CPU time and energy are cumulative per process but exported as gauges:
    the stored value is the latest absolute reading, not a sum of deltas.
    """

    def __init__(
        self,
        store: MetricStore,
        host_info: HostInfo,
        power_model: PowerModel,
        clock_rate: ClockRate,
    ) -> None:
        self.store = store
        self.host_info = host_info
        self.power_model = power_model
        self.clock_rate = clock_rate

    def _system_info(self) -> InfoMetricFamily:
        host = self.host_info
        return InfoMetricFamily(
            "system",
            "Host OS information",
            value={
                "hostname": host.hostname,
                "os": host.os,
                "os_version": host.os_version,
                "kernel_version": host.kernel_version,
                "jiffy_in_seconds": str(self.clock_rate.seconds_per_tick),
            },
        )

    def _cpu_info(self) -> InfoMetricFamily:
        host = self.host_info
        power = self.power_model
        return InfoMetricFamily(
            "cpu",
            "Host CPU information",
            value={
                "hostname": host.hostname,
                "vendor": host.cpu_vendor,
                "model": host.cpu_model,
                "average_die_power": str(power.average_die_power),
                "average_core_power": str(power.average_core_power),
                "num_physical_cores": str(power.num_physical_cores),
            },
        )

    def collect(self) -> Iterable[Metric]:
        snapshot = self.store.snapshot_for_export()
        hostname = self.host_info.hostname

        cpu_time = GaugeMetricFamily(
            "cpu_time_seconds",
            "Total CPU time spent executing process",
            labels=PROCESS_LABELS,
            unit="seconds",
        )
        energy = GaugeMetricFamily(
            "energy_watt_hours",
            "Total energy spent executing process",
            labels=PROCESS_LABELS,
            unit="watt_hours",
        )
        for identity, sample in snapshot.items():
            labels = [hostname, identity.process_name, identity.cmdline, str(identity.pid)]
            cpu_time.add_metric(labels, sample.cpu_seconds)
            energy.add_metric(labels, sample.energy_wh)

        yield self._system_info()
        yield self._cpu_info()
        yield cpu_time
        yield energy


def build_registry(collector: StoreCollector) -> CollectorRegistry:
    """Create a registry holding only the store collector."""
    registry = CollectorRegistry(auto_describe=False)
    registry.register(collector)
    return registry


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """WSGI server handling each scrape in its own daemon thread."""

    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    """Request handler that routes access logs to debug instead of stderr."""

    def log_message(self, format: str, *args) -> None:
        log.debug("http_request", client=self.address_string(), request=format % args)


class MetricsServer:
    """HTTP endpoint serving the registry and an always-ready readiness probe."""

    def __init__(self, address: str, registry: CollectorRegistry) -> None:
        self.address = address
        self.registry = registry
        self._metrics_app = make_wsgi_app(registry)
        self._server: WSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        """Check if the serving thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def port(self) -> int:
        """Port actually bound (useful when configured with port 0)."""
        if self._server is None:
            raise RuntimeError("MetricsServer is not started")
        return self._server.server_port

    def _app(self, environ, start_response):
        path = environ.get("PATH_INFO") or "/"
        if path in READY_PATHS:
            start_response("200 OK", [("Content-Type", "text/plain; charset=utf-8")])
            return [b"ready\n"]
        if path == "/metrics":
            return self._metrics_app(environ, start_response)
        start_response("404 Not Found", [("Content-Type", "text/plain; charset=utf-8")])
        return [b"not found\n"]

    def start(self) -> None:
        """Bind the address and start serving in a daemon thread.

        Raises:
            ExporterBindError: If the address cannot be parsed, resolved, or bound.
        """
        if self.is_running:
            return

        try:
            host, port = parse_address(self.address)
            family = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)[0][0]
            server_class = type(
                "MetricsWSGIServer", (_ThreadingWSGIServer,), {"address_family": family}
            )
            self._server = make_server(
                host, port, self._app, server_class=server_class, handler_class=_QuietHandler
            )
        except (OSError, ValueError) as e:
            raise ExporterBindError(f"Cannot bind metrics address {self.address}: {e}") from e

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="MetricsServer",
        )
        self._thread.start()
        log.info("exporter_listening", address=self.address, port=self.port)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop serving and release the socket."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        log.info("exporter_stopped")

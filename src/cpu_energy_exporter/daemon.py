"""Sampling daemon for cpu-energy-exporter."""

import asyncio
import signal
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import structlog

from cpu_energy_exporter.clock import ClockRate
from cpu_energy_exporter.collector import ProcessCollector, ProcessTicks
from cpu_energy_exporter.config import Config
from cpu_energy_exporter.energy import PowerModel, convert
from cpu_energy_exporter.errors import StartupError
from cpu_energy_exporter.exporter import MetricsServer, StoreCollector, build_registry
from cpu_energy_exporter.hostinfo import HostInfo
from cpu_energy_exporter.store import MetricStore

log = structlog.get_logger()


def record_readings(
    store: MetricStore,
    readings: list[ProcessTicks],
    clock_rate: ClockRate,
    power_model: PowerModel,
) -> int:
    """Convert one pass of tick readings and overwrite their store entries.

    Failed reads carry zero ticks and are stored as such.

    Returns:
        Number of processes whose accounting record could not be read.
    """
    seconds_per_tick = clock_rate.seconds_per_tick
    average_core_power = power_model.average_core_power
    failed = 0

    for reading in readings:
        if not reading.read_ok:
            failed += 1
        cpu_seconds, energy_wh = convert(reading.total_ticks, seconds_per_tick, average_core_power)
        store.upsert(reading.identity, cpu_seconds, energy_wh)

    return failed


@dataclass
class DaemonState:
    """Runtime state of the daemon."""

    running: bool = False
    pass_count: int = 0
    last_pass_time: datetime | None = None
    last_pass_duration: float = 0.0  # Seconds
    last_failed_reads: int = 0
    tracked_identities: int = 0

    def update_pass(self, duration: float, failed_reads: int, tracked: int) -> None:
        """Update state after a sampling pass."""
        self.pass_count += 1
        self.last_pass_time = datetime.now()
        self.last_pass_duration = duration
        self.last_failed_reads = failed_reads
        self.tracked_identities = tracked


class Daemon:
    """Main daemon class orchestrating sampling and export.

    Lifecycle: start() runs the startup phase once, then the sampling loop
    until a shutdown signal; stop() releases the metrics endpoint.
    """

    def __init__(self, config: Config):
        self.config = config
        self.state = DaemonState()
        self.store = MetricStore()
        self.collector = ProcessCollector(Path(config.sampling.proc_root))

        # Resolved in _startup()
        self.clock_rate: ClockRate | None = None
        self.power_model: PowerModel | None = None
        self.host_info: HostInfo | None = None
        self._server: MetricsServer | None = None

        self._shutdown_event = asyncio.Event()

    def _startup(self) -> None:
        """Resolve immutable inputs and bring up the metrics endpoint.

        Raises:
            StartupError: If the tick rate, core count, or bind address cannot
                be resolved. Nothing is left serving in that case.
        """
        self.clock_rate = ClockRate.resolve()
        log.info(
            "clock_rate_resolved",
            ticks_per_second=self.clock_rate.ticks_per_second,
            jiffy_in_seconds=self.clock_rate.seconds_per_tick,
        )

        self.power_model = PowerModel.resolve(self.config.power.average_die_power)
        log.info(
            "power_model_resolved",
            average_die_power=self.power_model.average_die_power,
            num_physical_cores=self.power_model.num_physical_cores,
            average_core_power=self.power_model.average_core_power,
        )

        self.host_info = HostInfo.collect()
        log.info(
            "host_info_collected",
            hostname=self.host_info.hostname,
            os=self.host_info.os,
            kernel_version=self.host_info.kernel_version,
            cpu_model=self.host_info.cpu_model,
        )

        registry = build_registry(
            StoreCollector(self.store, self.host_info, self.power_model, self.clock_rate)
        )
        server = MetricsServer(self.config.exporter.metrics_address, registry)
        server.start()
        self._server = server

    async def start(self) -> None:
        """Start the daemon and run until shutdown."""
        from importlib.metadata import version

        log.info("daemon_starting", version=version("cpu-energy-exporter"))
        log.info(
            "daemon_config",
            metrics_address=self.config.exporter.metrics_address,
            collection_interval_ms=self.config.sampling.collection_interval,
            average_die_power=self.config.power.average_die_power,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        self._startup()

        self.state.running = True
        log.info("daemon_started")

        await self._main_loop()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        log.info("daemon_stopping")
        self.state.running = False

        if self._server:
            self._server.stop()
            self._server = None

        log.info("daemon_stopped")

    def request_shutdown(self) -> None:
        """Ask the main loop to exit at its next wait."""
        self._shutdown_event.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        self.request_shutdown()

    def apply(self, readings: list[ProcessTicks]) -> int:
        """Convert readings and overwrite their store entries.

        Returns:
            Number of processes whose accounting record could not be read.
        """
        if self.clock_rate is None or self.power_model is None:
            raise RuntimeError("apply() called before startup")
        return record_readings(self.store, readings, self.clock_rate, self.power_model)

    async def run_pass(self) -> None:
        """Run one full sampling pass: collect, convert, store."""
        started = time.monotonic()
        readings = await self.collector.collect()
        failed = self.apply(readings)
        duration = time.monotonic() - started

        self.state.update_pass(duration, failed, len(self.store))
        log.debug(
            "pass_completed",
            processes=len(readings),
            failed_reads=failed,
            tracked=len(self.store),
            duration_ms=round(duration * 1000, 1),
        )

    async def _main_loop(self) -> None:
        """Run sampling passes at the configured interval until shutdown.

        The interval is measured from the start of each pass. A pass that
        overruns it is followed immediately by the next one; missed ticks
        are not replayed. The loop only waits between passes, so shutdown
        never interrupts a pass.
        """
        interval = self.config.sampling.interval_seconds
        heartbeat_passes = self.config.sampling.heartbeat_passes
        heartbeat_count = 0
        heartbeat_max_duration = 0.0

        while not self._shutdown_event.is_set():
            iteration_start = asyncio.get_running_loop().time()

            try:
                await self.run_pass()
            except asyncio.CancelledError:
                log.info("main_loop_cancelled")
                break
            except Exception as e:
                log.exception("pass_failed", error=str(e))

            heartbeat_count += 1
            heartbeat_max_duration = max(heartbeat_max_duration, self.state.last_pass_duration)
            if heartbeat_count >= heartbeat_passes:
                log.info(
                    "daemon_heartbeat",
                    passes=heartbeat_count,
                    tracked=self.state.tracked_identities,
                    failed_reads=self.state.last_failed_reads,
                    max_pass_ms=round(heartbeat_max_duration * 1000, 1),
                )
                heartbeat_count = 0
                heartbeat_max_duration = 0.0

            elapsed = asyncio.get_running_loop().time() - iteration_start
            sleep_time = interval - elapsed
            if sleep_time > 0:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=sleep_time)
                    break  # Shutdown requested during sleep
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue to next pass
            elif sleep_time < 0:
                log.debug("pass_overran", overrun_ms=round(-sleep_time * 1000, 1))


async def run_daemon(config: Config) -> None:
    """Run the daemon until shutdown.

    Raises:
        StartupError: If the startup phase fails.
    """
    daemon = Daemon(config)

    try:
        await daemon.start()
    except StartupError as e:
        log.error("startup_failed", error=str(e))
        raise
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()

"""CLI commands for cpu-energy-exporter."""

from pathlib import Path

import click

from cpu_energy_exporter.config import CONFIG_ENV_VAR, LOG_LEVELS, Config

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar=CONFIG_ENV_VAR,
    default=None,
    help="Path to TOML config file.",
)

die_power_option = click.option(
    "--average-die-power",
    "-a",
    type=float,
    envvar="AVERAGE_DIE_POWER",
    default=None,
    help="Average power consumption of the CPU die in Watts (e.g. its TDP).",
)


def _load_config(config_path: Path | None, **overrides) -> Config:
    """Load the config file and apply command-line/environment overrides.

    Exits with status 1 if the result is invalid.
    """
    from cpu_energy_exporter import logging as console
    from cpu_energy_exporter.errors import ConfigError

    try:
        cfg = Config.load(config_path)
        if overrides.get("metrics_address") is not None:
            cfg.exporter.metrics_address = overrides["metrics_address"]
        if overrides.get("collection_interval") is not None:
            cfg.sampling.collection_interval = overrides["collection_interval"]
        if overrides.get("average_die_power") is not None:
            cfg.power.average_die_power = overrides["average_die_power"]
        if overrides.get("log_level") is not None:
            cfg.logging.level = overrides["log_level"].lower()
        cfg.validate()
    except ConfigError as e:
        console.config_invalid(str(e))
        raise SystemExit(1) from e
    return cfg


@click.group()
@click.version_option(package_name="cpu-energy-exporter")
def main() -> None:
    """Export per-process CPU time and modeled energy use to Prometheus."""
    pass


@main.command()
@config_option
@click.option(
    "--metrics-address",
    "-m",
    envvar="METRICS_ADDRESS",
    default=None,
    help="Address (host:port) on which to serve observability endpoints.",
)
@click.option(
    "--collection-interval",
    "-c",
    type=int,
    envvar="COLLECTION_INTERVAL",
    default=None,
    help="Interval in milliseconds at which to collect process information.",
)
@die_power_option
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    envvar="LOG_LEVEL",
    default=None,
    help="Minimum level of log events to emit.",
)
def run(
    config_path: Path | None,
    metrics_address: str | None,
    collection_interval: int | None,
    average_die_power: float | None,
    log_level: str | None,
) -> None:
    """Run the sampler and serve metrics until interrupted."""
    import asyncio

    from cpu_energy_exporter import logging as console
    from cpu_energy_exporter.daemon import run_daemon
    from cpu_energy_exporter.errors import StartupError

    cfg = _load_config(
        config_path,
        metrics_address=metrics_address,
        collection_interval=collection_interval,
        average_die_power=average_die_power,
        log_level=log_level,
    )
    console.configure(cfg)

    try:
        asyncio.run(run_daemon(cfg))
    except StartupError as e:
        console.startup_failed(str(e))
        raise SystemExit(1) from e

    console.exporter_stopped()


@main.command()
@config_option
@die_power_option
@click.option("--limit", "-n", default=20, help="Number of processes to show")
def sample(config_path: Path | None, average_die_power: float | None, limit: int) -> None:
    """Run a single sampling pass and print the heaviest processes."""
    from cpu_energy_exporter import logging as console
    from cpu_energy_exporter.clock import ClockRate
    from cpu_energy_exporter.collector import ProcessCollector
    from cpu_energy_exporter.daemon import record_readings
    from cpu_energy_exporter.energy import PowerModel
    from cpu_energy_exporter.errors import StartupError
    from cpu_energy_exporter.store import MetricStore

    cfg = _load_config(config_path, average_die_power=average_die_power, log_level="warning")
    console.configure(cfg)

    try:
        clock_rate = ClockRate.resolve()
        power_model = PowerModel.resolve(cfg.power.average_die_power)
    except StartupError as e:
        console.startup_failed(str(e))
        raise SystemExit(1) from e

    store = MetricStore()
    collector = ProcessCollector(Path(cfg.sampling.proc_root))
    failed = record_readings(store, collector.sample(), clock_rate, power_model)

    rows = sorted(
        store.snapshot_for_export().items(),
        key=lambda item: (item[1].cpu_seconds, item[0].pid),
        reverse=True,
    )[:limit]

    click.echo(
        f"{len(store)} processes, {failed} unreadable, "
        f"{power_model.average_core_power:.2f} W/core "
        f"({power_model.average_die_power} W / {power_model.num_physical_cores} cores)"
    )
    click.echo(f"{'PID':>7}  {'Name':20}  {'CPU s':>10}  {'Energy Wh':>10}  Command")
    click.echo("-" * 75)
    for identity, values in rows:
        click.echo(
            f"{identity.pid:>7}  {identity.process_name[:20]:20}  "
            f"{values.cpu_seconds:>10}  {values.energy_wh:>10}  {identity.cmdline[:40]}"
        )


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@config_option
def config_show(config_path: Path | None) -> None:
    """Display current configuration."""
    cfg = _load_config(config_path)
    path = config_path or cfg.config_path

    click.echo(f"Config file: {path}")
    click.echo(f"Exists: {path.exists()}")
    click.echo()
    click.echo("[exporter]")
    click.echo(f"  metrics_address = {cfg.exporter.metrics_address}")
    click.echo()
    click.echo("[sampling]")
    click.echo(f"  collection_interval = {cfg.sampling.collection_interval}")
    click.echo(f"  heartbeat_passes = {cfg.sampling.heartbeat_passes}")
    click.echo(f"  proc_root = {cfg.sampling.proc_root}")
    click.echo()
    click.echo("[power]")
    click.echo(f"  average_die_power = {cfg.power.average_die_power}")
    click.echo()
    click.echo("[logging]")
    click.echo(f"  level = {cfg.logging.level}")
    click.echo(f"  json_file = {str(cfg.logging.json_file).lower()}")


@config.command("init")
@config_option
def config_init(config_path: Path | None) -> None:
    """Write a config file with defaults if none exists."""
    from cpu_energy_exporter import logging as console

    cfg = Config()
    path = config_path or cfg.config_path
    if path.exists():
        click.echo(f"Config already exists at {path}")
        return
    cfg.save(path)
    console.config_created(str(path))


@config.command("reset")
@config_option
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset(config_path: Path | None) -> None:
    """Reset configuration to defaults."""
    cfg = Config()
    path = config_path or cfg.config_path
    cfg.save(path)
    click.echo(f"Config reset to defaults at {path}")

"""Exceptions for cpu-energy-exporter."""


class ExporterError(Exception):
    """Base class for all cpu-energy-exporter errors."""


class StartupError(ExporterError):
    """Raised when the daemon cannot complete its startup phase.

    Startup failures are fatal: the sampling loop never starts and no
    metrics endpoint is left running.
    """


class ClockRateError(StartupError):
    """Raised when the kernel clock tick rate cannot be resolved."""


class PowerModelError(StartupError):
    """Raised when the power model inputs cannot be resolved."""


class ExporterBindError(StartupError):
    """Raised when the metrics endpoint cannot bind its address."""


class ConfigError(ExporterError, ValueError):
    """Raised for invalid configuration values."""

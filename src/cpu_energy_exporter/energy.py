"""CPU time to energy conversion.

The energy figure is a model, not a measurement: every physical core is
assumed to draw an equal share of the configured average die power while it
executes a process. A process that accumulated ``t`` seconds of CPU time is
therefore billed ``t * average_core_power / 3600`` watt-hours.

Both stored values are truncated to whole units. The truncation happens when
the values are produced for storage, so energy is derived from the exact
CPU time rather than from the truncated seconds.
"""

import math
from dataclasses import dataclass, field

import psutil

from cpu_energy_exporter.errors import PowerModelError

SECONDS_PER_HOUR = 3600


def get_physical_core_count() -> int:
    """Return the number of physical CPU cores.

    Raises:
        PowerModelError: If psutil cannot determine the physical core count.
    """
    count = psutil.cpu_count(logical=False)
    if not count:
        raise PowerModelError("Unable to determine the number of physical CPU cores")
    return count


@dataclass(frozen=True)
class PowerModel:
    """Average power attributed to one physical core.

    Built once at startup. ``average_core_power`` is fixed at construction so
    later changes in reported core count never affect running estimates.
    """

    average_die_power: float  # Watts for the whole die
    num_physical_cores: int
    average_core_power: float = field(init=False)

    def __post_init__(self) -> None:
        if self.num_physical_cores < 1:
            raise PowerModelError(
                f"num_physical_cores must be >= 1, got {self.num_physical_cores}"
            )
        object.__setattr__(
            self, "average_core_power", self.average_die_power / self.num_physical_cores
        )

    @classmethod
    def resolve(cls, average_die_power: float) -> "PowerModel":
        """Build the model from configured die power and the host's core count."""
        return cls(
            average_die_power=average_die_power,
            num_physical_cores=get_physical_core_count(),
        )


def ticks_to_seconds(total_ticks: int, seconds_per_tick: float) -> float:
    """Exact CPU time in seconds for a tick count."""
    return total_ticks * seconds_per_tick


def seconds_to_watt_hours(cpu_seconds: float, average_core_power: float) -> float:
    """Exact modeled energy in watt-hours for a CPU time."""
    return (cpu_seconds * average_core_power) / SECONDS_PER_HOUR


def convert(
    total_ticks: int, seconds_per_tick: float, average_core_power: float
) -> tuple[int, int]:
    """Convert cumulative ticks to stored ``(cpu_seconds, energy_wh)``.

    Sub-second and sub-watt-hour precision is dropped. Zero ticks yield
    ``(0, 0)``.
    """
    run_time = ticks_to_seconds(total_ticks, seconds_per_tick)
    energy = seconds_to_watt_hours(run_time, average_core_power)
    return max(math.floor(run_time), 0), max(math.floor(energy), 0)

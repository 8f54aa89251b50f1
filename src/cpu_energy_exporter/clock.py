"""Kernel clock tick rate.

Per-process CPU accounting in /proc is expressed in clock ticks (jiffies).
The tick rate is read once via sysconf(_SC_CLK_TCK) and never changes for
the lifetime of the running kernel.
"""

import os
from dataclasses import dataclass

from cpu_energy_exporter.errors import ClockRateError


def get_clock_ticks() -> int:
    """Return the number of clock ticks per second.

    Raises:
        ClockRateError: If sysconf does not know SC_CLK_TCK or returns
            a non-positive value.
    """
    try:
        ticks = os.sysconf("SC_CLK_TCK")
    except (ValueError, OSError, AttributeError) as e:
        raise ClockRateError(f"Failed to read SC_CLK_TCK via sysconf: {e}") from e
    if ticks <= 0:
        raise ClockRateError(f"sysconf returned invalid SC_CLK_TCK: {ticks}")
    return ticks


@dataclass(frozen=True, slots=True)
class ClockRate:
    """Tick rate resolved once at startup."""

    ticks_per_second: int

    @property
    def seconds_per_tick(self) -> float:
        """Length of one tick in seconds."""
        return 1.0 / self.ticks_per_second

    @classmethod
    def resolve(cls) -> "ClockRate":
        """Query the kernel for the tick rate."""
        return cls(ticks_per_second=get_clock_ticks())

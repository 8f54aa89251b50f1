"""Shared test fixtures for cpu-energy-exporter."""

from pathlib import Path
from types import SimpleNamespace

import pytest

from cpu_energy_exporter.clock import ClockRate
from cpu_energy_exporter.collector import ProcessIdentity
from cpu_energy_exporter.energy import PowerModel


def write_stat(
    proc_root: Path, pid: int, utime: int, stime: int, comm: str = "proc"
) -> Path:
    """Write a minimal /proc/<pid>/stat record under proc_root."""
    pid_dir = proc_root / str(pid)
    pid_dir.mkdir(parents=True, exist_ok=True)
    stat = pid_dir / "stat"
    stat.write_text(
        f"{pid} ({comm}) S 1 {pid} {pid} 0 -1 4194560 100 0 0 0 "
        f"{utime} {stime} 0 0 20 0 1 0 12345 1000000 100\n"
    )
    return stat


def make_proc(pid: int, name: str | None = "proc", cmdline: list[str] | None = None):
    """Create a stand-in for a psutil.Process yielded by process_iter(attrs)."""
    return SimpleNamespace(info={"pid": pid, "name": name, "cmdline": cmdline})


def make_identity(
    pid: int = 123, process_name: str = "test_proc", cmdline: str = "/usr/bin/test_proc --flag"
) -> ProcessIdentity:
    """Create a ProcessIdentity for testing."""
    return ProcessIdentity(pid=pid, process_name=process_name, cmdline=cmdline)


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    """Empty fake procfs root."""
    root = tmp_path / "proc"
    root.mkdir()
    return root


@pytest.fixture
def clock_rate() -> ClockRate:
    """Standard 100 Hz Linux tick rate."""
    return ClockRate(ticks_per_second=100)


@pytest.fixture
def power_model() -> PowerModel:
    """35 W die over 7 physical cores = 5 W per core."""
    return PowerModel(average_die_power=35.0, num_physical_cores=7)

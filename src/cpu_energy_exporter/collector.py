"""Per-process CPU tick collector for Linux procfs."""

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import psutil
import structlog

log = structlog.get_logger()

DEFAULT_PROC_ROOT = Path("/proc")

# Zero-based positions of utime/stime in the fields that follow "comm)" in
# /proc/<pid>/stat. The first of those fields is state (field 3 overall), so
# utime (field 14) and stime (field 15) land at 11 and 12.
_UTIME_INDEX = 11
_STIME_INDEX = 12


@dataclass(frozen=True, slots=True)
class ProcessIdentity:
    """Key under which a process's metrics are stored.

    A reused pid only becomes a new series when its name or command line
    differ from the earlier process.
    """

    pid: int
    process_name: str
    cmdline: str


@dataclass(frozen=True, slots=True)
class ProcessTicks:
    """Cumulative CPU ticks read for one process in one pass."""

    identity: ProcessIdentity
    total_ticks: int
    read_ok: bool = True


@contextmanager
def _procfs_path(proc_root: Path) -> Iterator[None]:
    """Point psutil's process enumeration at proc_root for the duration."""
    previous = psutil.PROCFS_PATH
    psutil.PROCFS_PATH = str(proc_root)
    try:
        yield
    finally:
        psutil.PROCFS_PATH = previous


def parse_stat_ticks(contents: str) -> tuple[int, int]:
    """Return ``(utime, stime)`` from the contents of a /proc/<pid>/stat file.

    The comm field is wrapped in parentheses and may itself contain spaces or
    parentheses, so fields are split after the last ``)``.

    Raises:
        ValueError: If the record is malformed.
    """
    end = contents.rfind(")")
    if end == -1:
        raise ValueError("missing ')' after comm field")
    fields = contents[end + 1 :].split()
    if len(fields) <= _STIME_INDEX:
        raise ValueError(f"expected {_STIME_INDEX + 1}+ fields after comm, got {len(fields)}")
    return int(fields[_UTIME_INDEX]), int(fields[_STIME_INDEX])


class ProcessCollector:
    """Reads cumulative user + kernel ticks for every running process.

    Processes are read one at a time in enumeration order. A process whose
    accounting record cannot be read contributes zero ticks for the pass and
    is tried again on the next pass.
    """

    def __init__(self, proc_root: Path = DEFAULT_PROC_ROOT):
        self.proc_root = proc_root

    def read_ticks(self, pid: int) -> int:
        """Read ``utime + stime`` for a pid.

        Raises:
            OSError: If the stat file cannot be read.
            ValueError: If the stat record is malformed.
        """
        contents = (self.proc_root / str(pid) / "stat").read_text()
        utime, stime = parse_stat_ticks(contents)
        log.debug("process_ticks", pid=pid, user=utime, kernel=stime)
        return utime + stime

    def _identity(self, info: dict) -> ProcessIdentity:
        cmdline = info.get("cmdline") or []
        return ProcessIdentity(
            pid=info["pid"],
            process_name=info.get("name") or "",
            cmdline=" ".join(cmdline),
        )

    def sample(self) -> list[ProcessTicks]:
        """Run one synchronous pass over the current process list.

        Enumeration and stat reads both use proc_root, so pids and their
        accounting records always come from the same tree.
        """
        results: list[ProcessTicks] = []

        with _procfs_path(self.proc_root):
            for proc in psutil.process_iter(["pid", "name", "cmdline"]):
                identity = self._identity(proc.info)
                try:
                    total_ticks = self.read_ticks(identity.pid)
                except (OSError, ValueError) as e:
                    log.warning("process_ticks_failed", pid=identity.pid, error=str(e))
                    results.append(ProcessTicks(identity, 0, read_ok=False))
                    continue
                results.append(ProcessTicks(identity, total_ticks))

        return results

    async def collect(self) -> list[ProcessTicks]:
        """Run a pass in the default executor (file reads are blocking)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.sample)

"""Static host and CPU description, collected once at startup."""

import platform
import socket
from dataclasses import dataclass
from pathlib import Path

UNKNOWN = "unknown"


def _read_cpuinfo(path: Path) -> dict[str, str]:
    """Parse ``key : value`` lines, returning an empty dict if unreadable."""
    try:
        text = path.read_text()
    except OSError:
        return {}
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, found, value = line.partition(":")
        if not found:
            continue
        key = key.strip()
        # /proc/cpuinfo repeats every key once per logical CPU; keep the first
        if key and key not in values:
            values[key] = value.strip()
    return values


def _read_os_release() -> dict[str, str]:
    try:
        return platform.freedesktop_os_release()
    except OSError:
        return {}


@dataclass(frozen=True)
class HostInfo:
    """Descriptive host metadata. Values that cannot be determined are "unknown"."""

    hostname: str
    os: str
    os_version: str
    kernel_version: str
    cpu_vendor: str
    cpu_model: str

    @classmethod
    def collect(cls, cpuinfo: Path = Path("/proc/cpuinfo")) -> "HostInfo":
        """Gather host metadata from the running system."""
        release = _read_os_release()
        cpu = _read_cpuinfo(cpuinfo)

        return cls(
            hostname=socket.gethostname() or UNKNOWN,
            os=release.get("NAME") or platform.system() or UNKNOWN,
            os_version=release.get("VERSION_ID") or UNKNOWN,
            kernel_version=platform.release() or UNKNOWN,
            cpu_vendor=cpu.get("vendor_id") or UNKNOWN,
            cpu_model=cpu.get("model name") or platform.processor() or UNKNOWN,
        )

"""Live per-process metric store read by the exporter.

Single writer (the sampling loop), many readers (scrape threads).

Each entry holds an immutable MetricSample that is replaced by a single dict
item assignment, so readers never see a half-written field. Entries are never
removed: an identity stays in the store with its last values after the
process exits, and the store grows with every distinct identity seen.
"""

import threading
from dataclasses import dataclass

from cpu_energy_exporter.collector import ProcessIdentity


@dataclass(frozen=True, slots=True)
class MetricSample:
    """Latest absolute values for one identity."""

    cpu_seconds: int = 0
    energy_wh: int = 0


_ZERO = MetricSample()


class MetricStore:
    """Mapping of ProcessIdentity to its latest MetricSample."""

    def __init__(self) -> None:
        self._samples: dict[ProcessIdentity, MetricSample] = {}
        # Guards key insertion against snapshot copies. Never held while
        # a snapshot is serialized.
        self._keys_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._samples)

    def __contains__(self, identity: object) -> bool:
        return identity in self._samples

    def get(self, identity: ProcessIdentity) -> MetricSample | None:
        """Return the current sample for an identity, or None if never seen."""
        return self._samples.get(identity)

    def upsert(self, identity: ProcessIdentity, cpu_seconds: int, energy_wh: int) -> None:
        """Overwrite the identity's values, creating a zero entry first if new."""
        if identity not in self._samples:
            with self._keys_lock:
                self._samples.setdefault(identity, _ZERO)
        self._samples[identity] = MetricSample(cpu_seconds=cpu_seconds, energy_wh=energy_wh)

    def snapshot_for_export(self) -> dict[ProcessIdentity, MetricSample]:
        """Return a point-in-time copy of all entries. Does not mutate the store."""
        with self._keys_lock:
            return dict(self._samples)

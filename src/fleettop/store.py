"""Process-wide table of the latest status of every target."""

import threading
from collections.abc import Iterable
from datetime import datetime
from types import MappingProxyType

from fleettop.models import ProbeOutcome, Snapshot, Target, TargetStatus, utc_now


class MetricsStore:
    """
    Thread-safe map of target name to its most recent TargetStatus.

    Entries are immutable and replaced whole, so the lock only guards a dict
    assignment on write and a shallow dict copy on read. Written from the
    poller's event loop thread, read from the dashboard thread.
    """

    def __init__(self, targets: Iterable[Target] = ()) -> None:
        """
        Initialize the MetricsStore.

        Args:
            targets: Optional registry; when given, snapshots list entries
                in registry order rather than first-write order.
        """
        self._lock = threading.Lock()
        self._entries: dict[str, TargetStatus] = {}
        self._order: tuple[str, ...] = tuple(t.name for t in targets)

    def update(
        self,
        target: Target,
        outcome: ProbeOutcome,
        observed_at: datetime,
        round_id: int = 0,
    ) -> TargetStatus:
        """Replace the status stored for ``target``. The last write wins."""
        status = TargetStatus(
            target=target,
            outcome=outcome,
            observed_at=observed_at,
            round_id=round_id,
        )
        with self._lock:
            self._entries[target.name] = status
        return status

    def get(self, name: str) -> TargetStatus | None:
        """Get the current status of one target, if it has been polled."""
        with self._lock:
            return self._entries.get(name)

    def snapshot(self) -> Snapshot:
        """Return a consistent copy of all entries as of a single instant."""
        with self._lock:
            entries = dict(self._entries)
        taken_at = utc_now()

        if self._order:
            ordered = {name: entries.pop(name) for name in self._order if name in entries}
            ordered.update(entries)
            entries = ordered
        return Snapshot(entries=MappingProxyType(entries), taken_at=taken_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries

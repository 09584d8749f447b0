"""Data models for fleettop."""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

TARGET_KINDS = ("server", "website")


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Target:
    """A monitored host, loaded once from the registry."""

    name: str
    address: str  # host, host:port or full http(s) URL
    kind: str = "server"  # "server" (agent metrics) or "website" (status code only)


@dataclass(slots=True, frozen=True)
class DiskUsage:
    """Usage of one mounted filesystem as reported by an agent."""

    mount_point: str
    total: int  # Bytes
    used: int  # Bytes

    @property
    def used_percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.used / self.total * 100.0


@dataclass(slots=True, frozen=True)
class Success:
    """Metrics parsed from a successful probe."""

    disk_used: int
    disk_total: int
    cpu_percent: float
    mem_used: int
    mem_total: int
    disks: tuple[DiskUsage, ...] = ()

    state = "ok"
    ok = True

    @property
    def disk_percent(self) -> float:
        if self.disk_total <= 0:
            return 0.0
        return self.disk_used / self.disk_total * 100.0

    @property
    def mem_percent(self) -> float:
        if self.mem_total <= 0:
            return 0.0
        return self.mem_used / self.mem_total * 100.0


@dataclass(slots=True, frozen=True)
class SiteUp:
    """A website target answered with a 2xx status."""

    status_code: int

    state = "ok"
    ok = True


@dataclass(slots=True, frozen=True)
class Timeout:
    """The target did not answer within the probe timeout."""

    state = "timeout"
    ok = False


@dataclass(slots=True, frozen=True)
class ConnectionFailure:
    """The target could not be reached at all."""

    reason: str

    state = "unreachable"
    ok = False


@dataclass(slots=True, frozen=True)
class ParseFailure:
    """The target answered, but not with usable metrics."""

    reason: str

    state = "invalid"
    ok = False


ProbeOutcome = Success | SiteUp | Timeout | ConnectionFailure | ParseFailure


@dataclass(slots=True, frozen=True)
class TargetStatus:
    """Most recent observation of one target. Replaced whole, never mutated."""

    target: Target
    outcome: ProbeOutcome
    observed_at: datetime
    round_id: int = 0


@dataclass(slots=True, frozen=True)
class Snapshot(Mapping[str, TargetStatus]):
    """Read-only, point-in-time copy of every stored TargetStatus."""

    entries: Mapping[str, TargetStatus]
    taken_at: datetime = field(default_factory=utc_now)

    def __getitem__(self, name: str) -> TargetStatus:
        return self.entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def statuses(self) -> list[TargetStatus]:
        """Return the statuses in snapshot order."""
        return list(self.entries.values())

    def count(self, state: str) -> int:
        """Count entries whose last outcome is in the given state."""
        return sum(1 for status in self.entries.values() if status.outcome.state == state)

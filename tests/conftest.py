"""Shared fixtures and fakes for fleettop tests."""

import asyncio
import socket
import time
from collections.abc import Callable

import pytest

from fleettop.config import get_settings
from fleettop.models import ProbeOutcome, Success, Target
from fleettop.store import MetricsStore

HANG = "hang"


def make_success(**overrides) -> Success:
    """Build a Success outcome with sensible defaults."""
    values = dict(disk_used=50, disk_total=100, cpu_percent=10.0, mem_used=2, mem_total=8)
    values.update(overrides)
    return Success(**values)


class FakeProbe:
    """
    Instrumented probe client.

    Behaviour per target name is a ProbeOutcome, an exception instance to
    raise, or HANG to never answer. Records calls and the highest number of
    probes seen in flight at once.
    """

    def __init__(
        self,
        behaviours: dict[str, object] | None = None,
        default: object = None,
        delay: float = 0.0,
    ) -> None:
        self.behaviours = dict(behaviours or {})
        self.default = default if default is not None else make_success()
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def __call__(self, target: Target) -> ProbeOutcome:
        self.calls.append(target.name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            behaviour = self.behaviours.get(target.name, self.default)
            if behaviour == HANG:
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(behaviour, BaseException):
                raise behaviour
            return behaviour
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True

    def call_count(self, name: str) -> int:
        return self.calls.count(name)


class RecordingStore(MetricsStore):
    """MetricsStore that logs every write as (round_id, target name)."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.writes: list[tuple[int, str]] = []

    def update(self, target, outcome, observed_at, round_id=0):
        status = super().update(target, outcome, observed_at, round_id)
        self.writes.append((round_id, target.name))
        return status


def make_targets(count: int, prefix: str = "host") -> tuple[Target, ...]:
    return tuple(Target(name=f"{prefix}-{i}", address=f"10.0.{i // 256}.{i % 256}") for i in range(count))


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def free_port() -> int:
    """Return a local TCP port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()

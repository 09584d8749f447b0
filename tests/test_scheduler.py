"""Tests for the bounded poll scheduler."""

import asyncio
import math
import time
from datetime import datetime, timezone

import pytest
from conftest import HANG, FakeProbe, RecordingStore, make_success, make_targets

from fleettop.models import ConnectionFailure, ParseFailure, Success, Target, Timeout
from fleettop.scheduler import RoundScheduler
from fleettop.store import MetricsStore

FIXED = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestRunRound:
    """Tests for RoundScheduler.run_round."""

    @pytest.mark.asyncio
    async def test_one_status_per_target(self):
        """Test every target gets exactly one status per round."""
        targets = make_targets(25)
        store = MetricsStore(targets)
        scheduler = RoundScheduler(FakeProbe(), store, probe_timeout=1.0)

        statuses = await scheduler.run_round(targets, concurrency_limit=4)

        assert sorted(s.target.name for s in statuses) == sorted(t.name for t in targets)
        snapshot = store.snapshot()
        assert list(snapshot) == [t.name for t in targets]
        assert all(s.round_id == 1 for s in snapshot.values())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 2, 5, 16, 100])
    async def test_concurrency_never_exceeds_limit(self, limit):
        """Test no more than `limit` probes are ever in flight."""
        targets = make_targets(40)
        probe = FakeProbe(delay=0.005)
        scheduler = RoundScheduler(probe, MetricsStore(), probe_timeout=1.0)

        await scheduler.run_round(targets, concurrency_limit=limit)

        assert probe.max_in_flight <= limit
        assert probe.max_in_flight == min(limit, len(targets))
        assert len(probe.calls) == len(targets)

    @pytest.mark.asyncio
    async def test_hanging_probes_time_out_within_bound(self):
        """Test hanging probes become Timeout and the round still finishes in time."""
        targets = make_targets(6)
        probe = FakeProbe(default=HANG)
        timeout = 0.1
        limit = 2
        scheduler = RoundScheduler(probe, MetricsStore(), probe_timeout=timeout)

        started = time.monotonic()
        statuses = await scheduler.run_round(targets, concurrency_limit=limit)
        elapsed = time.monotonic() - started

        assert all(s.outcome == Timeout() for s in statuses)
        assert elapsed < math.ceil(len(targets) / limit) * timeout + 0.5
        assert probe.in_flight == 0  # cancelled, not left running

    @pytest.mark.asyncio
    async def test_slow_target_does_not_block_others(self):
        """Test one hanging target does not hold up the rest."""
        targets = make_targets(10)
        probe = FakeProbe(behaviours={"host-0": HANG})
        scheduler = RoundScheduler(probe, MetricsStore(), probe_timeout=0.3)

        started = time.monotonic()
        statuses = await scheduler.run_round(targets, concurrency_limit=2)
        elapsed = time.monotonic() - started

        by_name = {s.target.name: s.outcome for s in statuses}
        assert by_name["host-0"] == Timeout()
        assert all(isinstance(by_name[t.name], Success) for t in targets[1:])
        assert elapsed < 0.3 + 0.5

    @pytest.mark.asyncio
    async def test_parse_failure_replaces_previous_success(self):
        """Test a malformed response fully replaces last round's good data."""
        target = Target("A", "10.0.0.1")
        store = MetricsStore()
        probe = FakeProbe(default=make_success())
        scheduler = RoundScheduler(probe, store, probe_timeout=1.0)
        await scheduler.run_round([target], concurrency_limit=1)
        assert isinstance(store.get("A").outcome, Success)

        probe.default = ParseFailure(reason="missing cpu_usage")
        await scheduler.run_round([target], concurrency_limit=1)

        status = store.get("A")
        assert status.outcome == ParseFailure(reason="missing cpu_usage")
        assert not hasattr(status.outcome, "disk_used")
        assert status.round_id == 2

    @pytest.mark.asyncio
    async def test_raising_probe_is_contained(self):
        """Test a probe that raises is recorded as ConnectionFailure for that target only."""
        targets = make_targets(3)
        probe = FakeProbe(behaviours={"host-1": RuntimeError("kaboom")})
        scheduler = RoundScheduler(probe, MetricsStore(), probe_timeout=1.0)

        statuses = await scheduler.run_round(targets, concurrency_limit=3)

        by_name = {s.target.name: s.outcome for s in statuses}
        assert isinstance(by_name["host-1"], ConnectionFailure)
        assert "kaboom" in by_name["host-1"].reason
        assert isinstance(by_name["host-0"], Success)
        assert isinstance(by_name["host-2"], Success)

    @pytest.mark.asyncio
    async def test_content_does_not_depend_on_completion_order(self):
        """Test identical outcomes give identical stored content."""
        targets = make_targets(12)
        outcomes = {t.name: make_success(cpu_percent=float(i)) for i, t in enumerate(targets)}

        async def run(delay: float) -> set:
            store = MetricsStore(targets)
            scheduler = RoundScheduler(
                FakeProbe(behaviours=outcomes, delay=delay),
                store,
                probe_timeout=1.0,
                clock=lambda: FIXED,
            )
            await scheduler.run_round(targets, concurrency_limit=5)
            return set(store.snapshot().values())

        assert await run(0.0) == await run(0.002)

    @pytest.mark.asyncio
    async def test_round_ids_increase(self):
        """Test each call to run_round gets the next round id."""
        targets = make_targets(3)
        store = RecordingStore()
        scheduler = RoundScheduler(FakeProbe(), store, probe_timeout=1.0)

        for _ in range(3):
            await scheduler.run_round(targets, concurrency_limit=2)

        assert scheduler.rounds_completed == 3
        assert [r for r, _ in store.writes] == [1] * 3 + [2] * 3 + [3] * 3

    @pytest.mark.asyncio
    async def test_empty_registry(self):
        """Test an empty target list completes immediately."""
        scheduler = RoundScheduler(FakeProbe(), MetricsStore(), probe_timeout=1.0)
        assert await scheduler.run_round([], concurrency_limit=3) == []
        assert scheduler.rounds_completed == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1, True, 1.5])
    async def test_invalid_concurrency_limit(self, limit):
        """Test non-positive or non-integer limits are rejected."""
        scheduler = RoundScheduler(FakeProbe(), MetricsStore(), probe_timeout=1.0)
        with pytest.raises(ValueError):
            await scheduler.run_round(make_targets(1), concurrency_limit=limit)

    def test_invalid_probe_timeout(self):
        """Test the probe timeout must be positive."""
        with pytest.raises(ValueError):
            RoundScheduler(FakeProbe(), MetricsStore(), probe_timeout=0)


class TestExampleScenario:
    """Two targets, concurrency 1: A answers, B hangs."""

    @pytest.mark.asyncio
    async def test_two_target_round(self):
        """Test A is stored as Success and B as Timeout observed one timeout later."""
        a = Target("A", "10.0.0.1")
        b = Target("B", "10.0.0.2")
        success = Success(disk_used=50, disk_total=100, cpu_percent=10.0, mem_used=2, mem_total=8)
        probe = FakeProbe(behaviours={"A": success, "B": HANG})
        store = MetricsStore([a, b])
        timeout = 0.2
        scheduler = RoundScheduler(probe, store, probe_timeout=timeout)

        await scheduler.run_round([a, b], concurrency_limit=1)

        snapshot = store.snapshot()
        assert snapshot["A"].outcome == success
        assert snapshot["B"].outcome == Timeout()
        gap = (snapshot["B"].observed_at - snapshot["A"].observed_at).total_seconds()
        assert gap >= timeout * 0.9

        # next round re-probes both regardless of the previous outcome
        probe.behaviours["B"] = success
        await scheduler.run_round([a, b], concurrency_limit=1)

        assert probe.call_count("A") == 2
        assert probe.call_count("B") == 2
        assert store.snapshot()["B"].outcome == success
        assert store.snapshot()["B"].round_id == 2


def test_run_round_from_sync_code():
    """Test a round can be driven with asyncio.run."""
    store = MetricsStore()
    scheduler = RoundScheduler(FakeProbe(), store, probe_timeout=1.0)
    statuses = asyncio.run(scheduler.run_round(make_targets(2), concurrency_limit=1))
    assert len(statuses) == 2
    assert len(store) == 2

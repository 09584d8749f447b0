"""Bounded poll scheduler: one round of probes over the whole registry."""

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from fleettop.models import ConnectionFailure, ProbeOutcome, Target, TargetStatus, Timeout, utc_now
from fleettop.probe import ProbeFunc
from fleettop.store import MetricsStore

logger = logging.getLogger(__name__)


class RoundScheduler:
    """
    Runs poll rounds with a fixed cap on in-flight probes.

    A round starts ``min(concurrency_limit, len(targets))`` workers that pull
    targets from a shared queue, so resource use does not grow with the size
    of the fleet. Every probe races its own deadline; a probe that misses it
    is cancelled and recorded as Timeout. Each outcome is written to the
    store as soon as it is known.
    """

    def __init__(
        self,
        probe: ProbeFunc,
        store: MetricsStore,
        probe_timeout: float = 3.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize the RoundScheduler.

        Args:
            probe: Coroutine function probing one target. Expected not to
                raise; anything it does raise is recorded as ConnectionFailure.
            store: Store receiving one update per target per round.
            probe_timeout: Deadline for a single probe, in seconds.
            clock: Source of observation timestamps.
        """
        if probe_timeout <= 0:
            raise ValueError("probe_timeout must be positive")
        self._probe = probe
        self._store = store
        self._probe_timeout = probe_timeout
        self._clock = clock
        self._rounds_completed = 0

    @property
    def probe_timeout(self) -> float:
        return self._probe_timeout

    @property
    def rounds_completed(self) -> int:
        return self._rounds_completed

    async def run_round(
        self,
        targets: Sequence[Target],
        concurrency_limit: int,
    ) -> list[TargetStatus]:
        """
        Probe every target exactly once and store the outcomes.

        Returns one TargetStatus per target, in completion order.
        """
        if isinstance(concurrency_limit, bool) or not isinstance(concurrency_limit, int):
            raise ValueError("concurrency_limit must be an integer")
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        round_id = self._rounds_completed + 1
        results: list[TargetStatus] = []
        if targets:
            pending: asyncio.Queue[Target] = asyncio.Queue()
            for target in targets:
                pending.put_nowait(target)

            workers = [
                asyncio.create_task(
                    self._worker(pending, round_id, results),
                    name=f"probe-worker-{i}",
                )
                for i in range(min(concurrency_limit, len(targets)))
            ]
            try:
                await asyncio.gather(*workers)
            except BaseException:
                for worker in workers:
                    worker.cancel()
                raise

        self._rounds_completed = round_id
        logger.debug(
            "Round %d finished: %d target(s), %d ok",
            round_id,
            len(results),
            sum(1 for status in results if status.outcome.ok),
        )
        return results

    async def _worker(
        self,
        pending: asyncio.Queue[Target],
        round_id: int,
        results: list[TargetStatus],
    ) -> None:
        """Probe queued targets one at a time until the queue is drained."""
        while True:
            try:
                target = pending.get_nowait()
            except asyncio.QueueEmpty:
                return
            outcome = await self._probe_with_deadline(target)
            status = self._store.update(target, outcome, self._clock(), round_id)
            results.append(status)

    async def _probe_with_deadline(self, target: Target) -> ProbeOutcome:
        try:
            return await asyncio.wait_for(self._probe(target), timeout=self._probe_timeout)
        except asyncio.TimeoutError:
            return Timeout()
        except Exception as e:
            logger.exception("Probe of %s raised unexpectedly", target.name)
            return ConnectionFailure(reason=f"{type(e).__name__}: {e}")

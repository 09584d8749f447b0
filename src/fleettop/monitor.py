"""Poll loop for fleettop."""

import asyncio
import logging
import threading
import time
from collections.abc import Sequence

from fleettop.models import Target, TargetStatus
from fleettop.probe import HttpProbe, ProbeFunc
from fleettop.scheduler import RoundScheduler
from fleettop.store import MetricsStore

logger = logging.getLogger(__name__)


class FleetMonitor:
    """
    Fleet poller that runs one probe round every poll interval.

    Runs in a separate daemon thread that owns its own asyncio event loop and
    writes results to a shared MetricsStore. Rounds never overlap: a round
    that runs past the interval is followed immediately by the next one.
    """

    def __init__(
        self,
        targets: Sequence[Target],
        store: MetricsStore,
        probe: ProbeFunc | None = None,
        poll_interval: float = 5.0,
        probe_timeout: float = 3.0,
        concurrency_limit: int = 100,
    ) -> None:
        """
        Initialize the FleetMonitor.

        Args:
            targets: The target registry, polled in full every round.
            store: Store to write outcomes to.
            probe: Probe coroutine function. Defaults to an HttpProbe using
                ``probe_timeout``.
            poll_interval: Seconds from one round start to the next. Default 5.0s.
            probe_timeout: Deadline for a single probe, in seconds.
            concurrency_limit: Maximum number of probes in flight at once.
        """
        self._targets = tuple(targets)
        self._store = store
        self._probe = probe if probe is not None else HttpProbe(timeout=probe_timeout)
        self._poll_interval = poll_interval
        self._concurrency_limit = concurrency_limit
        self._scheduler = RoundScheduler(self._probe, store, probe_timeout=probe_timeout)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._stopping: threading.Thread | None = None

    @property
    def targets(self) -> tuple[Target, ...]:
        return self._targets

    @property
    def store(self) -> MetricsStore:
        return self._store

    @property
    def poll_interval(self) -> float:
        """Get the current poll interval."""
        return self._poll_interval

    @poll_interval.setter
    def poll_interval(self, value: float) -> None:
        """Set the poll interval."""
        self._poll_interval = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def concurrency_limit(self) -> int:
        return self._concurrency_limit

    @property
    def rounds_completed(self) -> int:
        return self._scheduler.rounds_completed

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the polling thread."""
        if self.is_running:
            return

        # One stop flag per thread; an abandoned thread stays stopped
        self._stop_event = threading.Event()
        previous, self._stopping = self._stopping, None
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop_event, previous),
            daemon=True,
            name="FleetMonitor",
        )
        self._thread.start()
        logger.info(
            "Fleet monitor started: %d target(s), interval %.1fs, concurrency %d",
            len(self._targets),
            self._poll_interval,
            self._concurrency_limit,
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the polling thread.

        If the thread does not finish within ``timeout`` it is left to end
        its current round; a later start() waits for it before polling.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Fleet monitor did not stop within %ss; it will exit after its round", timeout)
                self._stopping = self._thread
            self._thread = None
            logger.info("Fleet monitor stopped")

    def run_once(self) -> list[TargetStatus]:
        """Run a single round in the calling thread and return its statuses."""
        return asyncio.run(self._round_then_close())

    async def _round_then_close(self) -> list[TargetStatus]:
        try:
            return await self._scheduler.run_round(self._targets, self._concurrency_limit)
        finally:
            await self._close_probe()

    def _run(self, stop_event: threading.Event, previous: threading.Thread | None = None) -> None:
        """Thread body: one event loop for the lifetime of the thread."""
        if previous is not None:
            # Rounds must never overlap with a thread that is still stopping
            previous.join()
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            self._poll_loop(loop, stop_event)
        finally:
            try:
                loop.run_until_complete(self._close_probe())
            finally:
                loop.close()

    def _poll_loop(self, loop: asyncio.AbstractEventLoop, stop_event: threading.Event) -> None:
        """Main polling loop running in the background thread."""
        while not stop_event.is_set():
            started = time.monotonic()
            try:
                loop.run_until_complete(
                    self._scheduler.run_round(self._targets, self._concurrency_limit)
                )
            except Exception:
                # A broken round must not end monitoring; the next round retries
                logger.exception("Poll round failed")

            # Wait out the rest of the interval or until stop is requested
            elapsed = time.monotonic() - started
            stop_event.wait(timeout=max(0.0, self._poll_interval - elapsed))

    async def _close_probe(self) -> None:
        close = getattr(self._probe, "close", None)
        if close is not None:
            await close()

"""Cancelable polling loops for mastered output.

Each poller runs as one asyncio task that ticks, then sleeps for the interval,
so ticks of one poller never overlap. `cancel()` sets a flag that every tick
checks before touching callbacks, and cancels the task to abort whatever
request is in flight. It is safe to call any number of times, also after the
poller finished on its own.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import StrEnum

from loguru import logger

from masterlink.cdn.candidates import sanitize_urls
from masterlink.contracts import JobStatus

POLL_INTERVAL_SECONDS = 3.0
CDN_MAX_POLL_SECONDS = 12 * 60

Clock = Callable[[], float]


class PollerStatus(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    FOUND = "found"  # CDN poller saw renders
    DONE = "done"  # job reported mastered / all requested levels ready
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"  # gave up after the grace window
    CANCELED = "canceled"


class Poller(ABC):
    """Base for the self-rescheduling pollers."""

    name = "poller"

    def __init__(self, *, interval_seconds: float = POLL_INTERVAL_SECONDS, clock: Clock = time.monotonic) -> None:
        self._interval = interval_seconds
        self._clock = clock
        self._canceled = False
        self._task: asyncio.Task[None] | None = None
        self._started_at: float | None = None
        self.status = PollerStatus.IDLE

    @property
    def canceled(self) -> bool:
        return self._canceled

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def elapsed(self) -> float:
        return 0.0 if self._started_at is None else self._clock() - self._started_at

    def start(self) -> "Poller":
        if self._task is not None or self._canceled:
            raise RuntimeError(f"{self.name} can only be started once")
        self._started_at = self._clock()
        self.status = PollerStatus.POLLING
        self._task = asyncio.create_task(self._run(), name=self.name)
        return self

    def cancel(self) -> None:
        if self._canceled:
            return
        self._canceled = True
        if self.status in (PollerStatus.IDLE, PollerStatus.POLLING):
            self.status = PollerStatus.CANCELED
            logger.debug(f"{self.name} canceled after {self.elapsed():.0f}s")
        if self.active and self._task is not asyncio.current_task():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait until the poller has finished or been canceled."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    def _finish(self, status: PollerStatus) -> bool:
        self.status = status
        return True

    async def _run(self) -> None:
        first = True
        while not self._canceled:
            try:
                finished = await self._tick(first)
            except Exception as e:
                logger.warning(f"{self.name} tick error: {e}")
                # a callback failing after _finish() must not revive the poller
                finished = self.status is not PollerStatus.POLLING
            first = False
            if finished or self._canceled:
                return
            await asyncio.sleep(self._interval)

    @abstractmethod
    async def _tick(self, first: bool) -> bool:
        """Do one round of work; True ends the poller."""


ProbeFn = Callable[[str], Awaitable[list[str]]]


class CdnPoller(Poller):
    """Watch the CDN for renders of an uploaded storage key.

    Ends on the first tick that finds anything (`on_found`), or once
    `max_seconds` have passed without a hit (`on_timeout`), which is a
    reported outcome and not an error.
    """

    name = "cdn-poller"

    def __init__(
        self,
        storage_key: str,
        probe: ProbeFn,
        on_found: Callable[[list[str]], None],
        on_progress: Callable[[int], None],
        on_timeout: Callable[[int], None] | None = None,
        *,
        interval_seconds: float = POLL_INTERVAL_SECONDS,
        max_seconds: float = CDN_MAX_POLL_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        super().__init__(interval_seconds=interval_seconds, clock=clock)
        self.storage_key = storage_key
        self._probe = probe
        self._on_found = on_found
        self._on_progress = on_progress
        self._on_timeout = on_timeout
        self._max_seconds = max_seconds

    async def _tick(self, first: bool) -> bool:
        try:
            urls = sanitize_urls(await self._probe(self.storage_key))
        except Exception as e:
            logger.debug(f"CDN probe for {self.storage_key!r} failed: {e}")
            urls = []
        if self._canceled:
            return True

        if urls:
            logger.info(f"CDN renders found for {self.storage_key!r}: {urls}")
            self._finish(PollerStatus.FOUND)
            self._on_found(urls)
            return True

        elapsed = self.elapsed()
        if elapsed >= self._max_seconds:
            logger.warning(f"No CDN renders for {self.storage_key!r} after {elapsed:.0f}s, giving up")
            self._finish(PollerStatus.TIMED_OUT)
            if self._on_timeout:
                self._on_timeout(round(elapsed))
            return True

        self._on_progress(round(elapsed))
        return False


def describe_status(status: JobStatus) -> str:
    text = f"Status: {'mastered' if status.mastered else 'processing'}"
    if status.error:
        text += f" (error: {status.error})"
    return text


class JobStatusPoller(Poller):
    """Poll the authoritative job status until the job reports a mastered URL.

    Fetch failures are retried forever at the same interval; only `mastered`
    with a URL, or cancel(), ends the loop.
    """

    name = "job-poller"

    def __init__(
        self,
        job_id: str,
        fetch_status: Callable[[str], Awaitable[JobStatus]],
        on_done: Callable[[str, JobStatus], None],
        on_status: Callable[[str], None],
        *,
        interval_seconds: float = POLL_INTERVAL_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        super().__init__(interval_seconds=interval_seconds, clock=clock)
        self.job_id = job_id
        self._fetch_status = fetch_status
        self._on_done = on_done
        self._on_status = on_status

    async def _tick(self, first: bool) -> bool:
        try:
            status = await self._fetch_status(self.job_id)
        except Exception as e:
            logger.debug(f"Status poll for job {self.job_id} failed, retrying: {e}")
            return False
        if self._canceled:
            return True

        logger.debug(f"[job {self.job_id}] {status.model_dump(exclude_none=True)}")
        if status.expected_key:
            logger.info(f"[job {self.job_id}] expectedKey: {status.expected_key}")
        if status.expected_url:
            logger.info(f"[job {self.job_id}] expectedUrl: {status.expected_url}")

        self._on_status(describe_status(status))
        if status.mastered and status.url:
            self._finish(PollerStatus.DONE)
            self._on_done(status.url, status)
            return True
        return False

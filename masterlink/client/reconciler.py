"""Merge the job-status and CDN signals into one per-intensity playback state.

Both pollers race to discover the first playable render. Whichever sees it
first marks a shared `FirstPlayableCell`; that timestamp anchors the grace
window after which intensity polling stops even if some requested levels are
still missing.
"""

import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from loguru import logger

from masterlink.client.pollers import POLL_INTERVAL_SECONDS, Clock, Poller, PollerStatus
from masterlink.client.state import PlaybackState
from masterlink.contracts import ALL_LEVELS, IntensityEntry, IntensityReport

GRACE_WINDOW_SECONDS = 30.0
PREFERRED_LEVEL = 3


class FirstPlayableCell:
    """Set-once timestamp of the first playable render of one submission.

    Both pollers write the same fact, so the first write wins and later ones
    are ignored; the value is never cleared. A new submission gets a new cell.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._at: float | None = None

    @property
    def at(self) -> float | None:
        return self._at

    def mark(self) -> bool:
        """Record now if nothing was recorded yet. True if this call set it."""
        if self._at is not None:
            return False
        self._at = self._clock()
        return True

    def elapsed(self) -> float | None:
        return None if self._at is None else self._clock() - self._at


def requested_levels(report: IntensityReport, default: Sequence[int] = ALL_LEVELS) -> list[int]:
    return list(report.requested_levels) if report.requested_levels else list(default)


def playable_entries(entries: Iterable[IntensityEntry]) -> list[IntensityEntry]:
    return sorted((e for e in entries if e.playable), key=lambda e: e.level)


def ready_levels(entries: Iterable[IntensityEntry]) -> set[int]:
    return {e.level for e in entries if e.playable}


def choose_default_intensity(entries: Sequence[IntensityEntry]) -> int | None:
    """Level 3 when playable, otherwise the lowest playable level."""
    ready = ready_levels(entries)
    if PREFERRED_LEVEL in ready:
        return PREFERRED_LEVEL
    return min(ready) if ready else None


class StopReason(StrEnum):
    ALL_READY = "all_ready"
    GRACE_ELAPSED = "grace_elapsed"


@dataclass(frozen=True)
class StopDecision:
    reason: StopReason | None
    pending: list[int] = field(default_factory=list)

    @property
    def stop(self) -> bool:
        return self.reason is not None


def evaluate_stop(
    requested: Iterable[int],
    ready: set[int],
    first_playable_elapsed: float | None,
    grace_seconds: float = GRACE_WINDOW_SECONDS,
) -> StopDecision:
    """Stop once every requested level is ready, or once the grace window ran out."""
    requested = list(requested)
    pending = [level for level in requested if level not in ready]
    if requested and not pending:
        return StopDecision(StopReason.ALL_READY)
    if first_playable_elapsed is not None and first_playable_elapsed >= grace_seconds:
        return StopDecision(StopReason.GRACE_ELAPSED, pending)
    return StopDecision(None, pending)


def progress_text(ready: set[int], pending: Sequence[int], requested: Sequence[int]) -> str:
    if ready:
        waiting = "L" + ", ".join(map(str, pending)) if pending else "-"
        return f"Ready: L{', '.join(map(str, sorted(ready)))} • Waiting: {waiting}"
    if requested:
        target = PREFERRED_LEVEL if PREFERRED_LEVEL in requested else min(requested)
        return f"Waiting for Level {target} intensity…"
    return "No intensity URLs reported yet."


class IntensityReconciler(Poller):
    """Poll the per-level intensity URLs of a job into a PlaybackState.

    Keeps polling after the preferred level shows up so the remaining levels
    still get discovered; stops per `evaluate_stop`.
    """

    name = "intensity-poller"

    def __init__(
        self,
        job_id: str,
        fetch_intensities: Callable[[str], Awaitable[IntensityReport]],
        state: PlaybackState,
        first_playable: FirstPlayableCell,
        *,
        grace_seconds: float = GRACE_WINDOW_SECONDS,
        default_levels: Sequence[int] = ALL_LEVELS,
        interval_seconds: float = POLL_INTERVAL_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        super().__init__(interval_seconds=interval_seconds, clock=clock)
        self.job_id = job_id
        self._fetch = fetch_intensities
        self._state = state
        self._first_playable = first_playable
        self._grace_seconds = grace_seconds
        self._default_levels = list(default_levels)
        self.stop_reason: StopReason | None = None

    async def _tick(self, first: bool) -> bool:
        if first:
            self._state.set_status("Loading intensity URLs…")
        try:
            report = await self._fetch(self.job_id)
        except Exception as e:
            logger.warning(f"Intensity fetch for job {self.job_id} failed: {e}")
            return False
        if self._canceled:
            return True
        return self.apply(report)

    def apply(self, report: IntensityReport) -> bool:
        """Fold one intensity report into the state. True when polling should stop."""
        state = self._state
        if report.expected_key:
            logger.info(f"[job {self.job_id}] expectedKey (/audio): {report.expected_key}")
        if report.expected_url:
            logger.info(f"[job {self.job_id}] expectedUrl (/audio): {report.expected_url}")

        entries = report.intensities
        requested = requested_levels(report, self._default_levels)
        playable = playable_entries(entries)
        state.original_from_api = report.original_url
        state.intensities = entries
        state.requested_levels = requested

        if playable and self._first_playable.mark():
            logger.info(f"[job {self.job_id}] first playable intensity seen, grace window started")

        urls = [e.url for e in playable if e.url]
        if urls:
            state.mastered_files = urls

        preferred = choose_default_intensity(entries)
        if preferred is not None:
            preferred_url = next(e.url for e in playable if e.level == preferred)
            state.selected_intensity_level = preferred
            state.selected_mastered_index = urls.index(preferred_url)
            state.is_original = False

        ready = ready_levels(entries)
        decision = evaluate_stop(requested, ready, self._first_playable.elapsed(), self._grace_seconds)
        state.set_status(progress_text(ready, decision.pending, requested))

        if decision.reason is StopReason.ALL_READY:
            state.set_status("All requested intensities are ready.")
            return self._stop(decision.reason, PollerStatus.DONE)
        if decision.reason is StopReason.GRACE_ELAPSED:
            pending = ", ".join(f"L{level}" for level in decision.pending)
            state.set_status(
                f"CDN ready; stopping auto-poll after ~{self._grace_seconds:.0f}s grace window (still pending: {pending})."
            )
            return self._stop(decision.reason, PollerStatus.STOPPED)
        return False

    def _stop(self, reason: StopReason, status: PollerStatus) -> bool:
        self.stop_reason = reason
        logger.info(f"[job {self.job_id}] intensity polling stopped: {reason}")
        return self._finish(status)

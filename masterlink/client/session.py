"""Upload -> submit -> poll -> play workflow for one local file at a time."""

import asyncio
import mimetypes
import time
import uuid
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from masterlink.cdn.candidates import AUDIO_EXTENSIONS
from masterlink.client.api import GatewayClient, SubmitResult
from masterlink.client.media import build_variants_from, rank_found_urls
from masterlink.client.pollers import (
    CDN_MAX_POLL_SECONDS,
    POLL_INTERVAL_SECONDS,
    CdnPoller,
    Clock,
    JobStatusPoller,
    Poller,
)
from masterlink.client.reconciler import GRACE_WINDOW_SECONDS, FirstPlayableCell, IntensityReconciler
from masterlink.client.state import PlaybackState
from masterlink.contracts import ALL_LEVELS, JobStatus, MasteringMode, SubmitRequest

BYTES_PER_MB = 1024 * 1024


class PollingConfig(BaseModel):
    interval_seconds: float = Field(default=POLL_INTERVAL_SECONDS, gt=0)
    cdn_max_seconds: float = Field(default=CDN_MAX_POLL_SECONDS, gt=0)
    grace_seconds: float = Field(default=GRACE_WINDOW_SECONDS, ge=0)
    default_levels: list[int] = list(ALL_LEVELS)
    extensions: list[str] = list(AUDIO_EXTENSIONS)


def build_submit_request(
    path: Path, storage_key: str, mode: MasteringMode, title: str, content_type: str, size_bytes: int
) -> SubmitRequest:
    ext = path.suffix.lstrip(".").lower() or storage_key.rpartition(".")[2].lower()
    size_mb = round(size_bytes / BYTES_PER_MB, 2)
    return SubmitRequest(
        s3_key=storage_key,
        key=storage_key,
        mode=mode,
        title=title or path.stem,
        ext=ext,
        content_type=content_type,
        size_bytes=size_bytes,
        size_mb=size_mb,
        size=size_mb,
    )


class MasteringSession:
    """Drives one submission at a time and owns its pollers.

    At most one CDN poller, one job poller and one intensity poller exist per
    submission; selecting a new file or starting a new submission cancels all
    of them before anything new is created, and each submission gets a fresh
    FirstPlayableCell.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        *,
        polling: PollingConfig | None = None,
        state: PlaybackState | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._polling = polling or PollingConfig()
        self._clock = clock
        self.state = state or PlaybackState()
        self._file: Path | None = None
        self._first_playable = FirstPlayableCell(clock)
        self._cdn_poller: CdnPoller | None = None
        self._job_poller: JobStatusPoller | None = None
        self._intensity_poller: IntensityReconciler | None = None

    @property
    def first_playable(self) -> FirstPlayableCell:
        return self._first_playable

    @property
    def cdn_poller(self) -> CdnPoller | None:
        return self._cdn_poller

    @property
    def job_poller(self) -> JobStatusPoller | None:
        return self._job_poller

    @property
    def intensity_poller(self) -> IntensityReconciler | None:
        return self._intensity_poller

    @property
    def pollers(self) -> list[Poller]:
        return [p for p in (self._cdn_poller, self._job_poller, self._intensity_poller) if p is not None]

    # ─── lifecycle ──────────────────────────────────────────────────────────────

    def select_file(self, path: Path) -> None:
        """Start over with a new source file."""
        self.cancel_all()
        self.state.reset()
        self._first_playable = FirstPlayableCell(self._clock)
        self._file = path

        size = path.stat().st_size
        self.state.title = path.stem
        self.state.original_preview = str(path)
        self.state.set_status(f"Selected: {path.name} ({size / BYTES_PER_MB:.2f} MB)")
        logger.info(f"Selected {path} ({size} bytes)")

    def cancel_all(self) -> None:
        for poller in self.pollers:
            poller.cancel()
        self._cdn_poller = self._job_poller = self._intensity_poller = None

    async def wait(self) -> None:
        """Wait until no poller is running (pollers may start further pollers)."""
        while active := [p for p in self.pollers if p.active]:
            await asyncio.gather(*(p.wait() for p in active))

    async def aclose(self) -> None:
        pollers = self.pollers
        self.cancel_all()
        await asyncio.gather(*(p.wait() for p in pollers))
        await self._gateway.aclose()

    # ─── workflow ───────────────────────────────────────────────────────────────

    async def start(self, mode: MasteringMode = MasteringMode.PROCESS, title: str | None = None) -> None:
        """Upload the selected file, submit it and start watching for results.

        Failures end up in the status text; the CDN poller is left running in
        case the upstream accepted the job despite the error.
        """
        if self._file is None:
            raise ValueError("No file selected")
        # every submission starts with no pollers and its own grace anchor
        self.cancel_all()
        self._first_playable = FirstPlayableCell(self._clock)
        try:
            await self._upload_and_submit(self._file, mode, title or self.state.title)
        except Exception as e:
            logger.error(f"Mastering workflow failed: {e!r}")
            self.state.set_status(f"Error: {e}")
            if self._job_poller is not None:
                self._job_poller.cancel()
                self._job_poller = None

    async def _upload_and_submit(self, path: Path, mode: MasteringMode, title: str) -> None:
        started = time.monotonic()
        content_type = mimetypes.guess_type(path.name)[0] or "audio/wav"

        self.state.set_status("Requesting upload URL…")
        ticket = await self._gateway.request_upload_url(path.name, content_type)
        self.state.storage_key = ticket.s3_key
        self.state.set_status(f"Got signed URL (expires in {ticket.expires_in}s). Uploading…")

        data = await asyncio.to_thread(path.read_bytes)
        await self._gateway.upload(ticket, data, on_progress=self._on_upload_progress)
        self.state.set_status("Upload complete. Submitting mastering job…")

        request = build_submit_request(path, ticket.s3_key, mode, title, content_type, len(data))
        # Watch the CDN right away, the renders can show up before the submit returns
        self.start_cdn_polling()

        result = await self._gateway.submit(request, idempotency_key=str(uuid.uuid4()))
        self._handle_submit_result(result)
        logger.info(f"Submission finished in {int((time.monotonic() - started) * 1000)}ms")

    def _handle_submit_result(self, result: SubmitResult) -> None:
        if result.request_id:
            logger.info(f"Submit upstream request id: {result.request_id}")

        if result.accepted:
            self.state.set_status("Submit accepted. Watching CDN & polling job…")
            if result.job_id:
                self._track_job(result.job_id)
            else:
                logger.warning("202 without jobId; relying on CDN probe only")
            return

        if not result.ok:
            req = f" [req:{result.request_id}]" if result.request_id else ""
            self.state.set_status(f"Submit failed ({result.status_code}){req}: {result.error_message}")
            return

        if result.payload is None and result.text:
            raise ValueError("Submit returned non-JSON body")
        if result.job_id:
            self._track_job(result.job_id)
            self.state.set_status(f"Job queued: {result.job_id}. Polling job + CDN…")
        else:
            logger.warning("No jobId returned from submit; relying on CDN probe")
            self.state.set_status("Submitted. No jobId returned; probing CDN…")

    def _track_job(self, job_id: str) -> None:
        self.state.job_id = job_id
        self.start_job_polling(job_id)
        self.load_intensities(job_id)

    def _on_upload_progress(self, pct: int) -> None:
        self.state.progress = pct
        if pct % 10 == 0:
            logger.debug(f"upload progress: {pct}%")

    # ─── pollers ────────────────────────────────────────────────────────────────

    def start_cdn_polling(self) -> CdnPoller | None:
        key = self.state.storage_key
        if not key:
            self.state.set_status("No storage key yet, upload first.")
            return None
        if self._cdn_poller is not None:
            self._cdn_poller.cancel()

        cell = self._first_playable
        extensions = self._polling.extensions

        async def probe(storage_key: str) -> list[str]:
            return await self._gateway.cf_probe(storage_key, extensions)

        def on_found(urls: list[str]) -> None:
            ranked = rank_found_urls(urls)
            logger.info(f"CDN found urls: {ranked}")
            self.state.mastered_files = ranked
            self.state.selected_mastered_index = 0
            self.state.is_original = False
            self.state.set_status("Mastered file available (CDN)")
            cell.mark()

        def on_progress(elapsed: int) -> None:
            self.state.set_status(f"Watching CDN… ({elapsed}s)")

        def on_timeout(elapsed: int) -> None:
            self.state.set_status("Still processing. Check pipeline paths & CDN origin.")

        self._cdn_poller = CdnPoller(
            key,
            probe,
            on_found,
            on_progress,
            on_timeout,
            interval_seconds=self._polling.interval_seconds,
            max_seconds=self._polling.cdn_max_seconds,
            clock=self._clock,
        )
        self._cdn_poller.start()
        return self._cdn_poller

    def start_job_polling(self, job_id: str) -> JobStatusPoller:
        if self._job_poller is not None:
            self._job_poller.cancel()

        cell = self._first_playable

        def on_done(url: str, status: JobStatus) -> None:
            if self._cdn_poller is not None:
                self._cdn_poller.cancel()
            if status.deliverables:
                logger.info(f"[job {job_id}] deliverables: {status.deliverables}")

            variants = build_variants_from(url)
            self.state.mastered_files = variants
            self.state.selected_mastered_index = min(1, len(variants) - 1)
            self.state.is_original = False
            cell.mark()
            self.load_intensities(job_id)

        self._job_poller = JobStatusPoller(
            job_id,
            self._gateway.job_status,
            on_done,
            self.state.set_status,
            interval_seconds=self._polling.interval_seconds,
            clock=self._clock,
        )
        self._job_poller.start()
        return self._job_poller

    def load_intensities(self, job_id: str) -> IntensityReconciler:
        """(Re)start per-level intensity polling for `job_id`."""
        if self._intensity_poller is not None:
            self._intensity_poller.cancel()
        self._intensity_poller = IntensityReconciler(
            job_id,
            self._gateway.intensities,
            self.state,
            self._first_playable,
            grace_seconds=self._polling.grace_seconds,
            default_levels=self._polling.default_levels,
            interval_seconds=self._polling.interval_seconds,
            clock=self._clock,
        )
        self._intensity_poller.start()
        return self._intensity_poller

    # ─── player ─────────────────────────────────────────────────────────────────

    def select_intensity(self, level: int) -> bool:
        entry = next((e for e in self.state.intensities if e.level == level and e.playable), None)
        if entry is None or entry.url is None:
            return False
        self.state.selected_intensity_level = level
        if entry.url not in self.state.mastered_files:
            self.state.mastered_files = [*self.state.mastered_files, entry.url]
        self.state.selected_mastered_index = self.state.mastered_files.index(entry.url)
        self.state.is_original = False
        return True

    def show_original(self) -> None:
        self.state.is_original = True

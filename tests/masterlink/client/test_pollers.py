import asyncio
from unittest.mock import Mock

import pytest

from masterlink.client.pollers import CdnPoller, JobStatusPoller, PollerStatus, describe_status
from masterlink.contracts import JobStatus


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def cdn_poller(probe, clock=None, **kwargs) -> tuple[CdnPoller, Mock, Mock, Mock]:
    on_found, on_progress, on_timeout = Mock(), Mock(), Mock()
    poller = CdnPoller(
        "jobs/abc/mix.wav",
        probe,
        on_found,
        on_progress,
        on_timeout,
        interval_seconds=0,
        clock=clock or FakeClock(),
        **kwargs,
    )
    return poller, on_found, on_progress, on_timeout


class TestCdnPoller:
    @pytest.mark.asyncio
    async def test_found_on_later_tick(self):
        responses = [[], [], ["https://cdn/mix_v1.mp3", "https://cdn/{N}.mp3"]]

        async def probe(key: str) -> list[str]:
            return responses.pop(0)

        poller, on_found, on_progress, on_timeout = cdn_poller(probe)
        poller.start()
        await poller.wait()

        assert poller.status is PollerStatus.FOUND
        on_found.assert_called_once_with(["https://cdn/mix_v1.mp3"])
        assert on_progress.call_count == 2
        on_timeout.assert_not_called()

    @pytest.mark.asyncio
    async def test_times_out_after_max_seconds(self):
        clock = FakeClock()

        async def probe(key: str) -> list[str]:
            clock.advance(100)
            return []

        poller, on_found, on_progress, on_timeout = cdn_poller(probe, clock, max_seconds=250)
        poller.start()
        await poller.wait()

        assert poller.status is PollerStatus.TIMED_OUT
        assert [c.args[0] for c in on_progress.call_args_list] == [100, 200]
        on_timeout.assert_called_once_with(300)
        on_found.assert_not_called()

    @pytest.mark.asyncio
    async def test_probe_errors_count_as_nothing_found(self):
        calls = 0

        async def probe(key: str) -> list[str]:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("cdn down")
            return ["https://cdn/mix.mp3"]

        poller, on_found, _, _ = cdn_poller(probe)
        poller.start()
        await poller.wait()

        assert calls == 3
        on_found.assert_called_once_with(["https://cdn/mix.mp3"])

    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight_probe(self):
        entered = asyncio.Event()
        never = asyncio.Event()

        async def probe(key: str) -> list[str]:
            entered.set()
            await never.wait()
            return ["https://cdn/mix.mp3"]

        poller, on_found, on_progress, on_timeout = cdn_poller(probe)
        poller.start()
        await entered.wait()

        poller.cancel()
        poller.cancel()
        await poller.wait()

        assert poller.canceled
        assert not poller.active
        assert poller.status is PollerStatus.CANCELED
        on_found.assert_not_called()
        on_progress.assert_not_called()
        on_timeout.assert_not_called()

    @pytest.mark.asyncio
    async def test_result_arriving_after_cancel_is_dropped(self):
        poller: CdnPoller | None = None

        async def probe(key: str) -> list[str]:
            assert poller is not None
            poller.cancel()
            return ["https://cdn/mix.mp3"]

        poller, on_found, _, _ = cdn_poller(probe)
        poller.start()
        await poller.wait()

        assert poller.status is PollerStatus.CANCELED
        on_found.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_after_finish_keeps_outcome(self):
        async def probe(key: str) -> list[str]:
            return ["https://cdn/mix.mp3"]

        poller, _, _, _ = cdn_poller(probe)
        poller.start()
        await poller.wait()
        poller.cancel()

        assert poller.status is PollerStatus.FOUND

    @pytest.mark.asyncio
    async def test_failing_found_callback_still_ends_polling(self):
        calls = 0

        async def probe(key: str) -> list[str]:
            nonlocal calls
            calls += 1
            return ["https://cdn/mix.mp3"]

        poller, on_found, on_progress, _ = cdn_poller(probe)
        on_found.side_effect = RuntimeError("listener broke")
        poller.start()
        await poller.wait()

        assert calls == 1
        assert poller.status is PollerStatus.FOUND
        on_found.assert_called_once()
        on_progress.assert_not_called()

    @pytest.mark.asyncio
    async def test_cannot_start_twice_or_after_cancel(self):
        async def probe(key: str) -> list[str]:
            return ["https://cdn/mix.mp3"]

        poller, _, _, _ = cdn_poller(probe)
        poller.start()
        with pytest.raises(RuntimeError):
            poller.start()
        await poller.wait()

        canceled, _, _, _ = cdn_poller(probe)
        canceled.cancel()
        assert canceled.status is PollerStatus.CANCELED
        with pytest.raises(RuntimeError):
            canceled.start()


class TestJobStatusPoller:
    @pytest.mark.asyncio
    async def test_retries_until_mastered(self):
        results: list[JobStatus | Exception] = [
            ConnectionError("flaky"),
            JobStatus(mastered=False),
            JobStatus(mastered=True),  # no url yet
            JobStatus.model_validate({"mastered": True, "url": "https://cdn/mix_v3.mp3", "jobId": "job-1"}),
        ]

        async def fetch(job_id: str) -> JobStatus:
            result = results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result

        on_done, on_status = Mock(), Mock()
        poller = JobStatusPoller("job-1", fetch, on_done, on_status, interval_seconds=0, clock=FakeClock())
        poller.start()
        await poller.wait()

        assert poller.status is PollerStatus.DONE
        assert results == []
        url, status = on_done.call_args.args
        assert url == "https://cdn/mix_v3.mp3"
        assert status.job_id == "job-1"
        assert on_status.call_args_list[0].args[0] == "Status: processing"

    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self):
        calls = 0

        async def fetch(job_id: str) -> JobStatus:
            nonlocal calls
            calls += 1
            return JobStatus(mastered=False)

        on_done = Mock()
        poller = JobStatusPoller("job-1", fetch, on_done, Mock(), interval_seconds=0.01, clock=FakeClock())
        poller.start()
        await asyncio.sleep(0.05)
        poller.cancel()
        await poller.wait()
        seen = calls
        await asyncio.sleep(0.05)

        assert calls == seen
        assert poller.status is PollerStatus.CANCELED
        on_done.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_done_callback_still_ends_polling(self):
        calls = 0

        async def fetch(job_id: str) -> JobStatus:
            nonlocal calls
            calls += 1
            return JobStatus(mastered=True, url="https://cdn/mix_v3.mp3")

        on_done = Mock(side_effect=ValueError("bad url"))
        poller = JobStatusPoller("job-1", fetch, on_done, Mock(), interval_seconds=0, clock=FakeClock())
        poller.start()
        await poller.wait()

        assert calls == 1
        assert poller.status is PollerStatus.DONE
        on_done.assert_called_once()


def test_describe_status():
    assert describe_status(JobStatus(mastered=True)) == "Status: mastered"
    assert describe_status(JobStatus(mastered=False, error="queue full")) == "Status: processing (error: queue full)"

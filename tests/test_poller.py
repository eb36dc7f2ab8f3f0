import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from charactercast.pipeline.errors import NotFoundError, PersistenceError
from charactercast.pipeline.models import CharacterType, JobStatus, JobStatusResponse
from charactercast.pipeline.poller import (
    MAX_DELAY,
    JobStatusPoller,
    http_status_fetcher,
    next_poll_delay,
)


def status(value, **fields):
    return JobStatusResponse(
        id="job-1",
        status=value,
        character_type=CharacterType.BABY,
        topic="naps",
        **fields,
    )


def scripted_fetch(*responses):
    return AsyncMock(side_effect=list(responses))


def test_delay_depends_on_status():
    assert next_poll_delay(JobStatus.GENERATING_SCRIPT, 0) < next_poll_delay(JobStatus.GENERATING_VIDEO, 0)


def test_delay_grows_with_attempts_and_is_capped():
    delays = [next_poll_delay(JobStatus.GENERATING_IMAGE, attempt) for attempt in range(12)]

    assert delays == sorted(delays)
    assert delays[1] == pytest.approx(delays[0] * 1.5)
    assert max(delays) == MAX_DELAY
    assert next_poll_delay(JobStatus.GENERATING_VIDEO, 50) == MAX_DELAY


@pytest.mark.asyncio
async def test_poll_stops_at_terminal_status():
    fetch = scripted_fetch(
        status(JobStatus.GENERATING_SCRIPT),
        status(JobStatus.GENERATING_VIDEO),
        status(JobStatus.COMPLETED, video_url="https://cdn/v.mp4"),
        status(JobStatus.COMPLETED),
    )
    sleep = AsyncMock()
    updates = []

    final = await JobStatusPoller(fetch, sleep=sleep).poll("job-1", on_update=updates.append)

    assert final.video_url == "https://cdn/v.mp4"
    assert fetch.await_count == 3
    assert [u.status for u in updates] == [
        JobStatus.GENERATING_SCRIPT, JobStatus.GENERATING_VIDEO, JobStatus.COMPLETED,
    ]
    assert [c.args[0] for c in sleep.await_args_list] == [
        next_poll_delay(JobStatus.GENERATING_SCRIPT, 0),
        next_poll_delay(JobStatus.GENERATING_VIDEO, 1),
    ]


@pytest.mark.asyncio
async def test_error_status_is_terminal():
    fetch = scripted_fetch(status(JobStatus.ERROR, error_message="Image failed"))

    final = await JobStatusPoller(fetch, sleep=AsyncMock()).poll("job-1")

    assert final.status == JobStatus.ERROR
    assert final.error_message == "Image failed"


@pytest.mark.asyncio
async def test_async_update_callback_is_awaited():
    seen = []

    async def on_update(s):
        seen.append(s.status)

    fetch = scripted_fetch(status(JobStatus.COMPLETED))
    await JobStatusPoller(fetch, sleep=AsyncMock()).poll("job-1", on_update=on_update)
    assert seen == [JobStatus.COMPLETED]


@pytest.mark.asyncio
async def test_read_failure_stops_polling_and_surfaces():
    fetch = scripted_fetch(status(JobStatus.PENDING), PersistenceError("db down"), status(JobStatus.COMPLETED))
    poller = JobStatusPoller(fetch, sleep=AsyncMock())

    handle = poller.watch("job-1")
    with pytest.raises(PersistenceError):
        await handle.result()

    assert fetch.await_count == 2
    assert not poller.is_polling("job-1")


@pytest.mark.asyncio
async def test_one_loop_per_job_id():
    gate = asyncio.Event()

    async def fetch(job_id):
        await gate.wait()
        return status(JobStatus.COMPLETED)

    poller = JobStatusPoller(fetch, sleep=AsyncMock())

    first = poller.watch("job-1")
    second = poller.watch("job-1")
    other = poller.watch("job-2")

    assert first is second
    assert other is not first

    gate.set()
    await first.result()
    await other.result()
    assert not poller.is_polling("job-1")

    # A finished loop does not block a new one.
    assert poller.watch("job-1") is not first
    poller.stop_all()


@pytest.mark.asyncio
async def test_stop_cancels_loop():
    fetch = AsyncMock(return_value=status(JobStatus.GENERATING_VIDEO))
    poller = JobStatusPoller(fetch, sleep=lambda _d: asyncio.sleep(0))

    handle = poller.watch("job-1")
    await asyncio.sleep(0)
    poller.stop("job-1")

    with pytest.raises(asyncio.CancelledError):
        await handle.result()
    assert not poller.is_polling("job-1")


@pytest.mark.asyncio
async def test_http_status_fetcher():
    requests = []

    def handler(request):
        requests.append(request)
        if request.url.params["id"] == "missing":
            return httpx.Response(404, json={"detail": "Job not found"})
        return httpx.Response(200, json=status(JobStatus.GENERATING_AUDIO, script="hi").model_dump(mode="json"))

    fetch = http_status_fetcher("http://worker/", headers={"X-User-Id": "user-1"}, transport=httpx.MockTransport(handler))

    result = await fetch("job-1")
    assert result.status == JobStatus.GENERATING_AUDIO
    assert result.script == "hi"
    assert requests[0].url.path == "/content-generator/job-status"
    assert requests[0].headers["X-User-Id"] == "user-1"

    with pytest.raises(NotFoundError):
        await fetch("missing")


def test_delay_stays_capped_for_very_long_runs():
    assert next_poll_delay(JobStatus.GENERATING_VIDEO, 5000) == MAX_DELAY
    assert next_poll_delay(JobStatus.PENDING, 10_000, max_delay=1e300) < 1e300


@pytest.mark.asyncio
async def test_poll_survives_thousands_of_non_terminal_reads():
    responses = [status(JobStatus.GENERATING_VIDEO)] * 2000 + [status(JobStatus.COMPLETED)]
    sleep = AsyncMock()

    final = await JobStatusPoller(scripted_fetch(*responses), sleep=sleep).poll("job-1")

    assert final.status == JobStatus.COMPLETED
    assert sleep.await_count == 2000
    assert sleep.await_args.args[0] == MAX_DELAY

"""
Client-side job status poller.

Reads job status until it is terminal, waiting longer between reads the
further the job is from done and the more times it has been read:

    delay = min(BASE_INTERVALS[status] * BACKOFF_FACTOR ** attempt, MAX_DELAY)

A failed read stops the loop and the error is re-raised to whoever awaits
the handle. At most one loop runs per job id on a given poller.
"""

import inspect
import logging
import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx

from .errors import NotFoundError
from .models import JobStatus, JobStatusResponse

logger = logging.getLogger(__name__)

BASE_INTERVALS = {
    JobStatus.PENDING: 2.0,
    JobStatus.GENERATING_SCRIPT: 2.0,
    JobStatus.GENERATING_IMAGE: 3.0,
    JobStatus.GENERATING_AUDIO: 3.0,
    JobStatus.GENERATING_VIDEO: 10.0,
}
DEFAULT_INTERVAL = 5.0
BACKOFF_FACTOR = 1.5
MAX_DELAY = 30.0
# Exponent ceiling. 2.0 * 1.5**32 is already far above any cap.
MAX_BACKOFF_EXPONENT = 32

StatusFetcher = Callable[[str], Awaitable[JobStatusResponse]]
UpdateCallback = Callable[[JobStatusResponse], Any]


def next_poll_delay(status: JobStatus, attempt: int, max_delay: float = MAX_DELAY) -> float:
    """Seconds to wait after the `attempt`-th read (0-based) returned `status`."""
    base = BASE_INTERVALS.get(status, DEFAULT_INTERVAL)
    return min(base * (BACKOFF_FACTOR ** min(attempt, MAX_BACKOFF_EXPONENT)), max_delay)


class PollHandle:
    """Caller-owned handle for one polling loop."""

    def __init__(self, job_id: str, task: asyncio.Task):
        self.job_id = job_id
        self.task = task

    @property
    def done(self) -> bool:
        return self.task.done()

    def cancel(self) -> None:
        self.task.cancel()

    async def result(self) -> JobStatusResponse:
        """Final (terminal) status. Re-raises the read error if polling failed."""
        return await self.task


class JobStatusPoller:
    """
    Usage:
        poller = JobStatusPoller(http_status_fetcher("http://worker", headers={"X-User-Id": uid}))
        handle = poller.watch(job_id, on_update=print)
        final = await handle.result()
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_delay: float = MAX_DELAY,
    ):
        self._fetch_status = fetch_status
        self._sleep = sleep
        self.max_delay = max_delay
        self._active: dict[str, PollHandle] = {}

    async def poll(self, job_id: str, on_update: Optional[UpdateCallback] = None) -> JobStatusResponse:
        """Poll inline until the job is completed or errored."""
        attempt = 0
        while True:
            try:
                status = await self._fetch_status(job_id)
            except Exception as e:
                logger.warning(f"[{job_id}] Status read failed; stopping polling: {e}")
                raise

            if on_update is not None:
                result = on_update(status)
                if inspect.isawaitable(result):
                    await result

            if status.status.is_terminal:
                logger.info(f"[{job_id}] Polling finished: {status.status.value}")
                return status

            delay = next_poll_delay(status.status, attempt, self.max_delay)
            logger.debug(f"[{job_id}] {status.status.value}; next read in {delay:.1f}s")
            await self._sleep(delay)
            attempt += 1

    def watch(self, job_id: str, on_update: Optional[UpdateCallback] = None) -> PollHandle:
        """
        Start polling in the background. If a loop for this job id is already
        running, its handle is returned instead of starting another.
        """
        existing = self._active.get(job_id)
        if existing is not None and not existing.done:
            return existing

        task = asyncio.create_task(self.poll(job_id, on_update), name=f"poll-{job_id}")
        handle = PollHandle(job_id, task)
        self._active[job_id] = handle
        task.add_done_callback(lambda _t: self._forget(handle))
        return handle

    def _forget(self, handle: PollHandle) -> None:
        if self._active.get(handle.job_id) is handle:
            del self._active[handle.job_id]

    def is_polling(self, job_id: str) -> bool:
        handle = self._active.get(job_id)
        return handle is not None and not handle.done

    def stop(self, job_id: str) -> None:
        handle = self._active.pop(job_id, None)
        if handle is not None:
            handle.cancel()

    def stop_all(self) -> None:
        for job_id in list(self._active):
            self.stop(job_id)


def http_status_fetcher(
    base_url: str,
    headers: Optional[dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = 10,
) -> StatusFetcher:
    """Status fetcher that reads GET {base_url}/content-generator/job-status?id=..."""
    url = f"{base_url.rstrip('/')}/content-generator/job-status"

    async def fetch(job_id: str) -> JobStatusResponse:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url, params={"id": job_id}, headers=headers)
        if response.status_code == 404:
            raise NotFoundError(job_id)
        response.raise_for_status()
        return JobStatusResponse.model_validate(response.json())

    return fetch

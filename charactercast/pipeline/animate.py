"""
Stage 4: The Motion — talking-head video via Hedra.

  1. Fingerprint image + audio bytes; upload each only on an asset-cache miss
  2. Return the cached video on a generation-cache hit
  3. Submit a generation with a persona-appropriate motion prompt
  4. Wait INITIAL_POLL_DELAY, then poll up to MAX_POLL_ATTEMPTS times
  5. Download the result and store it locally

When polling runs out without a definitive answer, the stage still succeeds
with a best-guess output URL built from the generation id. That degraded
result is not cached.
"""

import os
import asyncio
import hashlib
import logging
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Optional

import httpx

from .cache import KeyValueCache
from .errors import GenerationError
from .hedra import (
    FALLBACK_OUTPUT_PATHS,
    HedraClient,
    parse_video_status_response,
)
from .models import Job
from .prompts import video_prompt
from .storage import ArtifactStorage

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

INITIAL_POLL_DELAY = float(os.getenv("HEDRA_INITIAL_POLL_DELAY", "60"))  # seconds
POLL_INTERVAL = float(os.getenv("HEDRA_POLL_INTERVAL", "30"))
MAX_POLL_ATTEMPTS = int(os.getenv("HEDRA_MAX_POLL_ATTEMPTS", "10"))

STAGE = "video"


def asset_fingerprint(data: bytes, asset_type: str) -> str:
    """Cache key for an uploaded asset: declared type + content hash + size."""
    digest = hashlib.sha256(data).hexdigest()
    return f"{asset_type}:{digest}:{len(data)}"


def generation_key(image_url: str, audio_url: str, character_type: str, topic: Optional[str]) -> str:
    return f"{image_url}:{audio_url}:{character_type}:{topic or 'no-topic'}"


class VideoGenerator:
    """
    Video stage adapter. Call it with a job snapshot; returns a video reference.

    Usage:
        generator = VideoGenerator(storage, asset_cache, video_cache)
        video_url = await generator(job)
    """

    def __init__(
        self,
        storage: ArtifactStorage,
        asset_cache: KeyValueCache,
        video_cache: KeyValueCache,
        client: Optional[HedraClient] = None,
        initial_delay: float = INITIAL_POLL_DELAY,
        poll_interval: float = POLL_INTERVAL,
        max_attempts: int = MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.storage = storage
        self.asset_cache = asset_cache
        self.video_cache = video_cache
        self.client = client or HedraClient()
        self.initial_delay = initial_delay
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def __call__(self, job: Job) -> str:
        return await self.generate(job)

    async def generate(self, job: Job) -> str:
        if not job.image_url:
            raise GenerationError(STAGE, "Image URL is missing. Cannot generate video without an image.", kind="missing_input")
        if not job.audio_url:
            raise GenerationError(STAGE, "Audio URL is missing. Cannot generate video without audio.", kind="missing_input")

        character_type = job.character_type.value
        cache_key = generation_key(job.image_url, job.audio_url, character_type, job.topic)

        cached = await asyncio.to_thread(self.video_cache.get, cache_key)
        if cached:
            logger.info(f"[{job.id}] Using cached video for {character_type}:{job.topic or 'no-topic'}")
            return cached

        image_bytes = await self._read_artifact(job.image_url, "Image")
        audio_bytes = await self._read_artifact(job.audio_url, "Audio")

        image_asset_id = await self._upload_cached(image_bytes, "image", job.image_url)
        audio_asset_id = await self._upload_cached(audio_bytes, "audio", job.audio_url)

        prompt = video_prompt(job.character_type, job.topic)
        generation_id = await self.client.create_generation(image_asset_id, audio_asset_id, prompt)
        logger.info(f"[{job.id}] Hedra generation submitted: {generation_id}")

        remote_url, definitive = await self._wait_for_completion(job.id, generation_id)

        if definitive:
            video_bytes = await self.client.download(remote_url)
            video_url = await self.storage.put(video_bytes, f"videos/{character_type}.mp4", "video/mp4")
            await asyncio.to_thread(self.video_cache.put, cache_key, video_url)
            logger.info(f"[{job.id}] Video stored: {video_url}")
            return video_url

        try:
            video_bytes = await self.client.download(remote_url)
        except GenerationError as e:
            logger.warning(f"[{job.id}] Fallback video not downloadable ({e}); using remote reference {remote_url}")
            return remote_url

        video_url = await self.storage.put(video_bytes, f"videos/{character_type}.mp4", "video/mp4")
        logger.info(f"[{job.id}] Fallback video stored: {video_url}")
        return video_url

    async def _read_artifact(self, reference: str, label: str) -> bytes:
        try:
            return await self.storage.read(reference)
        except (OSError, ValueError) as e:
            raise GenerationError(STAGE, f"{label} file not found at {reference}", kind="missing_input", cause=e) from e
        except httpx.HTTPError as e:
            raise GenerationError(STAGE, f"Failed to read {label.lower()} {reference}: {e}", kind="missing_input", cause=e) from e

    async def _upload_cached(self, data: bytes, asset_type: str, reference: str) -> str:
        """Upload only if these exact bytes have not been uploaded before."""
        key = asset_fingerprint(data, asset_type)
        asset_id = await asyncio.to_thread(self.asset_cache.get, key)
        if asset_id:
            logger.info(f"Using cached {asset_type} asset ID: {asset_id}")
            return asset_id

        asset_id = await self.client.upload_asset(data, asset_type, PurePosixPath(reference).name or asset_type)
        await asyncio.to_thread(self.asset_cache.put, key, asset_id)
        return asset_id

    async def _wait_for_completion(self, job_id: str, generation_id: str) -> tuple[str, bool]:
        """
        Poll the generation.

        Returns:
            (url, definitive). definitive is False when the URL is a guess.

        Raises:
            GenerationError: the remote job reported failure.
        """
        logger.info(f"[{job_id}] Initial wait of {self.initial_delay:.0f}s before first status check")
        await self._sleep(self.initial_delay)

        for attempt in range(1, self.max_attempts + 1):
            try:
                raw = await self.client.get_status(generation_id)
            except GenerationError as e:
                logger.warning(f"[{job_id}] Status check {attempt}/{self.max_attempts} failed: {e}")
                raw = None

            if raw is not None:
                status = parse_video_status_response(raw)

                if status.state == "complete":
                    if status.url:
                        logger.info(f"[{job_id}] Hedra generation complete: {status.url}")
                        return status.url, True
                    logger.warning(f"[{job_id}] Generation complete but no URL in response; using output endpoint")
                    return self.client.output_url(generation_id), False

                if status.state == "failed":
                    raise GenerationError(STAGE, f"Hedra job failed: {status.reason}", kind="upstream")

                pct = int((status.progress or 0) * 100)
                logger.info(f"[{job_id}] Poll {attempt}/{self.max_attempts}: still processing ({pct}%)")

            if attempt < self.max_attempts:
                await self._sleep(self.poll_interval)

        logger.warning(f"[{job_id}] Maximum status checks reached for {generation_id}; probing output URLs")
        return await self._fallback_url(generation_id), False

    async def _fallback_url(self, generation_id: str) -> str:
        candidates = [self.client.output_url(generation_id, kind) for kind in FALLBACK_OUTPUT_PATHS]
        for url in candidates:
            if await self.client.probe(url):
                logger.info(f"Found reachable video URL through direct access: {url}")
                return url
        logger.warning(f"No candidate URL reachable; using canonical fallback {candidates[0]}")
        return candidates[0]

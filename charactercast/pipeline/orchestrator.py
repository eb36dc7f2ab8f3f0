"""
ContentGenerationService — character content pipeline orchestrator.

Drives one job through the stages, persisting after every step:
  Stage 1: Script  (OpenAI chat)          → job.script
  Stage 2: Image   (OpenAI images)        → job.image_url
  Stage 3: Audio   (ElevenLabs TTS)       → job.audio_url
  Stage 4: Video   (Hedra, detached task) → job.video_url

Stages 1-3 run inline in the calling request. Stage 4 is launched as a
background task; its outcome is only visible through the job store.
"""

import uuid
import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Optional

from .. import metrics
from .audio_gen import generate_audio
from .animate import VideoGenerator
from .cache import build_cache
from .errors import (
    AuthorizationError,
    GenerationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .image_gen import generate_image
from .job_store import JobStore, build_job_store
from .models import (
    REQUIRED_ATTRIBUTES,
    CharacterType,
    Job,
    JobStatus,
    JobStatusResponse,
)
from .script_gen import generate_script
from .storage import build_artifact_storage

logger = logging.getLogger(__name__)

StageAdapter = Callable[[Job], Awaitable[str]]


@dataclass(frozen=True)
class Stage:
    name: str
    running: JobStatus
    field: str
    next_status: JobStatus
    requires: tuple[str, ...] = ()


SCRIPT = Stage("script", JobStatus.GENERATING_SCRIPT, "script", JobStatus.GENERATING_IMAGE)
IMAGE = Stage("image", JobStatus.GENERATING_IMAGE, "image_url", JobStatus.GENERATING_AUDIO, ("script",))
AUDIO = Stage("audio", JobStatus.GENERATING_AUDIO, "audio_url", JobStatus.GENERATING_VIDEO, ("script", "image_url"))

INLINE_STAGES = (SCRIPT, IMAGE, AUDIO)

_MISSING_INPUT_MESSAGES = {
    "script": "No script available. Generate the script first.",
    "image_url": "Image URL is missing. Cannot generate video without an image.",
    "audio_url": "Audio URL is missing. Cannot generate video without audio.",
}


class ContentGenerationService:
    """
    Pipeline orchestrator.

    Usage:
        service = ContentGenerationService()

        job_id = await service.submit("animal", {"species": "Dog", "trait": "Playful"}, "space", owner)
        await service.advance(job_id, owner)      # returns once the video task is launched
        status = await service.get_status(job_id, owner)

    Every adapter is injectable; the defaults wire the real providers to the
    configured job store, artifact storage and caches.
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        script_generator: Optional[StageAdapter] = None,
        image_generator: Optional[StageAdapter] = None,
        audio_generator: Optional[StageAdapter] = None,
        video_generator: Optional[StageAdapter] = None,
    ):
        self.store = store or build_job_store()

        needs_storage = image_generator is None or audio_generator is None or video_generator is None
        storage = build_artifact_storage() if needs_storage else None

        self.adapters: dict[str, StageAdapter] = {
            "script": script_generator or generate_script,
            "image": image_generator or partial(generate_image, storage=storage),
            "audio": audio_generator or partial(generate_audio, storage=storage),
        }
        self.video_generator: StageAdapter = video_generator or VideoGenerator(
            storage,
            asset_cache=build_cache("asset"),
            video_cache=build_cache("video"),
        )

        # Strong refs: the event loop only keeps weak ones.
        self._video_tasks: dict[str, asyncio.Task] = {}

    # ── Submission & reads ───────────────────────────────────────────────

    async def submit(
        self,
        character_type: Optional[str],
        attributes: Optional[dict],
        topic: Optional[str],
        owner: Optional[str],
    ) -> str:
        """
        Validate a submission and persist it as a pending job.

        Raises:
            ValidationError: a required field is absent or blank; no job is created.
        """
        if not owner:
            raise ValidationError("An owner is required to submit a job")
        if not character_type or not topic or not topic.strip() or attributes is None:
            raise ValidationError("Missing required fields: characterType, topic and attributes are required")

        try:
            ctype = CharacterType(character_type)
        except ValueError:
            allowed = ", ".join(t.value for t in CharacterType)
            raise ValidationError(f"Invalid characterType '{character_type}'. Expected one of: {allowed}")

        clean_attrs = {str(k): str(v).strip() for k, v in attributes.items() if v is not None}
        missing = [name for name in REQUIRED_ATTRIBUTES[ctype] if not clean_attrs.get(name)]
        if missing:
            raise ValidationError(f"Missing required attributes for {ctype.value}: {', '.join(missing)}")

        job = Job(
            id=str(uuid.uuid4()),
            owner=owner,
            character_type=ctype,
            character_attributes=clean_attrs,
            topic=topic.strip(),
            status=JobStatus.PENDING,
        )
        job_id = await self.store.create(job)
        metrics.inc_counter("jobs.submitted")
        logger.info(f"[{job_id}] Job submitted: {ctype.value} / {job.topic[:60]}")
        return job_id

    async def get_job(self, job_id: str, owner: str) -> Job:
        if not owner:
            raise AuthorizationError(job_id)
        job = await self.store.get(job_id, owner)
        if job is None:
            raise NotFoundError(job_id)
        return job

    async def get_status(self, job_id: str, owner: str) -> JobStatusResponse:
        return JobStatusResponse.from_job(await self.get_job(job_id, owner))

    async def _update(self, job_id: str, owner: str, **fields) -> None:
        if not await self.store.update(job_id, owner, fields):
            raise NotFoundError(job_id)
        if "status" in fields:
            logger.info(f"[{job_id}] status → {fields['status'].value}")

    # ── Pipeline driver ──────────────────────────────────────────────────

    async def advance(self, job_id: str, owner: str) -> JobStatus:
        """
        Run script → image → audio inline, then launch the video task.

        Stages whose artifact already exists are skipped, so calling this on a
        job that is mid-pipeline resumes it instead of repeating work. Terminal
        jobs are left untouched.

        Returns:
            The job status after the call (generating_video on success).

        Raises:
            NotFoundError:    job missing or owned by someone else
                              (AuthorizationError when no owner is given).
            GenerationError:  an inline stage failed; the job is already in error.
            PersistenceError: the job store failed.
        """
        job = await self.get_job(job_id, owner)
        if job.status.is_terminal:
            logger.info(f"[{job_id}] advance() on terminal job ({job.status.value}); nothing to do")
            return job.status

        for stage in INLINE_STAGES:
            if getattr(job, stage.field):
                continue
            job = await self._run_stage(job, stage)

        if job.status != JobStatus.GENERATING_VIDEO:
            await self._update(job_id, owner, status=JobStatus.GENERATING_VIDEO)

        self.launch_video_stage(job_id, owner)
        return JobStatus.GENERATING_VIDEO

    async def _run_stage(self, job: Job, stage: Stage) -> Job:
        """Run one inline stage against `job`. Returns the updated snapshot."""
        await self._update(job.id, job.owner, status=stage.running)
        snapshot = job.model_copy(update={"status": stage.running})
        adapter = self.adapters[stage.name]

        try:
            with metrics.stage_timer(stage.name):
                artifact = await adapter(snapshot)
        except GenerationError as e:
            await self._fail(job, e)
            raise
        except (PersistenceError, NotFoundError):
            raise
        except Exception as e:
            error = GenerationError(
                stage.name,
                f"Unexpected error during {stage.name} generation: {e}",
                kind="unexpected",
                cause=e,
            )
            await self._fail(job, error)
            raise error from e

        await self._update(job.id, job.owner, **{stage.field: artifact, "status": stage.next_status})
        return snapshot.model_copy(update={stage.field: artifact, "status": stage.next_status})

    async def _fail(self, job: Job, error: GenerationError) -> None:
        logger.error(f"[{job.id}] {error.stage} stage failed ({error.kind}): {error}")
        metrics.record_error(error.stage, job.id, error.kind, str(error))
        await self._update(job.id, job.owner, status=JobStatus.ERROR, error_message=str(error))

    # ── Stage triggers (retry / debugging) ───────────────────────────────

    async def _run_single(self, job_id: str, owner: str, stage: Stage) -> str:
        job = await self.get_job(job_id, owner)
        if job.status.is_terminal:
            raise ValidationError(f"Job is already {job.status.value}")

        existing = getattr(job, stage.field)
        if existing:
            logger.info(f"[{job_id}] {stage.name} already generated; returning existing artifact")
            return existing

        for field in stage.requires:
            if not getattr(job, field):
                raise ValidationError(_MISSING_INPUT_MESSAGES[field])

        job = await self._run_stage(job, stage)
        return getattr(job, stage.field)

    async def run_script_stage(self, job_id: str, owner: str) -> str:
        return await self._run_single(job_id, owner, SCRIPT)

    async def run_image_stage(self, job_id: str, owner: str) -> str:
        return await self._run_single(job_id, owner, IMAGE)

    async def run_audio_stage(self, job_id: str, owner: str) -> str:
        return await self._run_single(job_id, owner, AUDIO)

    async def run_video_stage(self, job_id: str, owner: str) -> bool:
        """
        Check the video inputs now, then launch the detached video task.

        Returns:
            True if a new task was started, False if one was already running
            or the video already exists.

        Raises:
            ValidationError: image or audio missing, or the job is terminal.
        """
        job = await self.get_job(job_id, owner)
        if job.video_url:
            return False
        if job.status.is_terminal:
            raise ValidationError(f"Job is already {job.status.value}")
        for field in ("image_url", "audio_url"):
            if not getattr(job, field):
                raise ValidationError(_MISSING_INPUT_MESSAGES[field])

        if job.status != JobStatus.GENERATING_VIDEO:
            await self._update(job_id, owner, status=JobStatus.GENERATING_VIDEO)
        return self.launch_video_stage(job_id, owner)

    # ── Detached video stage ─────────────────────────────────────────────

    def launch_video_stage(self, job_id: str, owner: str) -> bool:
        """
        Fire-and-forget the video stage. The caller gets an acknowledgement,
        not a result. At most one task per job id runs in this process.
        """
        running = self._video_tasks.get(job_id)
        if running is not None and not running.done():
            logger.info(f"[{job_id}] Video task already running; not launching another")
            return False

        task = asyncio.create_task(self._run_video_detached(job_id, owner), name=f"video-{job_id}")
        self._video_tasks[job_id] = task
        task.add_done_callback(partial(self._forget_task, job_id))

        metrics.inc_counter("video.launched")
        metrics.set_gauge("video.in_flight", len(self._video_tasks))
        logger.info(f"[{job_id}] Video generation launched in background")
        return True

    def _forget_task(self, job_id: str, task: asyncio.Task) -> None:
        if self._video_tasks.get(job_id) is task:
            del self._video_tasks[job_id]
        metrics.set_gauge("video.in_flight", len(self._video_tasks))

    async def _run_video_detached(self, job_id: str, owner: str) -> None:
        """Never raises: every outcome ends up on the job record or in the log."""
        try:
            await self._run_video(job_id, owner)
        except GenerationError as e:
            logger.error(f"[{job_id}] Background video generation failed ({e.kind}): {e}")
            metrics.record_error("video", job_id, e.kind, str(e))
            await self._record_detached_failure(job_id, owner, str(e))
        except PersistenceError as e:
            logger.error(f"[{job_id}] Job store failed during background video generation: {e}")
            await self._record_detached_failure(job_id, owner, f"Failed to save video result: {e}")
        except NotFoundError:
            logger.error(f"[{job_id}] Job disappeared before background video generation finished")
        except Exception as e:
            logger.error(f"[{job_id}] Unexpected error in background video generation: {e}", exc_info=True)
            metrics.record_error("video", job_id, "unexpected", str(e))
            await self._record_detached_failure(job_id, owner, f"Unexpected error during video generation: {e}")

    async def _run_video(self, job_id: str, owner: str) -> None:
        # Re-read: the inline stages may have committed writes after any
        # snapshot the launcher held.
        job = await self.get_job(job_id, owner)
        if job.status.is_terminal:
            logger.info(f"[{job_id}] Job is {job.status.value}; skipping video generation")
            return

        if not job.image_url or not job.audio_url:
            message = _MISSING_INPUT_MESSAGES["image_url" if not job.image_url else "audio_url"]
            logger.error(f"[{job_id}] {message}")
            await self._update(job_id, owner, status=JobStatus.ERROR, error_message=message)
            return

        with metrics.stage_timer("video"):
            video_url = await self.video_generator(job)

        await self._update(job_id, owner, video_url=video_url, status=JobStatus.COMPLETED)
        metrics.inc_counter("jobs.completed")
        logger.info(f"[{job_id}] Pipeline complete: {video_url}")

    async def _record_detached_failure(self, job_id: str, owner: str, message: str) -> None:
        """One best-effort write of the error state."""
        try:
            await self._update(job_id, owner, status=JobStatus.ERROR, error_message=message)
        except (PersistenceError, NotFoundError) as e:
            logger.error(f"[{job_id}] Could not record video failure on the job: {e}")

    async def wait_for_background_tasks(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight video tasks. Used at shutdown and in tests."""
        tasks = list(self._video_tasks.values())
        if not tasks:
            return
        logger.info(f"Waiting for {len(tasks)} background video task(s)")
        await asyncio.wait(tasks, timeout=timeout)

    @property
    def in_flight(self) -> list[str]:
        return list(self._video_tasks)

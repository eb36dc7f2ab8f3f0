"""
FastAPI routes for the character content pipeline.

  POST /content-generator/submit-form      — validate + create a pending job
  POST /content-generator/process-job      — run script/image/audio, launch video
  GET  /content-generator/job-status?id=   — job projection for the poller

Stage triggers (retry / debugging):
  POST /content-generator/generate-script
  POST /content-generator/generate-image
  POST /content-generator/generate-audio
  POST /content-generator/generate-video   — validates inputs, then launches in background

The caller's identity comes from the auth middleware (request.state.owner).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from .errors import (
    GenerationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .models import (
    JobIdRequest,
    JobStatus,
    JobStatusResponse,
    StageResponse,
    SubmitJobRequest,
    SubmitJobResponse,
)
from .orchestrator import ContentGenerationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/content-generator", tags=["content-generator"])

# Built on first request so importing the app needs no credentials.
_service: Optional[ContentGenerationService] = None


def get_service() -> ContentGenerationService:
    global _service
    if _service is None:
        _service = ContentGenerationService()
    return _service


def get_owner(request: Request) -> str:
    owner = getattr(request.state, "owner", None) or request.headers.get("X-User-Id")
    if not owner:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return owner


def _require_job_id(job_id: Optional[str]) -> str:
    if not job_id:
        raise HTTPException(status_code=400, detail="Job ID is required")
    return job_id


def _to_http(e: Exception, action: str) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail="Job not found")
    if isinstance(e, GenerationError):
        return HTTPException(status_code=500, detail=str(e))
    if isinstance(e, PersistenceError):
        logger.error(f"{action} failed on job store: {e}")
        return HTTPException(status_code=500, detail="Failed to access job")
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


# ── Submission & status ──────────────────────────────────────────────────────

@router.post("/submit-form", response_model=SubmitJobResponse)
async def submit_form(
    request: SubmitJobRequest,
    owner: str = Depends(get_owner),
    service: ContentGenerationService = Depends(get_service),
):
    """Create a job in `pending`. 400 if characterType, topic or attributes are missing."""
    try:
        job_id = await service.submit(
            character_type=request.character_type,
            attributes=request.attributes,
            topic=request.topic,
            owner=owner,
        )
    except Exception as e:
        raise _to_http(e, "Submit")
    return SubmitJobResponse(id=job_id)


@router.post("/process-job", response_model=StageResponse)
async def process_job(
    request: JobIdRequest,
    owner: str = Depends(get_owner),
    service: ContentGenerationService = Depends(get_service),
):
    """
    Run the inline stages and launch the video stage.

    Returns as soon as the video task is launched; poll job-status for the rest.
    """
    job_id = _require_job_id(request.job_id)
    try:
        status = await service.advance(job_id, owner)
    except Exception as e:
        raise _to_http(e, f"[{job_id}] Process job")

    message = {
        JobStatus.GENERATING_VIDEO: "Video generation started in background",
        JobStatus.COMPLETED: "Job already completed",
        JobStatus.ERROR: "Job already failed",
    }.get(status, "")
    return StageResponse(job_id=job_id, status=status, message=message)


@router.get("/job-status", response_model=JobStatusResponse)
async def job_status(
    id: Optional[str] = Query(None),
    owner: str = Depends(get_owner),
    service: ContentGenerationService = Depends(get_service),
):
    job_id = _require_job_id(id)
    try:
        return await service.get_status(job_id, owner)
    except Exception as e:
        raise _to_http(e, f"[{job_id}] Job status")


# ── Stage triggers ───────────────────────────────────────────────────────────

async def _stage_response(service: ContentGenerationService, job_id: str, owner: str, artifact: str, message: str):
    job = await service.get_job(job_id, owner)
    return StageResponse(job_id=job_id, status=job.status, message=message, artifact=artifact)


@router.post("/generate-script", response_model=StageResponse)
async def generate_script(
    request: JobIdRequest,
    owner: str = Depends(get_owner),
    service: ContentGenerationService = Depends(get_service),
):
    job_id = _require_job_id(request.job_id)
    try:
        script = await service.run_script_stage(job_id, owner)
        return await _stage_response(service, job_id, owner, script, "Script generated successfully")
    except Exception as e:
        raise _to_http(e, f"[{job_id}] Script generation")


@router.post("/generate-image", response_model=StageResponse)
async def generate_image(
    request: JobIdRequest,
    owner: str = Depends(get_owner),
    service: ContentGenerationService = Depends(get_service),
):
    job_id = _require_job_id(request.job_id)
    try:
        image_url = await service.run_image_stage(job_id, owner)
        return await _stage_response(service, job_id, owner, image_url, "Image generated successfully")
    except Exception as e:
        raise _to_http(e, f"[{job_id}] Image generation")


@router.post("/generate-audio", response_model=StageResponse)
async def generate_audio(
    request: JobIdRequest,
    owner: str = Depends(get_owner),
    service: ContentGenerationService = Depends(get_service),
):
    job_id = _require_job_id(request.job_id)
    try:
        audio_url = await service.run_audio_stage(job_id, owner)
        return await _stage_response(service, job_id, owner, audio_url, "Audio generated successfully")
    except Exception as e:
        raise _to_http(e, f"[{job_id}] Audio generation")


@router.post("/generate-video", response_model=StageResponse)
async def generate_video(
    request: JobIdRequest,
    owner: str = Depends(get_owner),
    service: ContentGenerationService = Depends(get_service),
):
    """400 if the image or audio is missing; otherwise acknowledges and runs in background."""
    job_id = _require_job_id(request.job_id)
    try:
        launched = await service.run_video_stage(job_id, owner)
        job = await service.get_job(job_id, owner)
    except Exception as e:
        raise _to_http(e, f"[{job_id}] Video generation")

    if job.video_url:
        message = "Video already generated"
    elif launched:
        message = "Video generation started in background"
    else:
        message = "Video generation already in progress"
    return StageResponse(job_id=job_id, status=job.status, message=message, artifact=job.video_url)

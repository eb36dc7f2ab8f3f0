"""
Pydantic models and enums for the character content pipeline.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Job Status (pipeline cursor) ─────────────────────────────────────────────

class JobStatus(str, Enum):
    PENDING = "pending"
    GENERATING_SCRIPT = "generating_script"
    GENERATING_IMAGE = "generating_image"
    GENERATING_AUDIO = "generating_audio"
    GENERATING_VIDEO = "generating_video"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR})

# Forward order of the state machine; ERROR sits outside it.
STATUS_ORDER = [
    JobStatus.PENDING,
    JobStatus.GENERATING_SCRIPT,
    JobStatus.GENERATING_IMAGE,
    JobStatus.GENERATING_AUDIO,
    JobStatus.GENERATING_VIDEO,
    JobStatus.COMPLETED,
]


# ── Character ────────────────────────────────────────────────────────────────

class CharacterType(str, Enum):
    BABY = "baby"
    ANIMAL = "animal"
    HISTORICAL = "historical"


REQUIRED_ATTRIBUTES: dict[CharacterType, tuple[str, ...]] = {
    CharacterType.BABY: ("ethnicity", "babyHair"),
    CharacterType.ANIMAL: ("species", "trait"),
    CharacterType.HISTORICAL: ("nationality", "era"),
}


# ── Job Record ───────────────────────────────────────────────────────────────

class Job(BaseModel):
    """One row of the job store. `status` decides which artifacts are set."""

    id: str
    owner: str
    character_type: CharacterType
    character_attributes: dict[str, str] = Field(default_factory=dict)
    topic: str
    status: JobStatus = JobStatus.PENDING
    script: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None  # ISO timestamp
    updated_at: Optional[str] = None


# ── API Request Models ───────────────────────────────────────────────────────

class SubmitJobRequest(BaseModel):
    """Submission boundary. Fields are optional so the service owns validation."""
    model_config = ConfigDict(populate_by_name=True)

    character_type: Optional[str] = Field(None, alias="characterType")
    topic: Optional[str] = None
    attributes: Optional[dict[str, str]] = None


class JobIdRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: Optional[str] = Field(None, alias="jobId")


# ── API Response Models ──────────────────────────────────────────────────────

class SubmitJobResponse(BaseModel):
    id: str


class JobStatusResponse(BaseModel):
    """Status boundary projection of a Job, read by the poller."""

    id: str
    status: JobStatus
    character_type: CharacterType
    character_attributes: dict[str, str] = Field(default_factory=dict)
    topic: str
    script: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            id=job.id,
            status=job.status,
            character_type=job.character_type,
            character_attributes=job.character_attributes,
            topic=job.topic,
            script=job.script,
            image_url=job.image_url,
            audio_url=job.audio_url,
            video_url=job.video_url,
            error_message=job.error_message,
        )


class StageResponse(BaseModel):
    success: bool = True
    job_id: str
    status: JobStatus
    message: str = ""
    artifact: Optional[str] = None

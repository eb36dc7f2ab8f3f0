"""Shared fixtures for the content pipeline tests."""

from io import BytesIO
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from charactercast import metrics
from charactercast.pipeline.job_store import InMemoryJobStore
from charactercast.pipeline.models import CharacterType, Job, JobStatus
from charactercast.pipeline.orchestrator import ContentGenerationService
from charactercast.pipeline.storage import LocalArtifactStorage

OWNER = "user-1"
OTHER_OWNER = "user-2"

SCRIPT_TEXT = "Woof! Today we are talking about space exploration."
IMAGE_URL = "/uploads/images/dog.png"
AUDIO_URL = "/uploads/audio/voice.mp3"
VIDEO_URL = "https://cdn/video123.mp4"


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def png_bytes() -> bytes:
    buf = BytesIO()
    Image.new("RGB", (8, 8), color=(200, 120, 40)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def storage(tmp_path) -> LocalArtifactStorage:
    return LocalArtifactStorage(tmp_path / "public")


@pytest.fixture
def adapters():
    return {
        "script_generator": AsyncMock(return_value=SCRIPT_TEXT),
        "image_generator": AsyncMock(return_value=IMAGE_URL),
        "audio_generator": AsyncMock(return_value=AUDIO_URL),
        "video_generator": AsyncMock(return_value=VIDEO_URL),
    }


@pytest.fixture
def service(store, adapters) -> ContentGenerationService:
    return ContentGenerationService(store=store, **adapters)


def make_job(**overrides) -> Job:
    fields = {
        "id": "job-1",
        "owner": OWNER,
        "character_type": CharacterType.ANIMAL,
        "character_attributes": {"species": "Dog", "trait": "Playful"},
        "topic": "space exploration",
        "status": JobStatus.PENDING,
    }
    fields.update(overrides)
    return Job(**fields)

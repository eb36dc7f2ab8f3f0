"""
Character Content Pipeline

  Submit  — validate persona + topic, create a pending job
  Advance — Script (OpenAI) → Image (OpenAI) → Audio (ElevenLabs) → Video (Hedra, background)
  Poll    — read job status with per-stage backoff until completed / error
"""

from .orchestrator import ContentGenerationService
from .routes import router
from .models import CharacterType, JobStatus

__all__ = [
    "ContentGenerationService",
    "router",
    "CharacterType",
    "JobStatus",
]

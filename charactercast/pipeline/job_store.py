"""
Job Store — owner-scoped CRUD over content generator jobs.

Every read and write filters on BOTH id and owner. A job owned by someone
else is indistinguishable from a missing one.

Backends:
  SupabaseJobStore — `content_generator_jobs` table via the service role client
  InMemoryJobStore — process-local dict, used in tests and local runs
"""

import os
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import create_client, Client

from .errors import PersistenceError
from .models import Job

logger = logging.getLogger(__name__)

JOBS_TABLE = "content_generator_jobs"
JOB_STORE_BACKEND = os.getenv("JOB_STORE_BACKEND", "supabase")

# Fields a caller may never overwrite through update().
_IMMUTABLE_FIELDS = {"id", "owner", "character_type", "character_attributes", "topic", "created_at"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobStore(ABC):

    @abstractmethod
    async def create(self, job: Job) -> str:
        """Persist a new job and return its id."""

    @abstractmethod
    async def get(self, job_id: str, owner: str) -> Optional[Job]:
        """Return the job, or None if it does not exist for this owner."""

    @abstractmethod
    async def update(self, job_id: str, owner: str, fields: dict[str, Any]) -> bool:
        """Apply a partial update. Returns False if the job does not exist for this owner."""


def _clean_fields(fields: dict[str, Any]) -> dict[str, Any]:
    bad = _IMMUTABLE_FIELDS.intersection(fields)
    if bad:
        raise ValueError(f"Cannot update immutable job fields: {sorted(bad)}")
    update = {
        k: (v.value if hasattr(v, "value") else v)
        for k, v in fields.items()
    }
    update["updated_at"] = _now_iso()
    return update


# ═════════════════════════════════════════════════════════════════════════════
# In-memory
# ═════════════════════════════════════════════════════════════════════════════

class InMemoryJobStore(JobStore):
    """Dict-backed store. Returned jobs are copies, never live references."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}

    async def create(self, job: Job) -> str:
        if job.id in self._jobs:
            raise PersistenceError(f"Job {job.id} already exists")
        now = _now_iso()
        self._jobs[job.id] = job.model_copy(
            update={"created_at": job.created_at or now, "updated_at": now},
            deep=True,
        )
        return job.id

    async def get(self, job_id: str, owner: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is None or job.owner != owner:
            return None
        return job.model_copy(deep=True)

    async def update(self, job_id: str, owner: str, fields: dict[str, Any]) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.owner != owner:
            return False
        self._jobs[job_id] = Job.model_validate({**job.model_dump(), **_clean_fields(fields)})
        return True


# ═════════════════════════════════════════════════════════════════════════════
# Supabase
# ═════════════════════════════════════════════════════════════════════════════

_service_client: Optional[Client] = None


def _get_service_client() -> Client:
    """Lazy-init Supabase client using service role key."""
    global _service_client
    if _service_client is None:
        url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _service_client = create_client(url, key)
    return _service_client


def _row_to_job(row: dict) -> Job:
    """Convert a Supabase row dict to a Job."""
    return Job(
        id=row["id"],
        owner=row["user_id"],
        character_type=row["character_type"],
        character_attributes=row.get("character_attributes") or {},
        topic=row.get("topic", ""),
        status=row.get("status", "pending"),
        script=row.get("script"),
        image_url=row.get("image_url"),
        audio_url=row.get("audio_url"),
        video_url=row.get("video_url"),
        error_message=row.get("error_message"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _job_to_row(job: Job) -> dict:
    return {
        "id": job.id,
        "user_id": job.owner,
        "character_type": job.character_type.value,
        "character_attributes": job.character_attributes,
        "topic": job.topic,
        "status": job.status.value,
        "script": job.script,
        "image_url": job.image_url,
        "audio_url": job.audio_url,
        "video_url": job.video_url,
        "error_message": job.error_message,
    }


class SupabaseJobStore(JobStore):
    """
    Store backed by the `content_generator_jobs` table.

    supabase-py is synchronous, so each call runs in a worker thread.
    """

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = _get_service_client()
        return self._client

    async def create(self, job: Job) -> str:
        def _insert():
            return self.client.table(JOBS_TABLE).insert(_job_to_row(job)).execute()

        try:
            result = await asyncio.to_thread(_insert)
        except Exception as e:
            logger.error(f"[{job.id}] Job insert failed: {e}")
            raise PersistenceError(f"Failed to create job: {e}") from e

        rows = result.data or []
        return rows[0]["id"] if rows else job.id

    async def get(self, job_id: str, owner: str) -> Optional[Job]:
        def _select():
            return (
                self.client.table(JOBS_TABLE)
                .select("*")
                .eq("id", job_id)
                .eq("user_id", owner)
                .limit(1)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_select)
        except Exception as e:
            logger.error(f"[{job_id}] Job fetch failed: {e}")
            raise PersistenceError(f"Failed to retrieve job: {e}") from e

        rows = result.data or []
        return _row_to_job(rows[0]) if rows else None

    async def update(self, job_id: str, owner: str, fields: dict[str, Any]) -> bool:
        update = _clean_fields(fields)

        def _update():
            return (
                self.client.table(JOBS_TABLE)
                .update(update)
                .eq("id", job_id)
                .eq("user_id", owner)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_update)
        except Exception as e:
            logger.error(f"[{job_id}] Job update failed ({sorted(update)}): {e}")
            raise PersistenceError(f"Failed to update job: {e}") from e

        return bool(result.data)


def build_job_store(backend: Optional[str] = None) -> JobStore:
    backend = (backend or JOB_STORE_BACKEND).lower()
    if backend == "memory":
        logger.warning("Using in-memory job store — jobs are lost on restart")
        return InMemoryJobStore()
    if backend == "supabase":
        return SupabaseJobStore()
    raise ValueError(f"Unknown JOB_STORE_BACKEND: {backend}")

"""
Hedra REST client for talking-head video generation.

Protocol:
  POST /assets                      → { id }         create asset record
  POST /assets/{id}/upload          (multipart)      attach the bytes
  POST /generations                 → { id }         start a video job
  GET  /generations/{id}/status     → see parse_video_status_response
  GET  /generations/{id}/output                      canonical output location
"""

import os
import logging
import mimetypes
from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel

from .errors import GenerationError
from .providers import call_provider, json_body, require_api_key

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

HEDRA_API_KEY = os.getenv("HEDRA_API_KEY") or os.getenv("NEXT_PUBLIC_HEDRA_API_KEY", "")
HEDRA_API_BASE = os.getenv("HEDRA_API_BASE", "https://api.hedra.com/web-app/public")
HEDRA_MODEL_ID = os.getenv("HEDRA_MODEL_ID", "d1dd37a3-e39a-4854-a298-6510289f9cf2")

VIDEO_RESOLUTION = "720p"
VIDEO_ASPECT_RATIO = "9:16"

STAGE = "video"

COMPLETE_STATUSES = {"complete", "completed"}
FAILED_STATUSES = {"error", "failed"}
URL_FIELDS = ("video_url", "output_url", "media_url", "download_url")

# Tried in order when polling runs out; the first one is the canonical fallback.
FALLBACK_OUTPUT_PATHS = ("output", "video", "download")


# ── Status parsing ───────────────────────────────────────────────────────────

class VideoStatus(BaseModel):
    state: Literal["complete", "pending", "failed"]
    url: Optional[str] = None
    reason: Optional[str] = None
    progress: Optional[float] = None


def _first_url(record: dict) -> Optional[str]:
    asset = record.get("asset")
    if isinstance(asset, dict) and asset.get("url"):
        return asset["url"]

    if record.get("url"):
        return record["url"]

    for field in URL_FIELDS:
        if record.get(field):
            return record[field]

    output = record.get("output")
    if isinstance(output, dict):
        if output.get("url"):
            return output["url"]
        for field in URL_FIELDS:
            if output.get(field):
                return output[field]

    return None


def parse_video_status_response(raw: Any) -> VideoStatus:
    """
    Normalize a generation status payload.

    Handles a plain object, an object carrying a nested `asset`, and a list
    whose first element is the generation. A completed generation with no
    URL anywhere comes back as state="complete", url=None.
    """
    record = raw
    if isinstance(raw, list):
        record = raw[0] if raw else {}
    if not isinstance(record, dict):
        return VideoStatus(state="pending")

    status = str(record.get("status") or "").lower()

    if status in COMPLETE_STATUSES:
        return VideoStatus(state="complete", url=_first_url(record))

    if status in FAILED_STATUSES:
        reason = record.get("error_message") or record.get("error") or "Unknown reason"
        return VideoStatus(state="failed", reason=str(reason))

    progress = record.get("progress")
    try:
        progress = float(progress) if progress is not None else None
    except (TypeError, ValueError):
        progress = None
    return VideoStatus(state="pending", progress=progress)


# ── Client ───────────────────────────────────────────────────────────────────

class HedraClient:

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = HEDRA_API_BASE,
        model_id: str = HEDRA_MODEL_ID,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key if api_key is not None else HEDRA_API_KEY
        self.base_url = base_url.rstrip("/")
        self.model_id = model_id
        self._transport = transport

    def _headers(self, **extra) -> dict:
        key = require_api_key(self._api_key, STAGE, "Hedra", "HEDRA_API_KEY")
        return {"X-API-Key": key, **extra}

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True)

    async def upload_asset(self, data: bytes, asset_type: Literal["image", "audio"], name: str) -> str:
        """Create an asset record and upload the file into it. Returns the asset id."""
        content_type = mimetypes.guess_type(name)[0] or (
            "image/jpeg" if asset_type == "image" else "audio/mpeg"
        )

        async with self._client(timeout=60) as client:
            created = await call_provider(
                client, "POST", f"{self.base_url}/assets",
                stage=STAGE, provider="Hedra",
                headers=self._headers(**{"Content-Type": "application/json"}),
                json={"type": asset_type, "name": name},
            )
            asset_id = (json_body(created, STAGE, "Hedra") or {}).get("id")
            if not asset_id:
                raise GenerationError(STAGE, f"Failed to create {asset_type} asset record in Hedra", kind="malformed")

            await call_provider(
                client, "POST", f"{self.base_url}/assets/{asset_id}/upload",
                stage=STAGE, provider="Hedra",
                headers=self._headers(),
                files={"file": (name, data, content_type)},
            )

        logger.info(f"Uploaded {asset_type} asset to Hedra: {asset_id} ({name})")
        return asset_id

    async def create_generation(self, image_asset_id: str, audio_asset_id: str, text_prompt: str) -> str:
        """Submit a video generation job. Returns the generation id."""
        payload = {
            "type": "video",
            "ai_model_id": self.model_id,
            "start_keyframe_id": image_asset_id,
            "audio_id": audio_asset_id,
            "generated_video_inputs": {
                "text_prompt": text_prompt,
                "resolution": VIDEO_RESOLUTION,
                "aspect_ratio": VIDEO_ASPECT_RATIO,
                "duration_ms": 0,  # 0 → full audio length
            },
        }

        async with self._client(timeout=30) as client:
            response = await call_provider(
                client, "POST", f"{self.base_url}/generations",
                stage=STAGE, provider="Hedra",
                headers=self._headers(**{"Content-Type": "application/json"}),
                json=payload,
            )

        generation_id = (json_body(response, STAGE, "Hedra") or {}).get("id")
        if not generation_id:
            raise GenerationError(STAGE, "Failed to create Hedra job", kind="malformed")
        return generation_id

    async def get_status(self, generation_id: str) -> Any:
        """Raw status payload for a generation."""
        async with self._client(timeout=10) as client:
            response = await call_provider(
                client, "GET", f"{self.base_url}/generations/{generation_id}/status",
                stage=STAGE, provider="Hedra",
                headers=self._headers(Accept="application/json"),
            )
        return json_body(response, STAGE, "Hedra")

    def output_url(self, generation_id: str, kind: str = "output") -> str:
        return f"{self.base_url}/generations/{generation_id}/{kind}"

    async def probe(self, url: str) -> bool:
        """HEAD a candidate output URL."""
        try:
            async with self._client(timeout=5) as client:
                response = await client.head(url, headers=self._headers())
            return response.is_success
        except httpx.HTTPError:
            return False

    async def download(self, url: str) -> bytes:
        headers = self._headers() if url.startswith(self.base_url) else None
        async with self._client(timeout=120) as client:
            response = await call_provider(
                client, "GET", url,
                stage=STAGE, provider="Hedra",
                headers=headers,
            )
        if not response.content:
            raise GenerationError(STAGE, "Downloaded video is empty", kind="malformed")
        return response.content

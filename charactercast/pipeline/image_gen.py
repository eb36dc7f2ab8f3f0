"""
Stage 2: Character image — OpenAI image generation.

Builds a podcast-studio portrait prompt from the persona attributes, decodes
the returned image, checks it really is an image, and stores it.
"""

import os
import base64
import binascii
import logging
from io import BytesIO
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import GenerationError
from .models import Job
from .prompts import image_prompt
from .providers import call_provider, json_body, require_api_key
from .storage import ArtifactStorage, download_bytes

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
IMAGE_MODEL = os.getenv("OPENAI_IMAGE_MODEL", "gpt-image-1")
IMAGE_SIZE = os.getenv("OPENAI_IMAGE_SIZE", "1024x1536")  # vertical

STAGE = "image"


def verify_image(data: bytes) -> str:
    """
    Check that bytes decode as an image and return the lowercase format name.

    Raises:
        GenerationError: the payload is not a readable image.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
            fmt = (img.format or "png").lower()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise GenerationError(STAGE, "Image payload is not a valid image", kind="malformed", cause=e) from e
    return "jpg" if fmt == "jpeg" else fmt


async def _image_bytes(item: dict, transport: Optional[httpx.AsyncBaseTransport]) -> bytes:
    if item.get("b64_json"):
        try:
            return base64.b64decode(item["b64_json"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise GenerationError(STAGE, "Image payload is not valid base64", kind="malformed", cause=e) from e

    if item.get("url"):
        try:
            return await download_bytes(item["url"], transport=transport)
        except httpx.HTTPError as e:
            raise GenerationError(STAGE, f"Failed to download generated image: {e}", kind="upstream", cause=e) from e

    raise GenerationError(STAGE, "No image data returned from OpenAI in a recognized format", kind="malformed")


async def generate_image(
    job: Job,
    storage: ArtifactStorage,
    *,
    api_key: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """
    Generate and store the character image.

    Returns:
        Storage reference of the saved image.
    """
    key = require_api_key(api_key or OPENAI_API_KEY, STAGE, "OpenAI", "OPENAI_API_KEY")
    prompt = image_prompt(job.character_type, job.character_attributes)

    async with httpx.AsyncClient(timeout=180, transport=transport) as client:
        response = await call_provider(
            client, "POST", f"{OPENAI_API_BASE}/images/generations",
            stage=STAGE, provider="OpenAI",
            headers={"Authorization": f"Bearer {key}"},
            json={"model": IMAGE_MODEL, "prompt": prompt, "size": IMAGE_SIZE},
        )
    result = json_body(response, STAGE, "OpenAI")

    data = result.get("data") or []
    if not data:
        raise GenerationError(STAGE, "No data returned from OpenAI image generation", kind="malformed")

    item = data[0]
    image_data = await _image_bytes(item, transport)
    ext = verify_image(image_data)

    if item.get("revised_prompt"):
        logger.info(f"[{job.id}] Image revised prompt: {item['revised_prompt'][:120]}")

    image_url = await storage.put(
        image_data,
        f"images/{job.character_type.value}.{ext}",
        "image/jpeg" if ext == "jpg" else f"image/{ext}",
    )
    logger.info(f"[{job.id}] Image generated: {image_url}")
    return image_url

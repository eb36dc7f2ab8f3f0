"""
Stage 1: Script — OpenAI chat completions.

Writes a short persona monologue about the job's topic. The model is asked
for {"Podcast": "..."}; the monologue is unwrapped when it comes back that way.
"""

import os
import json
import logging
from typing import Optional

import httpx

from .errors import GenerationError
from .models import Job
from .prompts import script_system_prompt, script_user_prompt
from .providers import call_provider, json_body, require_api_key

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
SCRIPT_MODEL = os.getenv("OPENAI_SCRIPT_MODEL", "gpt-4.1")
SCRIPT_MAX_TOKENS = int(os.getenv("SCRIPT_MAX_TOKENS", "500"))
SCRIPT_TEMPERATURE = float(os.getenv("SCRIPT_TEMPERATURE", "0.7"))

STAGE = "script"


def unwrap_monologue(text: str) -> str:
    """
    Pull the monologue out of a {"Podcast": ...} reply.

    Code fences are stripped first. Anything that is not that JSON shape is
    returned as-is.
    """
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[-1]
    if text.endswith("```"):
        text = text.rsplit("```", 1)[0]
    text = text.strip()

    try:
        data = json.loads(text)
    except ValueError:
        return text

    if isinstance(data, dict):
        podcast = data.get("Podcast") or data.get("podcast")
        if isinstance(podcast, str):
            return podcast.strip()
    return text


async def generate_script(
    job: Job,
    *,
    api_key: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """
    Generate the monologue text for a job.

    Raises:
        GenerationError: auth/rate-limit/upstream failure or an empty reply.
    """
    key = require_api_key(api_key or OPENAI_API_KEY, STAGE, "OpenAI", "OPENAI_API_KEY")

    request_body = {
        "model": SCRIPT_MODEL,
        "messages": [
            {"role": "system", "content": script_system_prompt(job.character_type, job.character_attributes)},
            {"role": "user", "content": script_user_prompt(job.topic)},
        ],
        "temperature": SCRIPT_TEMPERATURE,
        "max_tokens": SCRIPT_MAX_TOKENS,
    }

    async with httpx.AsyncClient(timeout=60, transport=transport) as client:
        response = await call_provider(
            client, "POST", f"{OPENAI_API_BASE}/chat/completions",
            stage=STAGE, provider="OpenAI",
            headers={"Authorization": f"Bearer {key}"},
            json=request_body,
        )
    result = json_body(response, STAGE, "OpenAI")

    choices = result.get("choices") or []
    content = ""
    if choices:
        content = (choices[0].get("message") or {}).get("content") or ""

    script = unwrap_monologue(content)
    if not script:
        raise GenerationError(STAGE, "OpenAI returned an empty script", kind="malformed")

    logger.info(f"[{job.id}] Script generated ({len(script)} chars)")
    return script

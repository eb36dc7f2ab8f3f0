"""
Stage 3: Voice — ElevenLabs text-to-speech.

Voice selection is a pure lookup on (character type, attributes):
  baby       → one fixed voice
  animal     → by species, default Dog
  historical → by era, default Modern
"""

import os
import logging
from typing import Optional

import httpx

from .errors import GenerationError
from .models import CharacterType, Job
from .providers import call_provider, require_api_key
from .storage import ArtifactStorage

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

ELEVEN_LABS_API_KEY = os.getenv("ELEVEN_LABS_API_KEY") or os.getenv("NEXT_PUBLIC_ELEVEN_LABS_API_KEY", "")
ELEVEN_LABS_API_BASE = os.getenv("ELEVEN_LABS_API_BASE", "https://api.elevenlabs.io/v1")
ELEVEN_LABS_MODEL = os.getenv("ELEVEN_LABS_MODEL", "eleven_monolingual_v1")

VOICE_SETTINGS = {"stability": 0.75, "similarity_boost": 0.75}

STAGE = "audio"

# ── Voices ───────────────────────────────────────────────────────────────────

DEFAULT_VOICE_ID = "BtWabtumIemAotTjP5sk"

ANIMAL_VOICES = {
    "Dog": "XrExE9yKIg1WjnnlVkGX",
    "Cat": "z9fAnlkpzviPz146aGWa",
    "Elephant": "g5CIjZEefAph4nQFvHAz",
    "Lion": "VR6AewLTigWG4xSOukaG",
    "Monkey": "ErXwobaYiN019PkySvjV",
    "Penguin": "MF3mGyEYCl7XYWbV9V6O",
}
DEFAULT_ANIMAL = "Dog"

HISTORICAL_VOICES = {
    "Ancient": "TxGEqnHWrfWFTfGW9XjX",
    "Medieval": "AZnzlk1XvdvUeBnXmlld",
    "Renaissance": "1tNePSElFnDmAyDqkLSY",
    "Industrial": "ODq5zmih8GkE1Yx5CZz6",
    "Modern": "SOYHLrjzK2X1ezoPC6cr",
}
DEFAULT_ERA = "Modern"


def select_voice(character_type: CharacterType | str, attributes: dict) -> str:
    """Map a persona to an ElevenLabs voice id. Unknown values fall back per type."""
    try:
        character_type = CharacterType(character_type)
    except ValueError:
        return DEFAULT_VOICE_ID

    if character_type == CharacterType.BABY:
        # Bald and non-bald babies share one voice.
        return DEFAULT_VOICE_ID
    if character_type == CharacterType.ANIMAL:
        return ANIMAL_VOICES.get(attributes.get("species", ""), ANIMAL_VOICES[DEFAULT_ANIMAL])
    if character_type == CharacterType.HISTORICAL:
        return HISTORICAL_VOICES.get(attributes.get("era", ""), HISTORICAL_VOICES[DEFAULT_ERA])
    return DEFAULT_VOICE_ID


async def synthesize_speech(
    text: str,
    voice_id: str,
    *,
    api_key: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bytes:
    """Call ElevenLabs and return MP3 bytes."""
    key = require_api_key(api_key or ELEVEN_LABS_API_KEY, STAGE, "ElevenLabs", "ELEVEN_LABS_API_KEY")

    async with httpx.AsyncClient(timeout=120, transport=transport) as client:
        response = await call_provider(
            client, "POST", f"{ELEVEN_LABS_API_BASE}/text-to-speech/{voice_id}",
            stage=STAGE, provider="ElevenLabs",
            headers={
                "Accept": "audio/mpeg",
                "Content-Type": "application/json",
                "xi-api-key": key,
            },
            json={
                "text": text,
                "model_id": ELEVEN_LABS_MODEL,
                "voice_settings": VOICE_SETTINGS,
            },
        )

    if not response.content:
        raise GenerationError(STAGE, "ElevenLabs returned no audio", kind="malformed")
    return response.content


async def generate_audio(
    job: Job,
    storage: ArtifactStorage,
    *,
    api_key: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """
    Voice the job's script and store the MP3.

    Returns:
        Storage reference of the saved audio.
    """
    if not job.script:
        raise GenerationError(STAGE, "No script available for audio generation", kind="missing_input")

    voice_id = select_voice(job.character_type, job.character_attributes)
    logger.info(f"[{job.id}] Synthesizing speech with voice {voice_id}")

    audio = await synthesize_speech(job.script, voice_id, api_key=api_key, transport=transport)
    audio_url = await storage.put(audio, "audio/voice.mp3", "audio/mpeg")

    logger.info(f"[{job.id}] Audio generated: {audio_url} ({len(audio)} bytes)")
    return audio_url

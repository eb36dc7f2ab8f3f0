import base64
import json

import httpx
import pytest

from charactercast.pipeline import audio_gen, image_gen, script_gen
from charactercast.pipeline.audio_gen import (
    ANIMAL_VOICES,
    DEFAULT_VOICE_ID,
    HISTORICAL_VOICES,
    generate_audio,
    select_voice,
)
from charactercast.pipeline.errors import GenerationError
from charactercast.pipeline.image_gen import generate_image, verify_image
from charactercast.pipeline.models import CharacterType
from charactercast.pipeline.script_gen import generate_script, unwrap_monologue

from conftest import make_job


def json_transport(status, body, calls=None):
    def handler(request):
        if calls is not None:
            calls.append(request)
        return httpx.Response(status, json=body)
    return httpx.MockTransport(handler)


# ── Script ───────────────────────────────────────────────────────────────────

def test_unwrap_monologue():
    assert unwrap_monologue('{"Podcast": " Hello there "}') == "Hello there"
    assert unwrap_monologue('```json\n{"Podcast": "Fenced"}\n```') == "Fenced"
    assert unwrap_monologue("Just plain text.") == "Just plain text."
    assert unwrap_monologue('{"other": 1}') == '{"other": 1}'


@pytest.mark.asyncio
async def test_generate_script_sends_persona_and_topic():
    calls = []
    transport = json_transport(200, {"choices": [{"message": {"content": '{"Podcast": "Woof, space!"}'}}]}, calls)

    script = await generate_script(make_job(), api_key="sk-test", transport=transport)

    assert script == "Woof, space!"
    request = calls[0]
    assert request.url.path.endswith("/chat/completions")
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert "Dog" in body["messages"][0]["content"]
    assert "space exploration" in body["messages"][1]["content"]
    assert body["max_tokens"] == script_gen.SCRIPT_MAX_TOKENS


@pytest.mark.asyncio
@pytest.mark.parametrize("status, kind", [(401, "auth"), (429, "rate_limit"), (400, "validation"), (503, "upstream")])
async def test_generate_script_maps_provider_errors(status, kind):
    transport = json_transport(status, {"error": {"message": "nope"}})

    with pytest.raises(GenerationError) as exc:
        await generate_script(make_job(), api_key="sk-test", transport=transport)

    assert exc.value.kind == kind
    assert exc.value.stage == "script"
    assert exc.value.status_code == status


@pytest.mark.asyncio
async def test_generate_script_empty_reply_is_malformed():
    transport = json_transport(200, {"choices": [{"message": {"content": "  "}}]})

    with pytest.raises(GenerationError) as exc:
        await generate_script(make_job(), api_key="sk-test", transport=transport)
    assert exc.value.kind == "malformed"


@pytest.mark.asyncio
async def test_generate_script_network_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GenerationError) as exc:
        await generate_script(make_job(), api_key="sk-test", transport=httpx.MockTransport(handler))
    assert exc.value.kind == "network"


@pytest.mark.asyncio
async def test_missing_openai_key(monkeypatch):
    monkeypatch.setattr(script_gen, "OPENAI_API_KEY", "")

    with pytest.raises(GenerationError) as exc:
        await generate_script(make_job())
    assert exc.value.kind == "auth"


# ── Image ────────────────────────────────────────────────────────────────────

def test_verify_image(png_bytes):
    assert verify_image(png_bytes) == "png"
    with pytest.raises(GenerationError):
        verify_image(b"definitely not an image")


@pytest.mark.asyncio
async def test_generate_image_from_base64(storage, png_bytes):
    calls = []
    body = {"data": [{"b64_json": base64.b64encode(png_bytes).decode(), "revised_prompt": "a dog"}]}

    image_url = await generate_image(
        make_job(), storage, api_key="sk-test", transport=json_transport(200, body, calls)
    )

    assert image_url.startswith("/uploads/images/")
    assert image_url.endswith("-animal.png")
    assert await storage.read(image_url) == png_bytes
    sent = json.loads(calls[0].content)
    assert sent["model"] == image_gen.IMAGE_MODEL
    assert "podcast studio" in sent["prompt"]


@pytest.mark.asyncio
async def test_generate_image_downloads_url_payload(storage, png_bytes):
    def handler(request):
        if request.url.path.endswith("/images/generations"):
            return httpx.Response(200, json={"data": [{"url": "https://img.test/out.png"}]})
        return httpx.Response(200, content=png_bytes)

    image_url = await generate_image(make_job(), storage, api_key="sk-test", transport=httpx.MockTransport(handler))

    assert await storage.read(image_url) == png_bytes


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"data": []}, {"data": [{"something": "else"}]}])
async def test_generate_image_without_payload_fails(storage, body):
    with pytest.raises(GenerationError) as exc:
        await generate_image(make_job(), storage, api_key="sk-test", transport=json_transport(200, body))
    assert exc.value.kind == "malformed"


# ── Audio ────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "character_type, attributes, voice",
    [
        ("baby", {"ethnicity": "Asian", "babyHair": "bald"}, DEFAULT_VOICE_ID),
        ("baby", {"ethnicity": "Asian", "babyHair": "curly"}, DEFAULT_VOICE_ID),
        ("animal", {"species": "Cat"}, ANIMAL_VOICES["Cat"]),
        ("animal", {"species": "Axolotl"}, ANIMAL_VOICES["Dog"]),
        (CharacterType.HISTORICAL, {"era": "Medieval"}, HISTORICAL_VOICES["Medieval"]),
        ("historical", {}, HISTORICAL_VOICES["Modern"]),
        ("robot", {"species": "Cat"}, DEFAULT_VOICE_ID),
    ],
)
def test_select_voice(character_type, attributes, voice):
    assert select_voice(character_type, attributes) == voice


@pytest.mark.asyncio
async def test_generate_audio_uses_selected_voice(storage):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=b"ID3-mp3-bytes")

    job = make_job(script="Woof, space!", character_attributes={"species": "Lion", "trait": "Brave"})
    audio_url = await generate_audio(job, storage, api_key="el-test", transport=httpx.MockTransport(handler))

    assert audio_url.endswith("-voice.mp3")
    assert await storage.read(audio_url) == b"ID3-mp3-bytes"
    assert calls[0].url.path.endswith(f"/text-to-speech/{ANIMAL_VOICES['Lion']}")
    assert calls[0].headers["xi-api-key"] == "el-test"
    assert json.loads(calls[0].content)["text"] == "Woof, space!"


@pytest.mark.asyncio
async def test_generate_audio_requires_script(storage):
    with pytest.raises(GenerationError) as exc:
        await generate_audio(make_job(), storage, api_key="el-test")
    assert exc.value.kind == "missing_input"


@pytest.mark.asyncio
async def test_generate_audio_missing_key(monkeypatch, storage):
    monkeypatch.setattr(audio_gen, "ELEVEN_LABS_API_KEY", "")

    with pytest.raises(GenerationError, match="ELEVEN_LABS_API_KEY"):
        await generate_audio(make_job(script="hi"), storage)

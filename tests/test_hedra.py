import json

import httpx
import pytest

from charactercast.pipeline.errors import GenerationError
from charactercast.pipeline.hedra import HedraClient, parse_video_status_response

BASE = "https://hedra.test/public"


# ── parse_video_status_response ──────────────────────────────────────────────

@pytest.mark.parametrize(
    "raw, url",
    [
        ({"status": "complete", "url": "https://v/top.mp4"}, "https://v/top.mp4"),
        ({"status": "completed", "asset": {"url": "https://v/asset.mp4"}}, "https://v/asset.mp4"),
        ([{"status": "complete", "asset": {"url": "https://v/list.mp4"}}], "https://v/list.mp4"),
        ({"status": "COMPLETE", "video_url": "https://v/video_url.mp4"}, "https://v/video_url.mp4"),
        ({"status": "complete", "download_url": "https://v/dl.mp4"}, "https://v/dl.mp4"),
        ({"status": "complete", "output": {"media_url": "https://v/out.mp4"}}, "https://v/out.mp4"),
    ],
)
def test_complete_shapes(raw, url):
    status = parse_video_status_response(raw)
    assert status.state == "complete"
    assert status.url == url


def test_complete_without_url():
    status = parse_video_status_response({"status": "complete", "asset": {}})
    assert status.state == "complete"
    assert status.url is None


@pytest.mark.parametrize(
    "raw, reason",
    [
        ({"status": "error", "error_message": "bad audio"}, "bad audio"),
        ({"status": "failed", "error": "timeout"}, "timeout"),
        ([{"status": "failed"}], "Unknown reason"),
    ],
)
def test_failed_shapes(raw, reason):
    status = parse_video_status_response(raw)
    assert status.state == "failed"
    assert status.reason == reason


@pytest.mark.parametrize(
    "raw",
    [
        {"status": "processing", "progress": 0.5},
        {"status": "queued"},
        {},
        [],
        None,
        "complete",
    ],
)
def test_everything_else_is_pending(raw):
    assert parse_video_status_response(raw).state == "pending"


def test_progress_is_parsed_when_numeric():
    assert parse_video_status_response({"status": "processing", "progress": "0.25"}).progress == 0.25
    assert parse_video_status_response({"status": "processing", "progress": "n/a"}).progress is None


# ── HedraClient ──────────────────────────────────────────────────────────────

def recording_transport(routes):
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        key = (request.method, request.url.path)
        status, body = routes.get(key, (404, {"error": "not found"}))
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler), calls


@pytest.mark.asyncio
async def test_upload_asset_creates_then_uploads():
    transport, calls = recording_transport({
        ("POST", "/public/assets"): (200, {"id": "asset-9"}),
        ("POST", "/public/assets/asset-9/upload"): (200, {"ok": True}),
    })
    client = HedraClient(api_key="hk", base_url=BASE, transport=transport)

    asset_id = await client.upload_asset(b"png-bytes", "image", "dog.png")

    assert asset_id == "asset-9"
    assert [c.url.path for c in calls] == ["/public/assets", "/public/assets/asset-9/upload"]
    assert json.loads(calls[0].content) == {"type": "image", "name": "dog.png"}
    assert calls[0].headers["X-API-Key"] == "hk"
    assert b"png-bytes" in calls[1].content


@pytest.mark.asyncio
async def test_create_generation_payload():
    transport, calls = recording_transport({("POST", "/public/generations"): (200, {"id": "gen-7"})})
    client = HedraClient(api_key="hk", base_url=BASE, model_id="model-x", transport=transport)

    generation_id = await client.create_generation("img-1", "aud-1", "A dog talking")

    assert generation_id == "gen-7"
    payload = json.loads(calls[0].content)
    assert payload["ai_model_id"] == "model-x"
    assert payload["start_keyframe_id"] == "img-1"
    assert payload["audio_id"] == "aud-1"
    assert payload["generated_video_inputs"]["text_prompt"] == "A dog talking"
    assert payload["generated_video_inputs"]["aspect_ratio"] == "9:16"


@pytest.mark.asyncio
async def test_create_generation_without_id_is_malformed():
    transport, _ = recording_transport({("POST", "/public/generations"): (200, {})})
    client = HedraClient(api_key="hk", base_url=BASE, transport=transport)

    with pytest.raises(GenerationError) as exc:
        await client.create_generation("img-1", "aud-1", "prompt")
    assert exc.value.kind == "malformed"


@pytest.mark.asyncio
async def test_auth_and_rate_limit_errors_are_mapped():
    transport, _ = recording_transport({
        ("POST", "/public/generations"): (429, {"error": "slow down"}),
        ("GET", "/public/generations/gen-1/status"): (401, {"error": "bad key"}),
    })
    client = HedraClient(api_key="hk", base_url=BASE, transport=transport)

    with pytest.raises(GenerationError) as exc:
        await client.create_generation("i", "a", "p")
    assert exc.value.kind == "rate_limit"
    assert exc.value.status_code == 429

    with pytest.raises(GenerationError) as exc:
        await client.get_status("gen-1")
    assert exc.value.kind == "auth"


@pytest.mark.asyncio
async def test_missing_api_key_is_auth_error():
    client = HedraClient(api_key="", base_url=BASE, transport=httpx.MockTransport(lambda r: httpx.Response(200)))

    with pytest.raises(GenerationError) as exc:
        await client.get_status("gen-1")
    assert exc.value.kind == "auth"
    assert "HEDRA_API_KEY" in str(exc.value)


@pytest.mark.asyncio
async def test_probe_and_download():
    transport, _ = recording_transport({
        ("HEAD", "/public/generations/gen-1/video"): (200, b""),
        ("GET", "/public/generations/gen-1/video"): (200, b"mp4-bytes"),
        ("GET", "/public/generations/gen-1/download"): (200, b""),
    })
    client = HedraClient(api_key="hk", base_url=BASE, transport=transport)

    assert await client.probe(client.output_url("gen-1", "video")) is True
    assert await client.probe(client.output_url("gen-1")) is False
    assert await client.download(client.output_url("gen-1", "video")) == b"mp4-bytes"

    with pytest.raises(GenerationError, match="empty"):
        await client.download(client.output_url("gen-1", "download"))

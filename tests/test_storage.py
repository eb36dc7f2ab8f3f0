from unittest.mock import MagicMock

import httpx
import pytest
from botocore.exceptions import ClientError

from charactercast.pipeline.storage import R2ArtifactStorage, artifact_key, is_remote


def test_artifact_key_layout():
    key = artifact_key("images/baby.png")
    assert key.startswith("uploads/images/")
    assert key.endswith("-baby.png")
    assert artifact_key("images/baby.png") != key

    assert artifact_key("loose.bin").startswith("uploads/misc/")


def test_is_remote():
    assert is_remote("https://cdn/video.mp4")
    assert not is_remote("/uploads/videos/v.mp4")


@pytest.mark.asyncio
async def test_local_put_exists_read(storage, tmp_path):
    reference = await storage.put(b"hello", "audio/voice.mp3", "audio/mpeg")

    assert reference.startswith("/uploads/audio/")
    assert (tmp_path / "public" / reference.lstrip("/")).read_bytes() == b"hello"
    assert await storage.exists(reference)
    assert await storage.read(reference) == b"hello"
    assert not await storage.exists("/uploads/audio/missing.mp3")


@pytest.mark.asyncio
async def test_local_refuses_paths_outside_root(storage):
    assert not await storage.exists("/../../etc/passwd")
    with pytest.raises(ValueError):
        await storage.read("/../../etc/passwd")


@pytest.mark.asyncio
async def test_local_read_missing_file(storage):
    with pytest.raises(FileNotFoundError):
        await storage.read("/uploads/images/nothing.png")


@pytest.mark.asyncio
async def test_local_reads_remote_references_over_http(tmp_path):
    from charactercast.pipeline.storage import LocalArtifactStorage

    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"remote-bytes"))
    storage = LocalArtifactStorage(tmp_path, transport=transport)

    assert await storage.read("https://cdn/video.mp4") == b"remote-bytes"
    assert not await storage.exists("https://cdn/video.mp4")


@pytest.mark.asyncio
async def test_r2_put_and_exists():
    s3 = MagicMock()
    storage = R2ArtifactStorage(bucket="assets", public_url="https://pub.r2.dev/", s3_client=s3)

    url = await storage.put(b"png", "images/dog.png", "image/png")

    assert url.startswith("https://pub.r2.dev/uploads/images/")
    kwargs = s3.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "assets"
    assert kwargs["ContentType"] == "image/png"
    assert url.endswith(kwargs["Key"])

    assert await storage.exists(url)
    s3.head_object.side_effect = ClientError({"Error": {"Code": "404"}}, "HeadObject")
    assert not await storage.exists(url)
    assert not await storage.exists("https://elsewhere/x.png")

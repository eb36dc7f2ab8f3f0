"""
Durable artifact storage for generated images, audio and video.

  put(bytes, suggested_name) -> public reference
  exists(reference)          -> bool
  read(reference)            -> bytes

Backends:
  LocalArtifactStorage — files under {PUBLIC_DIR}/uploads/..., referenced as
                         "/uploads/<folder>/<file>" and served statically
  R2ArtifactStorage    — Cloudflare R2 via the S3 API, referenced by public URL
"""

import os
import time
import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional
from uuid import uuid4

import httpx

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")
PUBLIC_DIR = os.getenv("PUBLIC_DIR", "./public")
UPLOADS_PREFIX = "uploads"

R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "assets")


# ── Helpers ──────────────────────────────────────────────────────────────────

def is_remote(reference: str) -> bool:
    return reference.startswith(("http://", "https://"))


def artifact_key(suggested_name: str) -> str:
    """
    Build a unique object key from a suggested "folder/name.ext".

    "images/baby.png" -> "uploads/images/1718000000000-3f2a9c1e-baby.png"
    """
    path = PurePosixPath(suggested_name)
    folder = str(path.parent) if str(path.parent) != "." else "misc"
    filename = f"{int(time.time() * 1000)}-{uuid4().hex[:8]}-{path.name}"
    return f"{UPLOADS_PREFIX}/{folder}/{filename}"


async def download_bytes(
    url: str,
    timeout: float = 60,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    headers: Optional[dict] = None,
) -> bytes:
    """Download a public URL and return raw bytes."""
    async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True) as client:
        resp = await client.get(url, headers=headers)
        resp.raise_for_status()
        return resp.content


class ArtifactStorage(ABC):

    @abstractmethod
    async def put(self, data: bytes, suggested_name: str, content_type: str = "application/octet-stream") -> str:
        ...

    @abstractmethod
    async def exists(self, reference: str) -> bool:
        ...

    @abstractmethod
    async def read(self, reference: str) -> bytes:
        ...


# ═════════════════════════════════════════════════════════════════════════════
# Local filesystem
# ═════════════════════════════════════════════════════════════════════════════

class LocalArtifactStorage(ArtifactStorage):

    def __init__(self, root: str | Path = PUBLIC_DIR, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.root = Path(root)
        self._transport = transport

    def path_for(self, reference: str) -> Path:
        relative = reference.lstrip("/")
        path = (self.root / relative).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Reference escapes storage root: {reference}")
        return path

    async def put(self, data: bytes, suggested_name: str, content_type: str = "application/octet-stream") -> str:
        key = artifact_key(suggested_name)
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        reference = f"/{key}"
        logger.info(f"Stored artifact: {reference} ({len(data)} bytes, {content_type})")
        return reference

    async def exists(self, reference: str) -> bool:
        if is_remote(reference):
            return False
        try:
            return self.path_for(reference).is_file()
        except ValueError:
            return False

    async def read(self, reference: str) -> bytes:
        if is_remote(reference):
            return await download_bytes(reference, transport=self._transport)
        path = self.path_for(reference)
        if not path.is_file():
            raise FileNotFoundError(f"Artifact not found at path: {path}")
        return await asyncio.to_thread(path.read_bytes)


# ═════════════════════════════════════════════════════════════════════════════
# Cloudflare R2
# ═════════════════════════════════════════════════════════════════════════════

class R2ArtifactStorage(ArtifactStorage):
    """Uploads through boto3's S3 client pointed at the R2 endpoint."""

    def __init__(
        self,
        bucket: str = R2_BUCKET_NAME,
        public_url: str = R2_PUBLIC_URL,
        s3_client=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self._s3 = s3_client
        self._transport = transport

    @property
    def s3(self):
        if self._s3 is None:
            import boto3
            from botocore.config import Config as BotoConfig

            self._s3 = boto3.client(
                "s3",
                endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
                aws_access_key_id=R2_ACCESS_KEY_ID,
                aws_secret_access_key=R2_SECRET_ACCESS_KEY,
                config=BotoConfig(signature_version="s3v4"),
                region_name="auto",
            )
        return self._s3

    def key_for(self, reference: str) -> Optional[str]:
        prefix = f"{self.public_url}/"
        if reference.startswith(prefix):
            return reference[len(prefix):]
        return None

    async def put(self, data: bytes, suggested_name: str, content_type: str = "application/octet-stream") -> str:
        key = artifact_key(suggested_name)
        try:
            await asyncio.to_thread(
                self.s3.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            logger.error(f"R2 upload failed for key={key}: {e}")
            raise

        public_url = f"{self.public_url}/{key}"
        logger.info(f"Uploaded to R2: {public_url}")
        return public_url

    async def exists(self, reference: str) -> bool:
        key = self.key_for(reference)
        if key is None:
            return False
        from botocore.exceptions import ClientError

        try:
            await asyncio.to_thread(self.s3.head_object, Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    async def read(self, reference: str) -> bytes:
        return await download_bytes(reference, transport=self._transport)


def build_artifact_storage(backend: Optional[str] = None) -> ArtifactStorage:
    backend = (backend or STORAGE_BACKEND).lower()
    if backend == "local":
        return LocalArtifactStorage(PUBLIC_DIR)
    if backend == "r2":
        return R2ArtifactStorage()
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")

"""Durable artifact storage on S3-compatible object storage."""
import asyncio
import mimetypes
import os
from typing import Any, Optional
from urllib.parse import urlparse

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from genledger.config import settings

logger = structlog.get_logger(__name__)

DEFAULT_CONTENT_TYPE = "image/webp"

VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".avi", ".mkv")

IMAGE_EXTENSIONS_BY_TYPE = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
}

VIDEO_EXTENSIONS_BY_TYPE = {
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "video/x-msvideo": "avi",
    "video/x-matroska": "mkv",
}


def is_video(content_type: str, url: str = "") -> bool:
    """Classify an artifact as video from its content type or URL extension."""
    if content_type.startswith("video/"):
        return True
    path = urlparse(url).path.lower()
    return path.endswith(VIDEO_EXTENSIONS)


def classify_content_type(header_value: Optional[str], url: str) -> str:
    """
    Decide the content type for a downloaded artifact.

    Args:
        header_value: ``Content-Type`` response header, if any
        url: Source URL, used for extension-based guessing

    Returns:
        Bare MIME type (parameters stripped)
    """
    if header_value:
        content_type = header_value.split(";", 1)[0].strip().lower()
        if content_type and content_type != "application/octet-stream":
            return content_type

    guessed, _ = mimetypes.guess_type(urlparse(url).path)
    if guessed:
        return guessed
    return DEFAULT_CONTENT_TYPE


def extension_for(content_type: str, url: str = "") -> str:
    """File extension for a stored artifact."""
    if is_video(content_type, url):
        if content_type in VIDEO_EXTENSIONS_BY_TYPE:
            return VIDEO_EXTENSIONS_BY_TYPE[content_type]
        ext = os.path.splitext(urlparse(url).path)[1].lower().lstrip(".")
        return ext if f".{ext}" in VIDEO_EXTENSIONS else "mp4"
    return IMAGE_EXTENSIONS_BY_TYPE.get(content_type, "webp")


class S3Storage:
    """Owner-scoped artifact storage in image/video buckets."""

    def __init__(self, client: Any = None):
        """Initialize storage with a boto3 S3 client."""
        self.client = client or boto3.client(
            "s3",
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
        )

    def bucket_for(self, content_type: str, path: str = "") -> str:
        return settings.video_bucket if is_video(content_type, path) else settings.image_bucket

    def public_url(self, bucket: str, key: str) -> str:
        if settings.storage_public_base_url:
            return f"{settings.storage_public_base_url.rstrip('/')}/{bucket}/{key}"
        return f"https://{bucket}.s3.{settings.aws_region}.amazonaws.com/{key}"

    def is_durable(self, url: str) -> bool:
        """True when the URL points into one of our artifact buckets."""
        for bucket in (settings.image_bucket, settings.video_bucket):
            if url.startswith(self.public_url(bucket, "")):
                return True
        return False

    def _locate(self, url: str) -> Optional[tuple[str, str]]:
        for bucket in (settings.image_bucket, settings.video_bucket):
            prefix = self.public_url(bucket, "")
            if url.startswith(prefix):
                return bucket, url[len(prefix):]
        return None

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """
        Write an object and return its durable URL.

        Args:
            path: Owner-scoped object key
            data: Object bytes
            content_type: MIME type stored with the object

        Returns:
            Public URL of the stored object
        """
        bucket = self.bucket_for(content_type, path)
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
        )
        logger.debug("artifact_stored", bucket=bucket, key=path, size=len(data))
        return self.public_url(bucket, path)

    async def head(self, url: str) -> bool:
        """Check that a durable URL resolves to an existing object."""
        located = self._locate(url)
        if located is None:
            return False
        bucket, key = located
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        except BotoCoreError as e:
            logger.warning("artifact_head_failed", url=url, error=str(e))
            return False

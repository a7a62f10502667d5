"""Storage providers for finished videos."""

from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from scenecast.core.config import Settings
from scenecast.core.errors import UploadError
from scenecast.utils.io_utils import sanitize_filename

VIDEO_CONTENT_TYPE = "video/mp4"


def build_object_key(prefix: str, folder: str, identifier: str) -> str:
    """Join prefix/folder/identifier.mp4, dropping empty parts."""
    parts = [part.strip("/") for part in (prefix, folder) if part and part.strip("/")]
    parts.append(f"{sanitize_filename(identifier)}.mp4")
    return "/".join(parts)


class StorageProvider:
    """Accepts raw video bytes and returns a publicly resolvable URL."""

    def __init__(self, settings: Settings, logger: Any):
        self.settings = settings
        self.logger = logger

    def upload_video(self, data: bytes, folder: str, identifier: str) -> str:
        """
        Store a video.

        Args:
            data: Encoded MP4 bytes
            folder: Logical folder (e.g. "videos")
            identifier: Object name without extension (usually the job id)

        Returns:
            Public URL of the stored video

        Raises:
            UploadError: On any storage failure
        """
        raise NotImplementedError


class LocalStorageProvider(StorageProvider):
    """Writes videos into a locally served public directory."""

    def __init__(self, settings: Settings, logger: Any):
        super().__init__(settings, logger)
        self.public_dir = Path(settings.public_dir)

    def upload_video(self, data: bytes, folder: str, identifier: str) -> str:
        if not data:
            raise UploadError("Refusing to store an empty video")

        key = build_object_key("", folder, identifier)
        target = self.public_dir / key
        tmp_target = target.with_suffix(".mp4.part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_target.write_bytes(data)
            tmp_target.replace(target)
        except OSError as e:
            tmp_target.unlink(missing_ok=True)
            raise UploadError(f"Could not write video to {target}: {e}") from e

        if self.settings.public_base_url:
            url = f"{self.settings.public_base_url.rstrip('/')}/{key}"
        else:
            url = target.resolve().as_uri()
        self.logger.info(f"✅ Video stored locally: {url}")
        return url


class S3StorageProvider(StorageProvider):
    """Uploads videos to S3 or an S3-compatible endpoint (e.g. DigitalOcean Spaces)."""

    def __init__(self, settings: Settings, logger: Any, client: Optional[Any] = None):
        """
        Initialize S3 provider.

        Args:
            settings: Application settings
            logger: Logger instance
            client: Pre-built boto3 S3 client (built from settings when omitted)
        """
        super().__init__(settings, logger)
        if not settings.s3_bucket:
            raise UploadError("S3 storage selected but S3_BUCKET is not set")
        self.bucket = settings.s3_bucket
        self.client = client or boto3.client(
            "s3",
            region_name=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            config=BotoConfig(signature_version="s3v4"),
        )

    def public_url(self, key: str) -> str:
        if self.settings.public_base_url:
            return f"{self.settings.public_base_url.rstrip('/')}/{key}"
        if self.settings.s3_endpoint_url:
            return f"{self.settings.s3_endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        region = self.settings.s3_region or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{key}"

    def upload_video(self, data: bytes, folder: str, identifier: str) -> str:
        if not data:
            raise UploadError("Refusing to upload an empty video")

        key = build_object_key(self.settings.s3_prefix, folder, identifier)
        extra = {"ACL": "public-read"} if self.settings.s3_public_read else {}

        self.logger.info(f"Uploading {len(data)} bytes to s3://{self.bucket}/{key}")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=VIDEO_CONTENT_TYPE,
                **extra,
            )
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"Upload to s3://{self.bucket}/{key} failed: {e}") from e

        url = self.public_url(key)
        self.logger.info(f"✅ Video uploaded: {url}")
        return url


def get_storage_provider(settings: Settings, logger: Any) -> StorageProvider:
    """
    Select the storage provider named by settings.storage_type.

    Raises:
        ValueError: For an unknown storage type
    """
    storage_type = settings.storage_type.lower()
    if storage_type == "local":
        return LocalStorageProvider(settings, logger)
    if storage_type == "s3":
        return S3StorageProvider(settings, logger)
    raise ValueError(f"Unknown storage type: {settings.storage_type}")

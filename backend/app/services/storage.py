"""Storage service with provider interface (GCS/S3)."""

import asyncio
import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional

from app.core.config import get_settings, StorageProvider
from app.core.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class UploadedFile:
    """A file received from the client, ready to be stored."""

    filename: str
    content: bytes
    content_type: str = "image/jpeg"
    description: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


class StorageProviderInterface(ABC):
    """Abstract interface for storage providers."""

    @abstractmethod
    async def upload_object(self, object_path: str, content: bytes, content_type: str) -> None:
        """Write ``content`` to ``object_path``."""
        pass

    @abstractmethod
    def public_url(self, object_path: str) -> str:
        """Publicly resolvable URL of a stored object."""
        pass


class GCSStorageProvider(StorageProviderInterface):
    """Google Cloud Storage provider."""

    def __init__(self, bucket_name: str, project_id: Optional[str] = None):
        self.bucket_name = bucket_name
        self.project_id = project_id
        self._client = None

    @property
    def client(self):
        if self._client is None:
            from google.cloud import storage
            self._client = storage.Client(project=self.project_id)
        return self._client

    @property
    def bucket(self):
        return self.client.bucket(self.bucket_name)

    async def upload_object(self, object_path: str, content: bytes, content_type: str) -> None:
        blob = self.bucket.blob(object_path)
        await asyncio.to_thread(blob.upload_from_string, content, content_type=content_type)

    def public_url(self, object_path: str) -> str:
        return f"https://storage.googleapis.com/{self.bucket_name}/{object_path}"


class S3StorageProvider(StorageProviderInterface):
    """AWS S3 storage provider."""

    def __init__(
        self,
        bucket_name: str,
        region: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ):
        self.bucket_name = bucket_name
        self.region = region
        self._client = None
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key

    @property
    def client(self):
        if self._client is None:
            import boto3
            self._client = boto3.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
            )
        return self._client

    async def upload_object(self, object_path: str, content: bytes, content_type: str) -> None:
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket_name,
            Key=object_path,
            Body=content,
            ContentType=content_type,
        )

    def public_url(self, object_path: str) -> str:
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{object_path}"


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    """Strip directories and unsafe characters from a client file name."""
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name or "upload"


class StorageService:
    """High-level storage service wrapping provider interface."""

    ALLOWED_MIME_TYPES = {
        "image/jpeg",
        "image/png",
        "image/webp",
        "image/gif",
        "image/heic",
    }

    def __init__(
        self,
        provider: StorageProviderInterface,
        max_upload_size_mb: int = 10,
        public_base_url: Optional[str] = None,
    ):
        self.provider = provider
        self.max_upload_size_mb = max_upload_size_mb
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def validate(self, file: UploadedFile) -> None:
        """Reject files that can never be stored. Raises ValidationError."""
        if not file.content:
            raise ValidationError(f"File '{file.filename}' is empty", filename=file.filename)
        if file.content_type not in self.ALLOWED_MIME_TYPES:
            raise ValidationError(
                f"Unsupported file type '{file.content_type}', images only",
                filename=file.filename,
            )
        if file.size > self.max_upload_size_mb * 1024 * 1024:
            raise ValidationError(
                f"File '{file.filename}' exceeds maximum of {self.max_upload_size_mb}MB",
                filename=file.filename,
            )

    def object_path(self, folder: str, file: UploadedFile) -> str:
        """Generate a unique object path; stored objects are never overwritten."""
        file_uuid = uuid.uuid4()
        return f"{folder.strip('/')}/{file_uuid}-{safe_filename(file.filename)}"

    def url_for(self, object_path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{object_path}"
        return self.provider.public_url(object_path)

    async def upload(self, file: UploadedFile, folder: str) -> str:
        """Store ``file`` under ``folder`` and return its public URL."""
        self.validate(file)
        object_path = self.object_path(folder, file)
        try:
            await self.provider.upload_object(object_path, file.content, file.content_type)
        except Exception as e:
            logger.error(f"[STORAGE] Upload of {object_path} failed: {e}")
            raise StorageError(
                f"Could not upload '{file.filename}', please try again",
                filename=file.filename,
            ) from e

        logger.info(f"[STORAGE] Stored {object_path} ({file.size} bytes)")
        return self.url_for(object_path)


def get_storage_service() -> StorageService:
    """Factory function to get storage service based on config."""
    settings = get_settings()
    if settings.storage_provider == StorageProvider.GCS:
        provider = GCSStorageProvider(
            bucket_name=settings.bucket_name,
            project_id=settings.gcs_project_id,
        )
    else:
        provider = S3StorageProvider(
            bucket_name=settings.bucket_name,
            region=settings.aws_region or "us-east-1",
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
        )

    return StorageService(
        provider,
        max_upload_size_mb=settings.max_upload_size_mb,
        public_base_url=settings.public_base_url,
    )

"""
Archive storage abstraction. S3 OR local filesystem. Controlled by FF_USE_S3 flag.

Keys are relative paths like "2025-01-31/{session_id}/{conversation_id}_summary.json".
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    @abstractmethod
    async def write(self, key: str, data: bytes, content_type: str = "application/json") -> str:
        """Store data under key. Returns the path/URL of the stored object."""
        ...

    @abstractmethod
    async def read(self, key: str) -> Optional[bytes]:
        """Read a stored object. None if it does not exist."""
        ...

    @abstractmethod
    async def list_keys(self, suffix: str = "") -> list[str]:
        """All keys ending with suffix."""
        ...


class S3Storage(StorageBackend):
    def __init__(self, bucket: Optional[str] = None, prefix: Optional[str] = None):
        settings = get_settings()
        self.bucket = bucket or settings.s3_bucket_name
        self.prefix = (prefix if prefix is not None else settings.conversations_prefix).strip("/")
        self._client = None

    def _get_client(self):
        if self._client is None:
            import boto3

            settings = get_settings()
            kwargs = {"region_name": settings.aws_region}
            if settings.aws_access_key_id:
                kwargs["aws_access_key_id"] = settings.aws_access_key_id
                kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def _relative(self, full_key: str) -> str:
        if self.prefix and full_key.startswith(self.prefix + "/"):
            return full_key[len(self.prefix) + 1:]
        return full_key

    async def write(self, key: str, data: bytes, content_type: str = "application/json") -> str:
        full_key = self._full_key(key)
        client = self._get_client()
        await asyncio.to_thread(
            client.put_object,
            Bucket=self.bucket,
            Key=full_key,
            Body=data,
            ContentType=content_type,
            ServerSideEncryption="AES256",
        )
        logger.info("Uploaded to S3: s3://%s/%s", self.bucket, full_key)
        return f"s3://{self.bucket}/{full_key}"

    async def read(self, key: str) -> Optional[bytes]:
        client = self._get_client()
        try:
            response = await asyncio.to_thread(
                client.get_object, Bucket=self.bucket, Key=self._full_key(key)
            )
        except client.exceptions.NoSuchKey:
            return None
        return await asyncio.to_thread(response["Body"].read)

    async def list_keys(self, suffix: str = "") -> list[str]:
        client = self._get_client()
        paginator = client.get_paginator("list_objects_v2")
        prefix = f"{self.prefix}/" if self.prefix else ""

        def _collect() -> list[str]:
            keys = []
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    if obj["Key"].endswith(suffix):
                        keys.append(self._relative(obj["Key"]))
            return keys

        return await asyncio.to_thread(_collect)


class LocalStorage(StorageBackend):
    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or get_settings().conversations_dir)

    async def write(self, key: str, data: bytes, content_type: str = "application/json") -> str:
        file_path = self.base_path / key
        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Readers never see a partial file
        tmp_path = file_path.with_name(file_path.name + ".tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(file_path)

        result = str(file_path)
        logger.info("Saved locally: %s", result)
        return result

    async def read(self, key: str) -> Optional[bytes]:
        file_path = self.base_path / key
        if not file_path.is_file():
            return None
        return file_path.read_bytes()

    async def list_keys(self, suffix: str = "") -> list[str]:
        if not self.base_path.exists():
            return []
        keys = (
            p.relative_to(self.base_path).as_posix()
            for p in self.base_path.rglob("*")
            if p.is_file() and not p.name.endswith(".tmp")
        )
        return sorted(k for k in keys if k.endswith(suffix))


def get_storage() -> StorageBackend:
    """Return the active storage backend based on feature flags."""
    flags = get_flags()
    if flags.use_s3:
        return S3Storage()
    return LocalStorage()

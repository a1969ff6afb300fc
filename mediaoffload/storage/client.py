from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from mediaoffload.core.config import Settings

logger = logging.getLogger(__name__)


class ObjectStorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class DeleteError:
    key: str
    code: str | None
    message: str | None


class ObjectStorageClient(Protocol):
    provider_name: str
    bucket: str

    def put_object(self, local_path: Path, key: str) -> str: ...

    def head_object(self, key: str) -> bool: ...

    def delete_object(self, key: str) -> None: ...

    def delete_objects(self, keys: Sequence[str]) -> list[DeleteError]: ...


class S3ObjectStorage:
    """S3-compatible storage client (AWS, Wasabi, R2, MinIO...)."""

    def __init__(self, settings: Settings, client: Any | None = None):
        self._settings = settings
        self.provider_name = settings.storage_provider
        self.bucket = settings.storage_bucket
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self._settings.storage_endpoint_url,
                region_name=self._settings.storage_region,
                aws_access_key_id=self._settings.storage_access_key_id,
                aws_secret_access_key=self._settings.storage_secret_access_key,
                config=Config(
                    s3={"addressing_style": "path" if self._settings.storage_path_style else "auto"},
                    retries={"max_attempts": 3, "mode": "standard"},
                    connect_timeout=self._settings.storage_connect_timeout_seconds,
                ),
            )
        return self._client

    def object_url(self, key: str) -> str:
        if self._settings.storage_domain:
            return f"{self._settings.storage_domain}{key}"
        endpoint = self._settings.storage_endpoint_url
        if endpoint:
            return f"{endpoint.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self._settings.storage_region}.amazonaws.com/{key}"

    def put_object(self, local_path: Path, key: str) -> str:
        extra_args: dict[str, str] = {"ACL": self._settings.storage_object_acl}
        content_type, _ = mimetypes.guess_type(local_path.name)
        if content_type:
            extra_args["ContentType"] = content_type
        try:
            self.client.upload_file(str(local_path), self.bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStorageError(f"Error uploading {key}: {exc}") from exc
        return self.object_url(key)

    def head_object(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in {"404", "NoSuchKey", "NotFound"}:
                return False
            raise ObjectStorageError(f"Error checking {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStorageError(f"Error checking {key}: {exc}") from exc
        return True

    def delete_object(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStorageError(f"Error deleting {key}: {exc}") from exc

    def delete_objects(self, keys: Sequence[str]) -> list[DeleteError]:
        if not keys:
            return []
        try:
            response = self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
            )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStorageError(f"Batch delete of {len(keys)} objects failed: {exc}") from exc
        return [
            DeleteError(key=str(item.get("Key", "")), code=item.get("Code"), message=item.get("Message"))
            for item in response.get("Errors", []) or []
        ]

    def check_connection(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Storage connection check failed for bucket %s: %s", self.bucket, exc)
            return False
        return True

"""
Amazon S3 story storage.
"""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from storybook.common import StorageError

from .base import StoryStorage

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class S3StoryStorage(StoryStorage):
    """
    Store story folders as ``{prefix}/{folder}/{filename}`` objects in one bucket.

    Parameters
    ----------
    bucket:
        Target bucket name.
    region:
        Bucket region, used for the client and for public object URLs.
    prefix:
        Key prefix under which story folders live.
    client:
        Optional pre-configured boto3 S3 client. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        bucket: str,
        region: str | None = None,
        prefix: str = "stories",
        client: Any | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("An S3 bucket name is required for the s3 storage backend.")
        self.bucket = bucket
        self.region = region or "us-east-1"
        self.prefix = prefix.strip("/")
        self._client = client or boto3.client("s3", region_name=self.region)
        self.url_prefix = f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{self.prefix}"

    def key_for(self, folder: str, filename: str) -> str:
        return f"{self.prefix}/{folder}/{filename}" if self.prefix else f"{folder}/{filename}"

    def url_for(self, folder: str, filename: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{self.key_for(folder, filename)}"

    def write_bytes(
        self,
        folder: str,
        filename: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> str:
        key = self.key_for(folder, filename)
        put_args: dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            put_args["ContentType"] = content_type
        try:
            self._client.put_object(**put_args)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"put_object failed for s3://{self.bucket}/{key}: {exc}") from exc
        logger.info("Wrote s3://%s/%s (%d bytes)", self.bucket, key, len(data))
        return self.url_for(folder, filename)

    def read_bytes(self, folder: str, filename: str) -> bytes | None:
        key = self.key_for(folder, filename)
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise StorageError(f"get_object failed for s3://{self.bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"get_object failed for s3://{self.bucket}/{key}: {exc}") from exc
        return obj["Body"].read()

    def exists(self, folder: str, filename: str) -> bool:
        return self._head(folder, filename) is not None

    def list_folders(self) -> list[str]:
        folder_prefix = f"{self.prefix}/" if self.prefix else ""
        paginator = self._client.get_paginator("list_objects_v2")
        folders: list[str] = []
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=folder_prefix, Delimiter="/"):
                for entry in page.get("CommonPrefixes", []):
                    name = entry["Prefix"][len(folder_prefix):].strip("/")
                    if name:
                        folders.append(name)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not list s3://{self.bucket}/{folder_prefix}: {exc}") from exc
        return sorted(folders)

    def modified_at(self, folder: str) -> float:
        head = self._head(folder, "story.json")
        if head is None:
            return 0.0
        return head["LastModified"].timestamp()

    def _head(self, folder: str, filename: str) -> dict[str, Any] | None:
        key = self.key_for(folder, filename)
        try:
            return self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise StorageError(f"head_object failed for s3://{self.bucket}/{key}: {exc}") from exc

from __future__ import annotations

import logging
import re
import uuid
from functools import lru_cache
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from portal.core.config import settings

logger = logging.getLogger(__name__)

STORAGE_ERRORS = (ClientError, BotoCoreError)

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")
_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}
_OWNED_BUCKET_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def attachment_object_key(request_id: uuid.UUID | str, file_name: str) -> str:
    """Object key for a request attachment: ``requests/<request id>/<random>-<sanitized name>``."""
    safe_name = _UNSAFE_CHARS_RE.sub("_", str(file_name or "").strip()) or "file.bin"
    return f"requests/{request_id}/{uuid.uuid4().hex}-{safe_name[:120]}"


class AttachmentStorage:
    """Attachment blobs in one S3-compatible bucket, created on first use."""

    def __init__(self, client: Any = None, bucket: str | None = None):
        self.bucket = bucket or settings.S3_BUCKET
        self.client = client or boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT,
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            region_name=settings.S3_REGION,
            use_ssl=settings.S3_USE_SSL,
        )
        self._bucket_ready = False

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError as exc:
            if _error_code(exc) not in _MISSING_BUCKET_CODES:
                raise
            logger.info("Creating attachment bucket %s", self.bucket)
            create_kwargs: dict[str, Any] = {"Bucket": self.bucket}
            if settings.S3_REGION and settings.S3_REGION != "us-east-1":
                create_kwargs["CreateBucketConfiguration"] = {"LocationConstraint": settings.S3_REGION}
            try:
                self.client.create_bucket(**create_kwargs)
            except ClientError as create_exc:
                if _error_code(create_exc) not in _OWNED_BUCKET_CODES:
                    raise
        self._bucket_ready = True

    def put_object(self, key: str, content: bytes, mime_type: str) -> None:
        self._ensure_bucket()
        self.client.put_object(Bucket=self.bucket, Key=key, Body=content, ContentType=mime_type)

    def get_object(self, key: str) -> dict:
        self._ensure_bucket()
        return self.client.get_object(Bucket=self.bucket, Key=key)

    def delete_object(self, key: str) -> None:
        self._ensure_bucket()
        self.client.delete_object(Bucket=self.bucket, Key=key)


@lru_cache(maxsize=1)
def get_s3_storage() -> AttachmentStorage:
    return AttachmentStorage()

"""Object storage access: existence lookups and signed download URLs."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol
from urllib.parse import urlsplit

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..common.settings import GatewaySettings

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class StorageError(Exception):
    """Raised when the storage backend cannot answer a lookup."""


class ObjectNotFound(StorageError):
    """Raised when the requested key does not exist in the bucket."""


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    etag: Optional[str] = None
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None


class ObjectStorage(Protocol):
    async def stat(self, key: str) -> ObjectInfo:
        ...

    def make_signed_url(self, key: str, deadline: int) -> str:
        """Return a domain-relative signed path valid until ``deadline`` (Unix seconds)."""
        ...


def signed_url_deadline(now: Optional[datetime] = None, window_seconds: int = 24 * 60 * 60) -> int:
    """Midnight of the current local day plus ``window_seconds``.

    The deadline is aligned to the day boundary, so a link issued at 23:59
    expires at the same moment as one issued at 00:01.
    """
    current = now if now is not None else datetime.now()
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp()) + window_seconds


class S3ObjectStorage:
    """S3-compatible bucket accessed through boto3."""

    def __init__(self, settings: GatewaySettings):
        self._bucket = settings.s3_bucket
        session = boto3.session.Session()
        client_args: dict[str, Optional[str]] = {
            "endpoint_url": settings.s3_endpoint_url,
            "region_name": settings.s3_region,
        }
        config = Config(
            signature_version=settings.s3_signature_version,
            s3={"addressing_style": settings.s3_addressing_style},
            connect_timeout=settings.s3_connect_timeout_seconds,
            read_timeout=settings.s3_read_timeout_seconds,
            retries={"total_max_attempts": 1},
        )
        self._client = session.client("s3", config=config, **{k: v for k, v in client_args.items() if v})

    async def stat(self, key: str) -> ObjectInfo:
        try:
            response = await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=key)
        except ClientError as exc:
            error_code = str(exc.response.get("Error", {}).get("Code", ""))
            if error_code in _NOT_FOUND_CODES:
                raise ObjectNotFound(key) from exc
            raise StorageError(str(exc)) from exc
        except BotoCoreError as exc:
            raise StorageError(str(exc)) from exc

        etag = response.get("ETag")
        return ObjectInfo(
            key=key,
            size=int(response["ContentLength"]),
            etag=etag.strip('"') if etag else None,
            content_type=response.get("ContentType"),
            last_modified=response.get("LastModified"),
        )

    def make_signed_url(self, key: str, deadline: int) -> str:
        expires_in = max(1, deadline - int(time.time()))
        try:
            url = self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        parts = urlsplit(url)
        if parts.query:
            return f"{parts.path}?{parts.query}"
        return parts.path

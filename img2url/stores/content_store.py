"""Blob storage for transcoded images, keyed by ``<code>.<ext>``.

The production implementation talks to any S3-compatible bucket
(Cloudflare R2, MinIO, AWS) through boto3. boto3 is synchronous, so every call
is pushed onto a worker thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Optional
from typing import Protocol

import boto3
from botocore.exceptions import ClientError


logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


@dataclass
class StoredBlob:
    data: bytes
    content_type: str


@dataclass
class ListEntry:
    key: str
    size: int


@dataclass
class ListPage:
    entries: list[ListEntry] = field(default_factory=list)
    next_page_token: Optional[str] = None


class ContentStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> None: ...

    async def get(self, key: str) -> Optional[StoredBlob]: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, page_token: Optional[str] = None, limit: int = 1000) -> ListPage: ...


class S3ContentStore:
    def __init__(self, s3_client: Any, bucket: str):
        self.s3 = s3_client
        self.bucket = bucket

    @classmethod
    def from_config(cls, config: Any) -> "S3ContentStore":
        client_kwargs: dict[str, Any] = {"region_name": config.content_region}
        if config.content_endpoint_url:
            client_kwargs["endpoint_url"] = config.content_endpoint_url
        if config.content_access_key_id and config.content_secret_access_key:
            client_kwargs["aws_access_key_id"] = config.content_access_key_id
            client_kwargs["aws_secret_access_key"] = config.content_secret_access_key

        s3_client = boto3.client("s3", **client_kwargs)
        logger.info(f"S3ContentStore initialized bucket={config.content_bucket} endpoint={config.content_endpoint_url}")
        return cls(s3_client, config.content_bucket)

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(
            self.s3.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            CacheControl=IMMUTABLE_CACHE_CONTROL,
        )

    async def get(self, key: str) -> Optional[StoredBlob]:
        def _get() -> Optional[StoredBlob]:
            try:
                obj = self.s3.get_object(Bucket=self.bucket, Key=key)
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code")
                if error_code in ("NoSuchKey", "404", "NotFound"):
                    return None
                raise
            body = obj.get("Body")
            if body is None:
                return None
            return StoredBlob(data=body.read(), content_type=obj.get("ContentType") or "application/octet-stream")

        return await asyncio.to_thread(_get)

    async def delete(self, key: str) -> None:
        # S3 DeleteObject succeeds for absent keys, so this is idempotent
        await asyncio.to_thread(self.s3.delete_object, Bucket=self.bucket, Key=key)

    async def list(self, page_token: Optional[str] = None, limit: int = 1000) -> ListPage:
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "MaxKeys": int(limit)}
        if page_token:
            kwargs["ContinuationToken"] = page_token

        response = await asyncio.to_thread(self.s3.list_objects_v2, **kwargs)
        entries = [ListEntry(key=item["Key"], size=int(item.get("Size", 0))) for item in response.get("Contents", [])]
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ListPage(entries=entries, next_page_token=next_token)

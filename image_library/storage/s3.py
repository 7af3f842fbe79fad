"""S3-compatible object storage backend (boto3).

Works with AWS S3, MinIO, DigitalOcean Spaces and other S3-compatible
services via ``endpoint_url``. Objects are written with a public-read ACL
and a one-year ``Cache-Control`` header through boto3's managed transfer,
which switches to multipart upload for large bodies and reports progress
through its ``Callback`` hook.
"""

from __future__ import annotations

import asyncio
import logging
from io import BytesIO
from typing import Any, Dict, List, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from image_library.keys import normalize_key
from image_library.storage.base import StorageBackend
from image_library.storage.progress import ProgressReporter

logger = logging.getLogger(__name__)

DEFAULT_CACHE_CONTROL = "max-age=31536000"
DEFAULT_PROVIDER_HOST = "digitaloceanspaces.com"
MULTIPART_THRESHOLD = 8 * 1024 * 1024

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class ObjectStoreBackend(StorageBackend):
    """Public-read object storage addressed by bucket + key.

    URLs prefer ``cdn_endpoint`` (which already includes the bucket) and
    otherwise fall back to ``https://{bucket}.{region}.{provider_host}/{key}``.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "sfo3",
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        cdn_endpoint: Optional[str] = None,
        provider_host: str = DEFAULT_PROVIDER_HOST,
        acl: str = "public-read",
        cache_control: str = DEFAULT_CACHE_CONTROL,
        name: str = "s3",
        required: bool = True,
        multipart_threshold: int = MULTIPART_THRESHOLD,
        retry_backoff: float = 0.5,
        client: Optional[Any] = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.cdn_endpoint = cdn_endpoint.rstrip("/") if cdn_endpoint else None
        self.provider_host = provider_host
        self.acl = acl
        self.cache_control = cache_control
        self.name = name
        self.required = required
        self.retry_backoff = retry_backoff
        self.transfer_config = TransferConfig(multipart_threshold=multipart_threshold)
        self._client = client or self._create_client(aws_access_key_id, aws_secret_access_key)

    def _create_client(self, access_key_id: Optional[str], secret_access_key: Optional[str]) -> Any:
        kwargs: Dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        if access_key_id:
            kwargs["aws_access_key_id"] = access_key_id
        if secret_access_key:
            kwargs["aws_secret_access_key"] = secret_access_key
        return boto3.client("s3", **kwargs)

    async def _write(self, key: str, data: bytes, content_type: str, reporter: Optional[ProgressReporter]) -> None:
        extra_args = {
            "ACL": self.acl,
            "ContentType": content_type,
            "CacheControl": self.cache_control,
        }
        await asyncio.to_thread(
            self._client.upload_fileobj,
            BytesIO(data),
            self.bucket,
            key,
            ExtraArgs=extra_args,
            Callback=reporter.advance if reporter else None,
            Config=self.transfer_config,
        )

    def resolve_url(self, key: str) -> str:
        key = normalize_key(key)
        if self.cdn_endpoint:
            return f"{self.cdn_endpoint}/{key}"
        return f"https://{self.bucket}.{self.region}.{self.provider_host}/{key}"

    async def delete(self, key: str) -> bool:
        key = normalize_key(key)
        try:
            if not await self.exists(key):
                return False
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            logger.warning("Failed to delete %s from %s: %s", key, self.name, exc)
            return False
        return True

    async def fetch(self, key: str) -> bytes:
        response = await asyncio.to_thread(self._client.get_object, Bucket=self.bucket, Key=normalize_key(key))
        return await asyncio.to_thread(response["Body"].read)

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=normalize_key(key))
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return False
            raise
        return True

    async def list_keys(self, prefix: str = "") -> List[str]:
        return await asyncio.to_thread(self._list_sync, normalize_key(prefix))

    def _list_sync(self, prefix: str) -> List[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        keys: List[str] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    async def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            close()

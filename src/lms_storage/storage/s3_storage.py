"""S3-compatible storage adapter (Cloudflare R2, AWS S3, MinIO)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .base import (
    DEFAULT_URL_EXPIRY_SECONDS,
    ConnectionTestResult,
    StorageAdapter,
    StorageObject,
    UploadRequest,
    UploadResult,
)
from .exceptions import (
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
    StorageValidationError,
)

log = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most this many keys per request.
MAX_DELETE_BATCH = 1000

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}

_ERROR_CODE_MAP = {
    "NoSuchKey": StorageNotFoundError,
    "404": StorageNotFoundError,
    "NotFound": StorageNotFoundError,
    "AccessDenied": StoragePermissionError,
    "403": StoragePermissionError,
    "InvalidAccessKeyId": StoragePermissionError,
    "SignatureDoesNotMatch": StoragePermissionError,
    "NoSuchBucket": StoragePermissionError,
    "EndpointConnectionError": StorageConnectionError,
}


def r2_endpoint(account_id: str) -> str:
    return f"https://{account_id}.r2.cloudflarestorage.com"


class S3StorageAdapter(StorageAdapter):
    """
    Storage adapter for S3-compatible object stores.

    When ``public_url`` is set (a CDN or public bucket domain), URLs for
    public objects are plain concatenations of that base and the key;
    everything else gets a presigned GET URL.
    """

    def __init__(
        self,
        bucket: str,
        account_id: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        public_url: str | None = None,
        endpoint_url: str | None = None,
        region: str = "auto",
        s3_client: BaseClient | None = None,
    ):
        if not bucket:
            raise ValueError("bucket cannot be empty")

        self.bucket = bucket
        self.public_url = public_url.rstrip("/") if public_url else None

        if s3_client is not None:
            self._client = s3_client
        else:
            kwargs: dict[str, Any] = {
                "config": Config(
                    region_name=region,
                    signature_version="s3v4",
                    retries={"max_attempts": 3, "mode": "standard"},
                ),
            }
            if access_key_id and secret_access_key:
                kwargs["aws_access_key_id"] = access_key_id
                kwargs["aws_secret_access_key"] = secret_access_key
            resolved_endpoint = endpoint_url or (r2_endpoint(account_id) if account_id else None)
            if resolved_endpoint:
                kwargs["endpoint_url"] = resolved_endpoint
            self._client = boto3.client("s3", **kwargs)

        log.info(
            "S3StorageAdapter initialized. Bucket: %s, Public URL: %s",
            self.bucket,
            self.public_url or "(none)",
        )

    @property
    def backend_name(self) -> str:
        return "s3"

    def _public_url_for(self, key: str) -> str:
        return f"{self.public_url}/{key}"

    async def upload(self, request: UploadRequest) -> UploadResult:
        content = request.read_payload()
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": request.key,
            "Body": content,
        }
        if request.content_type:
            params["ContentType"] = request.content_type
        if request.metadata:
            params["Metadata"] = dict(request.metadata)

        response = await self._call("put_object", request.key, **params)
        etag = response.get("ETag")

        if request.is_public and self.public_url:
            url = self._public_url_for(request.key)
        else:
            url = await self.get_url(request.key)

        log.debug("[S3Storage:Upload] Stored %s (%d bytes)", request.key, len(content))
        return UploadResult(
            key=request.key,
            url=url,
            size=len(content),
            etag=etag.strip('"') if etag else None,
        )

    async def download(self, key: str) -> bytes:
        def _get() -> bytes:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        try:
            return await asyncio.to_thread(_get)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, key) from e

    async def delete(self, key: str) -> None:
        await self._call("delete_object", key, Bucket=self.bucket, Key=key)
        log.debug("[S3Storage:Delete] Deleted %s", key)

    async def delete_many(self, keys: list[str]) -> None:
        if not keys:
            return

        for start in range(0, len(keys), MAX_DELETE_BATCH):
            batch = keys[start:start + MAX_DELETE_BATCH]
            response = await self._call(
                "delete_objects",
                None,
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
            )
            failed = [
                error
                for error in response.get("Errors", [])
                if error.get("Code") not in _NOT_FOUND_CODES
            ]
            if failed:
                failed_keys = ", ".join(error.get("Key", "?") for error in failed[:10])
                log.error(
                    "[S3Storage:DeleteMany] %d of %d keys failed to delete (first: %s)",
                    len(failed),
                    len(batch),
                    failed_keys,
                )
                raise StorageError(f"Failed to delete {len(failed)} object(s): {failed_keys}")
            log.debug("[S3Storage:DeleteMany] Deleted batch of %d keys", len(batch))

    async def get_url(self, key: str, expires_in: int = DEFAULT_URL_EXPIRY_SECONDS) -> str:
        if self.public_url:
            return self._public_url_for(key)
        if expires_in <= 0:
            raise StorageValidationError(f"expires_in must be positive, got {expires_in}", key=key)

        return await self._call(
            "generate_presigned_url",
            key,
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    async def exists(self, key: str) -> bool:
        def _head() -> bool:
            try:
                self._client.head_object(Bucket=self.bucket, Key=key)
                return True
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                    return False
                raise

        try:
            return await asyncio.to_thread(_head)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, key) from e

    async def list(self, prefix: str) -> list[StorageObject]:
        def _list_all() -> list[StorageObject]:
            objects: list[StorageObject] = []
            params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
            while True:
                page = self._client.list_objects_v2(**params)
                for obj in page.get("Contents", []):
                    etag = obj.get("ETag")
                    objects.append(
                        StorageObject(
                            key=obj["Key"],
                            size=obj.get("Size", 0),
                            last_modified=obj["LastModified"],
                            etag=etag.strip('"') if etag else None,
                        )
                    )
                token = page.get("NextContinuationToken")
                if not page.get("IsTruncated") or not token:
                    return objects
                params["ContinuationToken"] = token

        try:
            objects = await asyncio.to_thread(_list_all)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e) from e
        log.debug("[S3Storage:List] Found %d objects under %r", len(objects), prefix)
        return objects

    async def test_connection(self) -> ConnectionTestResult:
        def _probe() -> None:
            self._client.list_objects_v2(Bucket=self.bucket, MaxKeys=1)

        try:
            await asyncio.to_thread(_probe)
            return ConnectionTestResult.ok()
        except Exception as e:
            log.warning("[S3Storage:TestConnection] Probe of bucket %s failed: %s", self.bucket, e)
            return ConnectionTestResult.failed(str(e) or "Failed to connect to remote storage")

    async def _call(self, operation: str, key: str | None, **params: Any) -> Any:
        """Run one boto3 client call off the event loop, translating its errors."""
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, **params)
        except (ClientError, BotoCoreError) as e:
            translated = self._translate_error(e, key)
            log.error("[S3Storage:%s] %s", operation, translated)
            raise translated from e

    def _translate_error(self, error: Exception, key: str | None = None) -> StorageError:
        if isinstance(error, ClientError):
            code = error.response.get("Error", {}).get("Code", "")
            exc_cls = _ERROR_CODE_MAP.get(code, StorageError)
            return exc_cls(str(error), key=key, cause=error)
        return StorageConnectionError(str(error), key=key, cause=error)

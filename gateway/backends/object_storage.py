"""S3-compatible object storage backends (Cloudflare R2 and generic S3)."""

import asyncio
import logging
from abc import abstractmethod
from datetime import datetime
from functools import partial
from typing import Any, AsyncIterator, List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from common.constants import STREAM_PIECE_SIZE_BYTES
from gateway.backends.base import BackendObject, StorageBackend
from gateway.config import Settings
from gateway.exceptions import BackendFailureError
from gateway.types import BackendType, R2Locator, S3Locator
from gateway.utils import file_extension, generate_object_name

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        err = response.get("Error", {})
        if isinstance(err, dict):
            return str(err.get("Code", ""))
    return ""


class ObjectStorageBackend(StorageBackend):
    """
    Bucket-backed storage through boto3.

    boto3 is blocking, so every call runs in the default executor.
    """

    supports_native_range = True
    key_prefix = "obj"

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        region: str,
        client: Any = None
    ):
        self.bucket_name = bucket_name
        if client is not None:
            self.client = client
        else:
            self.client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
            )

    async def _call(self, method: str, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(getattr(self.client, method), **kwargs))

    @abstractmethod
    def _make_locator(self, key: str):
        """Locator type for an object key."""

    @abstractmethod
    def _key_of(self, locator) -> str:
        """Object key held by a locator."""

    async def put_object(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        kwargs = {"Bucket": self.bucket_name, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            await self._call("put_object", **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise BackendFailureError(f"{self.backend_type.value} put_object failed: {e}") from e

    async def get_object_bytes(self, key: str) -> Optional[bytes]:
        try:
            obj = await self._call("get_object", Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise BackendFailureError(f"{self.backend_type.value} get_object failed: {e}") from e
        except BotoCoreError as e:
            raise BackendFailureError(f"{self.backend_type.value} get_object failed: {e}") from e
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, obj["Body"].read)

    async def delete_object(self, key: str) -> None:
        try:
            await self._call("delete_object", Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise BackendFailureError(f"{self.backend_type.value} delete_object failed: {e}") from e

    async def list_objects(self, prefix: str) -> List[Tuple[str, datetime]]:
        """
        Keys under ``prefix`` with their last-modified timestamps.
        """
        objects: List[Tuple[str, datetime]] = []
        token: Optional[str] = None
        while True:
            kwargs = {"Bucket": self.bucket_name, "Prefix": prefix}
            if token:
                kwargs["ContinuationToken"] = token
            try:
                page = await self._call("list_objects_v2", **kwargs)
            except (ClientError, BotoCoreError) as e:
                raise BackendFailureError(f"{self.backend_type.value} list_objects failed: {e}") from e
            for item in page.get("Contents", []):
                objects.append((item["Key"], item["LastModified"]))
            if not page.get("IsTruncated"):
                return objects
            token = page.get("NextContinuationToken")

    async def put(self, data: bytes, file_name: str, content_type: str):
        key = generate_object_name(self.key_prefix, file_extension(file_name))
        await self.put_object(key, data, content_type)
        logger.info(f"Uploaded to {self.backend_type.value} [key={key}, size={len(data)}]")
        return self._make_locator(key)

    async def stat(self, locator) -> Optional[int]:
        try:
            head = await self._call("head_object", Bucket=self.bucket_name, Key=self._key_of(locator))
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise BackendFailureError(f"{self.backend_type.value} head_object failed: {e}") from e
        except BotoCoreError as e:
            raise BackendFailureError(f"{self.backend_type.value} head_object failed: {e}") from e
        return int(head.get("ContentLength") or 0)

    async def get(self, locator, range_header: Optional[str] = None) -> Optional[BackendObject]:
        kwargs = {"Bucket": self.bucket_name, "Key": self._key_of(locator)}
        if range_header:
            kwargs["Range"] = range_header
        try:
            obj = await self._call("get_object", **kwargs)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise BackendFailureError(f"{self.backend_type.value} get_object failed: {e}") from e
        except BotoCoreError as e:
            raise BackendFailureError(f"{self.backend_type.value} get_object failed: {e}") from e

        body = obj["Body"]
        content_range = obj.get("ContentRange")

        async def close() -> None:
            body.close()

        return BackendObject(
            stream=self._iter_body(body),
            status=206 if content_range else 200,
            content_length=obj.get("ContentLength"),
            content_range=content_range,
            content_type=obj.get("ContentType"),
            close=close,
        )

    async def _iter_body(self, body) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        while True:
            piece = await loop.run_in_executor(None, body.read, STREAM_PIECE_SIZE_BYTES)
            if not piece:
                break
            yield piece

    async def delete(self, locator) -> bool:
        await self.delete_object(self._key_of(locator))
        return True


class R2Backend(ObjectStorageBackend):
    backend_type = BackendType.R2
    key_prefix = "r2"

    @classmethod
    def from_settings(cls, settings: Settings, client: Any = None) -> "R2Backend":
        return cls(
            bucket_name=settings.r2_bucket,
            endpoint_url=settings.r2_endpoint,
            access_key=settings.r2_access_key_id,
            secret_key=settings.r2_secret_access_key,
            region="auto",
            client=client,
        )

    def _make_locator(self, key: str) -> R2Locator:
        return R2Locator(r2_key=key)

    def _key_of(self, locator: R2Locator) -> str:
        return locator.r2_key


class S3Backend(ObjectStorageBackend):
    backend_type = BackendType.S3
    key_prefix = "s3"

    @classmethod
    def from_settings(cls, settings: Settings, client: Any = None) -> "S3Backend":
        return cls(
            bucket_name=settings.s3_bucket,
            endpoint_url=settings.s3_endpoint,
            access_key=settings.s3_access_key_id,
            secret_key=settings.s3_secret_access_key,
            region=settings.s3_region,
            client=client,
        )

    def _make_locator(self, key: str) -> S3Locator:
        return S3Locator(s3_key=key)

    def _key_of(self, locator: S3Locator) -> str:
        return locator.s3_key

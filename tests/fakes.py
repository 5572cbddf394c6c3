"""In-memory stand-ins for remote storage services."""

import io
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from botocore.exceptions import ClientError

from gateway.backends import BackendRegistry, R2Backend, S3Backend
from gateway.backends.base import BackendObject, StorageBackend, iterate_bytes
from gateway.config import Settings
from gateway.exceptions import BackendFailureError, RangeNotSatisfiableError
from gateway.types import BackendType, TelegramLocator

R2_CONFIG = {
    "r2_endpoint": "https://account.r2.test",
    "r2_access_key_id": "r2-key",
    "r2_secret_access_key": "r2-secret",
    "r2_bucket": "files",
}

S3_CONFIG = {
    "s3_endpoint": "https://s3.test",
    "s3_access_key_id": "s3-key",
    "s3_secret_access_key": "s3-secret",
    "s3_bucket": "files",
}

TELEGRAM_CONFIG = {
    "tg_bot_token": "123456:test-token",
    "tg_chat_id": "-1001",
    "telegram_upload_notify": False,
}

_RANGE = re.compile(r"bytes=(\d*)-(\d*)")


def window_for(header: str, total: int):
    """
    Inclusive (start, end) for a single-range header, as a server would compute it.
    """
    match = _RANGE.fullmatch(header)
    raw_start, raw_end = match.group(1), match.group(2)
    if not raw_start:
        return max(0, total - int(raw_end)), total - 1
    end = int(raw_end) if raw_end else total - 1
    return int(raw_start), min(end, total - 1)


class FakeS3Client:
    """
    In-memory stand-in for a boto3 S3 client, covering the calls the
    object storage backends make.
    """

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.modified: Dict[str, datetime] = {}
        self.fail_deletes = False
        self.calls: List[str] = []

    def _missing(self, operation: str) -> ClientError:
        return ClientError({"Error": {"Code": "NoSuchKey", "Message": "Not Found"}}, operation)

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.calls.append("put_object")
        self.objects[Key] = bytes(Body)
        self.modified[Key] = datetime.now(timezone.utc)
        return {}

    def head_object(self, Bucket, Key):
        self.calls.append("head_object")
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def get_object(self, Bucket, Key, Range=None):
        self.calls.append("get_object")
        if Key not in self.objects:
            raise self._missing("GetObject")
        data = self.objects[Key]
        if Range:
            start, end = window_for(Range, len(data))
            piece = data[start:end + 1]
            return {
                "Body": io.BytesIO(piece),
                "ContentLength": len(piece),
                "ContentRange": f"bytes {start}-{end}/{len(data)}",
            }
        return {"Body": io.BytesIO(data), "ContentLength": len(data)}

    def delete_object(self, Bucket, Key):
        self.calls.append("delete_object")
        if self.fail_deletes:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "Denied"}}, "DeleteObject")
        self.objects.pop(Key, None)
        self.modified.pop(Key, None)
        return {}

    def list_objects_v2(self, Bucket, Prefix, ContinuationToken=None):
        self.calls.append("list_objects_v2")
        contents = [
            {"Key": key, "LastModified": self.modified[key]}
            for key in sorted(self.objects)
            if key.startswith(Prefix)
        ]
        return {"Contents": contents, "IsTruncated": False}


class MemoryRelayBackend(StorageBackend):
    """
    In-memory relay-style backend: no ``stat``, the range header is forwarded
    and either honoured (206, or a rejection for windows past the end) or
    ignored (full 200).
    """

    backend_type = BackendType.TELEGRAM

    def __init__(self, honour_range: bool = False, declare_length: bool = True, fail_deletes: bool = False):
        self.files: Dict[str, bytes] = {}
        self.honour_range = honour_range
        self.declare_length = declare_length
        self.fail_deletes = fail_deletes
        self.fail_puts = False
        self.range_headers: List[Optional[str]] = []
        self.closed = 0
        self._counter = 0

    async def put(self, data: bytes, file_name: str, content_type: str) -> TelegramLocator:
        if self.fail_puts:
            raise BackendFailureError("relay rejected the upload")
        self._counter += 1
        file_id = f"AgAD{self._counter:04d}"
        self.files[file_id] = data
        return TelegramLocator(file_id=file_id, message_id=self._counter)

    async def get(self, locator: TelegramLocator, range_header: Optional[str] = None) -> Optional[BackendObject]:
        self.range_headers.append(range_header)
        data = self.files.get(locator.file_id)
        if data is None:
            return None

        async def close() -> None:
            self.closed += 1

        if range_header and self.honour_range:
            start, end = window_for(range_header, len(data))
            if start >= len(data) or end < start:
                raise RangeNotSatisfiableError(len(data))
            piece = data[start:end + 1]
            return BackendObject(
                stream=iterate_bytes(piece, 4),
                status=206,
                content_length=len(piece),
                content_range=f"bytes {start}-{end}/{len(data)}",
                close=close,
            )
        return BackendObject(
            stream=iterate_bytes(data, 4),
            content_length=len(data) if self.declare_length else None,
            close=close,
        )

    async def delete(self, locator: TelegramLocator) -> bool:
        if self.fail_deletes:
            raise BackendFailureError("relay refused the delete")
        return self.files.pop(locator.file_id, None) is not None


def build_registry(settings: Settings, http_client, s3_client: FakeS3Client, relay: StorageBackend) -> BackendRegistry:
    """
    Registry wired to in-memory backends for the object stores and the relay.
    """
    registry = BackendRegistry(settings, http_client)
    registry._instances[BackendType.R2] = R2Backend.from_settings(settings, client=s3_client)
    registry._instances[BackendType.S3] = S3Backend.from_settings(settings, client=s3_client)
    registry._instances[BackendType.TELEGRAM] = relay
    return registry

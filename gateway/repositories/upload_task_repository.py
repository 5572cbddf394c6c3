"""Upload task and staged-chunk repository over the key-value store."""

from typing import Optional

from common.constants import CHUNK_KEY_PREFIX, UPLOAD_TASK_KEY_PREFIX, UPLOAD_TASK_TTL_SECONDS
from common.logging_config import get_logger
from gateway.repositories.kv_repository import KVRepository
from gateway.types import UploadTask

logger = get_logger(__name__)


def task_key(upload_id: str) -> str:
    return f"{UPLOAD_TASK_KEY_PREFIX}{upload_id}"


def chunk_key(upload_id: str, chunk_index: int) -> str:
    return f"{CHUNK_KEY_PREFIX}{upload_id}:{chunk_index}"


class UploadTaskRepository:
    def __init__(self, kv: KVRepository):
        self.kv = kv

    def get(self, upload_id: str) -> Optional[UploadTask]:
        data = self.kv.get_json(task_key(upload_id))
        if data is None:
            return None
        return UploadTask.from_dict(data)

    def save(self, task: UploadTask) -> None:
        # Each write renews the TTL, as the task record is rewritten whole.
        self.kv.put_json(task_key(task.upload_id), task.to_dict(), ttl_seconds=UPLOAD_TASK_TTL_SECONDS)

    def delete(self, upload_id: str) -> bool:
        return self.kv.delete(task_key(upload_id))

    def put_chunk(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        self.kv.put(chunk_key(upload_id, chunk_index), data, ttl_seconds=UPLOAD_TASK_TTL_SECONDS)

    def get_chunk(self, upload_id: str, chunk_index: int) -> Optional[bytes]:
        entry = self.kv.get(chunk_key(upload_id, chunk_index))
        if entry is None or entry.value is None:
            return None
        return bytes(entry.value)

    def delete_chunk(self, upload_id: str, chunk_index: int) -> bool:
        return self.kv.delete(chunk_key(upload_id, chunk_index))

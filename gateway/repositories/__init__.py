"""Repository layer for data access."""

from gateway.repositories.kv_repository import KVEntry, KVRepository
from gateway.repositories.file_record_repository import FileRecordRepository, candidate_keys
from gateway.repositories.upload_task_repository import UploadTaskRepository

__all__ = [
    "KVEntry",
    "KVRepository",
    "FileRecordRepository",
    "UploadTaskRepository",
    "candidate_keys",
]

"""Chunked upload coordination: init, chunk acceptance, completion and cleanup."""

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from common.constants import CHUNK_OBJECT_PREFIX, MAX_CHUNKED_FILE_SIZE_BYTES
from common.logging_config import get_logger
from gateway.backends import BackendRegistry, ObjectStorageBackend
from gateway.config import Settings
from gateway.exceptions import (
    BackendUnconfiguredError,
    ChunkMissingError,
    ClientInputError,
    ForbiddenError,
    IncompleteUploadError,
    UploadTaskNotFoundError
)
from gateway.repositories import UploadTaskRepository
from gateway.services.upload_dispatcher import DispatchResult, UploadDispatcher
from gateway.types import BackendType, Caller, ChunkBackend, CleanupOutcome, UploadTask
from gateway.utils import generate_upload_id

logger = get_logger(__name__)


def chunk_object_key(upload_id: str, chunk_index: int) -> str:
    return f"{CHUNK_OBJECT_PREFIX}/{upload_id}/{chunk_index}"


class ChunkStaging(ABC):
    """
    Temporary home of chunk bytes between acceptance and reassembly.
    Concurrent writes of the same index are last-write-wins.
    """

    chunk_backend: ChunkBackend

    @abstractmethod
    async def put(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        pass

    @abstractmethod
    async def get(self, upload_id: str, chunk_index: int) -> Optional[bytes]:
        pass

    @abstractmethod
    async def delete(self, upload_id: str, chunk_index: int) -> None:
        pass


class KVChunkStaging(ChunkStaging):
    chunk_backend = ChunkBackend.KV

    def __init__(self, tasks: UploadTaskRepository):
        self.tasks = tasks

    async def put(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        self.tasks.put_chunk(upload_id, chunk_index, data)

    async def get(self, upload_id: str, chunk_index: int) -> Optional[bytes]:
        return self.tasks.get_chunk(upload_id, chunk_index)

    async def delete(self, upload_id: str, chunk_index: int) -> None:
        self.tasks.delete_chunk(upload_id, chunk_index)


class ObjectChunkStaging(ChunkStaging):
    """
    Chunks kept as ``chunk-upload/{uploadId}/{index}`` objects. Leftovers are
    removed by the expiry sweeper rather than by a TTL.
    """

    chunk_backend = ChunkBackend.R2

    def __init__(self, bucket: ObjectStorageBackend):
        self.bucket = bucket

    async def put(self, upload_id: str, chunk_index: int, data: bytes) -> None:
        await self.bucket.put_object(chunk_object_key(upload_id, chunk_index), data)

    async def get(self, upload_id: str, chunk_index: int) -> Optional[bytes]:
        return await self.bucket.get_object_bytes(chunk_object_key(upload_id, chunk_index))

    async def delete(self, upload_id: str, chunk_index: int) -> None:
        await self.bucket.delete_object(chunk_object_key(upload_id, chunk_index))


@dataclass
class ChunkAcceptance:
    chunk_index: int
    uploaded_chunks: List[int]
    chunk_backend: ChunkBackend
    progress: float
    duplicate: bool = False


@dataclass
class CompletionResult:
    dispatch: DispatchResult
    file_name: str
    file_size: int
    cleanup: List[CleanupOutcome]


def _progress(done: int, total: int) -> float:
    return round(done / total * 100, 1)


def _positive_int(raw: Any) -> int:
    try:
        value = int(float(raw or 0))
    except (TypeError, ValueError):
        return 0
    return value if value > 0 else 0


class ChunkedUploadService:
    """
    Coordinates the chunked upload flow over the task repository and a
    chunk staging area.

    In write-minimizing mode (``MINIMIZE_KV_WRITES=true``) the task record is
    written once at init and never rewritten, so duplicates are not detected
    and completeness is not checked at completion.
    """

    def __init__(
        self,
        settings: Settings,
        tasks: UploadTaskRepository,
        registry: BackendRegistry,
        dispatcher: UploadDispatcher
    ):
        self.settings = settings
        self.tasks = tasks
        self.registry = registry
        self.dispatcher = dispatcher

    @property
    def minimize_writes(self) -> bool:
        return self.settings.minimize_kv_writes

    def _initial_chunk_backend(self) -> ChunkBackend:
        r2_available = self.registry.is_configured(BackendType.R2)
        if self.settings.chunk_backend == "kv":
            return ChunkBackend.KV
        return ChunkBackend.R2 if r2_available else ChunkBackend.KV

    def _staging_for(self, task: UploadTask) -> ChunkStaging:
        """
        Staging area for an existing task. A task staged on R2 falls back to
        the key-value store if R2 is no longer configured.
        """
        if task.chunk_backend is ChunkBackend.KV:
            return KVChunkStaging(self.tasks)
        bucket = self.registry.object_staging()
        if bucket is not None:
            return ObjectChunkStaging(bucket)
        return KVChunkStaging(self.tasks)

    def _load_task(self, upload_id: Optional[str]) -> UploadTask:
        if not upload_id:
            raise ClientInputError("Missing uploadId")
        task = self.tasks.get(upload_id)
        if task is None:
            raise UploadTaskNotFoundError("Upload task does not exist or has expired")
        if task.total_chunks <= 0:
            raise ClientInputError("Invalid totalChunks in upload task")
        return task

    def init_upload(
        self,
        caller: Caller,
        file_name: Optional[str],
        file_size: Any,
        file_type: Optional[str],
        total_chunks: Any,
        storage_mode: Optional[str]
    ) -> UploadTask:
        """
        Create an upload task.

        Raises:
            ForbiddenError: If the caller is a guest
            ClientInputError: If required fields are missing or the file is too large
        """
        if not caller.is_admin:
            raise ForbiddenError("Guests cannot use chunked upload, use the regular upload instead")

        size = _positive_int(file_size)
        chunks = _positive_int(total_chunks)
        if not file_name or not size or not chunks:
            raise ClientInputError("Missing required parameters: fileName, fileSize, totalChunks")
        if size > MAX_CHUNKED_FILE_SIZE_BYTES:
            raise ClientInputError(
                f"File size exceeds the limit (max {MAX_CHUNKED_FILE_SIZE_BYTES // (1024 * 1024)}MB)"
            )

        task = UploadTask(
            upload_id=generate_upload_id(),
            file_name=file_name,
            file_size=size,
            file_type=file_type or "",
            total_chunks=chunks,
            storage_mode=BackendType.normalize(storage_mode),
            chunk_backend=self._initial_chunk_backend(),
        )
        self.tasks.save(task)

        logger.info(
            f"Upload task created [upload_id={task.upload_id}, size={size}, chunks={chunks}, "
            f"storage={task.storage_mode.value}, staging={task.chunk_backend.value}]"
        )
        return task

    def get_task(self, upload_id: Optional[str]) -> UploadTask:
        if not upload_id:
            raise ClientInputError("Missing uploadId")
        task = self.tasks.get(upload_id)
        if task is None:
            raise UploadTaskNotFoundError("Upload task does not exist or has expired")
        return task

    async def accept_chunk(self, upload_id: Optional[str], chunk_index: Any, data: Optional[bytes]) -> ChunkAcceptance:
        """
        Stage one chunk and record it.

        The read-modify-write of ``uploadedChunks`` is unconditional: two
        concurrent acceptances for the same task can lose one of the updates.

        Raises:
            ClientInputError: If parameters are missing or the index is out of range
            UploadTaskNotFoundError: If the task is unknown or expired
        """
        try:
            index = int(chunk_index)
        except (TypeError, ValueError):
            index = None
        if not upload_id or index is None or data is None:
            raise ClientInputError("Missing required parameters: uploadId, chunkIndex, chunk")

        task = self._load_task(upload_id)
        if index < 0 or index >= task.total_chunks:
            raise ClientInputError(f"chunkIndex {index} is out of range for {task.total_chunks} chunks")

        staging = self._staging_for(task)

        if not self.minimize_writes and index in task.uploaded_chunks:
            logger.debug(f"Chunk already accepted [upload_id={upload_id}, index={index}]")
            return ChunkAcceptance(
                chunk_index=index,
                uploaded_chunks=list(task.uploaded_chunks),
                chunk_backend=staging.chunk_backend,
                progress=_progress(len(task.uploaded_chunks), task.total_chunks),
                duplicate=True,
            )

        await staging.put(upload_id, index, data)

        if self.minimize_writes:
            uploaded = list(task.uploaded_chunks)
            progress = _progress(index + 1, task.total_chunks)
        else:
            uploaded = sorted(set(task.uploaded_chunks) | {index})
            task.uploaded_chunks = uploaded
            # Differs from the init choice only after the R2 to KV fallback in _staging_for.
            task.chunk_backend = staging.chunk_backend
            self.tasks.save(task)
            progress = _progress(len(uploaded), task.total_chunks)

        logger.debug(f"Chunk accepted [upload_id={upload_id}, index={index}, size={len(data)}, progress={progress}]")
        return ChunkAcceptance(
            chunk_index=index,
            uploaded_chunks=uploaded,
            chunk_backend=staging.chunk_backend,
            progress=progress,
        )

    async def complete_upload(self, upload_id: Optional[str], origin: str = "") -> CompletionResult:
        """
        Reassemble the chunks in index order, dispatch the file and clean up.

        Any failure before the dispatch succeeds leaves the task and its chunks
        untouched so completion can be retried.

        Raises:
            UploadTaskNotFoundError: If the task is unknown or expired
            IncompleteUploadError: If chunks are missing from the bookkeeping
            BackendUnconfiguredError: If the target backend has no credentials
            ChunkMissingError: If a staged chunk cannot be read
            BackendFailureError: If the remote upload fails
        """
        task = self._load_task(upload_id)

        if not self.minimize_writes and len(set(task.uploaded_chunks)) != task.total_chunks:
            raise IncompleteUploadError(
                uploaded=len(task.uploaded_chunks),
                total=task.total_chunks,
                missing_chunks=task.missing_chunks(),
            )

        if not self.registry.is_configured(task.storage_mode):
            raise BackendUnconfiguredError(f"Storage backend '{task.storage_mode.value}' is not configured")

        staging = self._staging_for(task)
        data = await self._reassemble(task, staging)

        dispatch = await self.dispatcher.dispatch(
            data,
            task.file_name,
            task.file_type or "application/octet-stream",
            task.storage_mode,
            origin=origin,
            extra={"chunked": True, "totalChunks": task.total_chunks},
        )

        cleanup = await self.cleanup(task, staging)

        logger.info(f"Upload completed [upload_id={task.upload_id}, id={dispatch.identifier}, size={len(data)}]")
        return CompletionResult(
            dispatch=dispatch,
            file_name=task.file_name,
            file_size=task.file_size,
            cleanup=cleanup,
        )

    async def _reassemble(self, task: UploadTask, staging: ChunkStaging) -> bytes:
        pieces: List[bytes] = []
        for index in range(task.total_chunks):
            piece = await staging.get(task.upload_id, index)
            if piece is None:
                logger.warning(f"Staged chunk missing [upload_id={task.upload_id}, index={index}]")
                raise ChunkMissingError(task.upload_id, index)
            pieces.append(piece)
        return b"".join(pieces)

    async def cleanup(self, task: UploadTask, staging: ChunkStaging) -> List[CleanupOutcome]:
        """
        Best-effort removal of the task record and staged chunks.

        In write-minimizing mode the task record and key-value chunks are left
        to expire; object-staged chunks are always deleted.
        """
        outcomes: List[CleanupOutcome] = []

        if not self.minimize_writes:
            task_outcome = CleanupOutcome(operation="delete-upload-task")
            try:
                self.tasks.delete(task.upload_id)
                task_outcome.record_success()
            except sqlite3.Error as e:
                task_outcome.record_failure(str(e))
            outcomes.append(task_outcome)

        if staging.chunk_backend is ChunkBackend.R2 or not self.minimize_writes:
            outcomes.append(await self._delete_chunks(task, staging))

        for outcome in outcomes:
            if not outcome.ok:
                logger.warning(f"Cleanup incomplete [upload_id={task.upload_id}, op={outcome.operation}]: {outcome.errors}")
        return outcomes

    async def _delete_chunks(self, task: UploadTask, staging: ChunkStaging) -> CleanupOutcome:
        outcome = CleanupOutcome(operation=f"delete-chunks-{staging.chunk_backend.value}")
        results = await asyncio.gather(
            *(staging.delete(task.upload_id, index) for index in range(task.total_chunks)),
            return_exceptions=True,
        )
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                outcome.record_failure(f"chunk {index}: {result}")
            else:
                outcome.record_success()
        return outcome

    @staticmethod
    def task_status(task: UploadTask) -> Dict[str, Any]:
        return dict(task.to_dict(), success=True)

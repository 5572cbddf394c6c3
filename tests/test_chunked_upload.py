"""Tests for the chunked upload flow."""

from dataclasses import replace

import pytest

from fakes import build_registry
from gateway.exceptions import (
    BackendFailureError,
    BackendUnconfiguredError,
    ChunkMissingError,
    ClientInputError,
    ForbiddenError,
    IncompleteUploadError,
    UploadTaskNotFoundError
)
from gateway.repositories import FileRecordRepository, UploadTaskRepository
from gateway.services import ChunkedUploadService, UploadDispatcher
from gateway.signed_reference import build_secret_list, decode_signed_reference
from gateway.types import BackendType, Caller, ChunkBackend

ADMIN = Caller(is_admin=True)
CHUNKS = [b"aaaa", b"bbbb", b"cc"]
PAYLOAD = b"".join(CHUNKS)


@pytest.fixture
def make_service(kv, http_client, s3_client, relay):
    def factory(settings):
        registry = build_registry(settings, http_client, s3_client, relay)
        dispatcher = UploadDispatcher(settings, registry, FileRecordRepository(kv))
        return ChunkedUploadService(settings, UploadTaskRepository(kv), registry, dispatcher)

    return factory


@pytest.fixture
def service(make_service, settings):
    return make_service(settings)


def start(service, storage_mode="r2", total_chunks=len(CHUNKS)):
    return service.init_upload(
        ADMIN,
        file_name="clip.mp4",
        file_size=len(PAYLOAD),
        file_type="video/mp4",
        total_chunks=total_chunks,
        storage_mode=storage_mode,
    )


async def send_all(service, task, order=None):
    for index in order or range(len(CHUNKS)):
        await service.accept_chunk(task.upload_id, str(index), CHUNKS[index])


class TestInitUpload:
    """Test upload task creation."""

    def test_guest_cannot_start_chunked_upload(self, service):
        with pytest.raises(ForbiddenError):
            service.init_upload(Caller(is_admin=False), "a.bin", 10, "", 1, "r2")

    def test_missing_fields_are_rejected(self, service):
        with pytest.raises(ClientInputError):
            service.init_upload(ADMIN, None, 10, "", 1, "r2")
        with pytest.raises(ClientInputError):
            service.init_upload(ADMIN, "a.bin", "not-a-number", "", 1, "r2")
        with pytest.raises(ClientInputError):
            service.init_upload(ADMIN, "a.bin", 10, "", 0, "r2")

    def test_file_over_limit_is_rejected(self, service):
        with pytest.raises(ClientInputError):
            service.init_upload(ADMIN, "big.bin", 100 * 1024 * 1024 + 1, "", 21, "r2")

    def test_r2_staging_preferred_when_configured(self, service, upload_tasks):
        task = start(service)

        assert len(task.upload_id) == 32
        assert task.chunk_backend is ChunkBackend.R2
        assert upload_tasks.get(task.upload_id).total_chunks == 3

    def test_kv_staging_forced_by_setting(self, make_service, settings):
        task = start(make_service(replace(settings, chunk_backend="kv")))
        assert task.chunk_backend is ChunkBackend.KV

    def test_kv_staging_without_r2(self, make_service, settings):
        task = start(make_service(replace(settings, r2_bucket="")), storage_mode="s3")
        assert task.chunk_backend is ChunkBackend.KV

    def test_unknown_storage_mode_means_relay(self, service):
        assert start(service, storage_mode="carrier-pigeon").storage_mode is BackendType.TELEGRAM


class TestAcceptChunk:
    """Test chunk acceptance and bookkeeping."""

    @pytest.mark.asyncio
    async def test_progress_and_sorted_bookkeeping(self, service):
        task = start(service)

        first = await service.accept_chunk(task.upload_id, "2", CHUNKS[2])
        second = await service.accept_chunk(task.upload_id, 0, CHUNKS[0])

        assert first.progress == 33.3
        assert second.uploaded_chunks == [0, 2]
        assert second.progress == 66.7
        assert second.chunk_backend is ChunkBackend.R2

    @pytest.mark.asyncio
    async def test_duplicate_chunk_is_not_rewritten(self, service, s3_client):
        task = start(service)
        await service.accept_chunk(task.upload_id, 1, CHUNKS[1])
        puts_before = s3_client.calls.count("put_object")

        again = await service.accept_chunk(task.upload_id, 1, b"different")

        assert again.duplicate is True
        assert again.uploaded_chunks == [1]
        assert s3_client.calls.count("put_object") == puts_before

    @pytest.mark.asyncio
    async def test_index_out_of_range(self, service):
        task = start(service)
        with pytest.raises(ClientInputError):
            await service.accept_chunk(task.upload_id, 3, b"x")
        with pytest.raises(ClientInputError):
            await service.accept_chunk(task.upload_id, -1, b"x")

    @pytest.mark.asyncio
    async def test_missing_parameters(self, service):
        task = start(service)
        with pytest.raises(ClientInputError):
            await service.accept_chunk(task.upload_id, None, b"x")
        with pytest.raises(ClientInputError):
            await service.accept_chunk(task.upload_id, 0, None)

    @pytest.mark.asyncio
    async def test_unknown_task(self, service):
        with pytest.raises(UploadTaskNotFoundError):
            await service.accept_chunk("0" * 32, 0, b"x")

    @pytest.mark.asyncio
    async def test_staging_falls_back_when_r2_goes_away(self, service, make_service, settings, upload_tasks):
        task = start(service)
        await service.accept_chunk(task.upload_id, 0, CHUNKS[0])
        assert upload_tasks.get(task.upload_id).chunk_backend is ChunkBackend.R2

        without_r2 = make_service(replace(settings, r2_bucket=""))
        accepted = await without_r2.accept_chunk(task.upload_id, 1, CHUNKS[1])

        assert accepted.chunk_backend is ChunkBackend.KV
        assert upload_tasks.get(task.upload_id).chunk_backend is ChunkBackend.KV
        assert upload_tasks.get_chunk(task.upload_id, 1) == CHUNKS[1]

    @pytest.mark.asyncio
    async def test_minimized_mode_leaves_task_untouched(self, make_service, settings, upload_tasks):
        service = make_service(replace(settings, minimize_kv_writes=True, chunk_backend="kv"))
        task = start(service)

        accepted = await service.accept_chunk(task.upload_id, 1, CHUNKS[1])

        assert accepted.progress == 66.7
        assert upload_tasks.get(task.upload_id).uploaded_chunks == []
        assert upload_tasks.get_chunk(task.upload_id, 1) == CHUNKS[1]


class TestCompleteUpload:
    """Test reassembly, dispatch and cleanup."""

    @pytest.mark.asyncio
    async def test_out_of_order_chunks_reassemble_in_index_order(self, service, s3_client, file_records, upload_tasks):
        task = start(service)
        await send_all(service, task, order=[2, 0, 1])

        result = await service.complete_upload(task.upload_id)

        record_key = result.dispatch.record_key
        assert record_key.startswith("r2:r2_") and record_key.endswith(".mp4")
        assert result.dispatch.src == f"/file/{record_key}"
        assert s3_client.objects[record_key[len("r2:"):]] == PAYLOAD

        record = file_records.get(record_key)
        assert record.file_size == len(PAYLOAD)
        assert record.extra["chunked"] is True
        assert record.extra["totalChunks"] == 3

        assert upload_tasks.get(task.upload_id) is None
        assert not [key for key in s3_client.objects if key.startswith("chunk-upload/")]
        assert all(outcome.ok for outcome in result.cleanup)

    @pytest.mark.asyncio
    async def test_incomplete_upload_lists_missing_chunks(self, service):
        task = start(service)
        await service.accept_chunk(task.upload_id, 0, CHUNKS[0])
        await service.accept_chunk(task.upload_id, 2, CHUNKS[2])

        with pytest.raises(IncompleteUploadError) as exc_info:
            await service.complete_upload(task.upload_id)

        assert exc_info.value.extra == {"uploaded": 2, "total": 3, "missingChunks": [1]}

    @pytest.mark.asyncio
    async def test_unconfigured_backend_keeps_task(self, service, upload_tasks):
        task = start(service, storage_mode="discord")
        await send_all(service, task)

        with pytest.raises(BackendUnconfiguredError):
            await service.complete_upload(task.upload_id)

        assert upload_tasks.get(task.upload_id) is not None

    @pytest.mark.asyncio
    async def test_failed_dispatch_keeps_task_and_chunks_for_retry(self, service, upload_tasks, s3_client, relay):
        task = start(service, storage_mode="telegram")
        await send_all(service, task)
        relay.fail_puts = True

        with pytest.raises(BackendFailureError):
            await service.complete_upload(task.upload_id)

        assert upload_tasks.get(task.upload_id).uploaded_chunks == [0, 1, 2]
        staged = [f"chunk-upload/{task.upload_id}/{index}" for index in range(len(CHUNKS))]
        assert all(key in s3_client.objects for key in staged)

        relay.fail_puts = False
        result = await service.complete_upload(task.upload_id)

        assert list(relay.files.values()) == [PAYLOAD]
        assert result.dispatch.record_written
        assert upload_tasks.get(task.upload_id) is None
        assert not any(key in s3_client.objects for key in staged)

    @pytest.mark.asyncio
    async def test_lost_chunk_is_reported_and_task_kept(self, make_service, settings, upload_tasks):
        service = make_service(replace(settings, chunk_backend="kv"))
        task = start(service)
        await send_all(service, task)
        upload_tasks.delete_chunk(task.upload_id, 1)

        with pytest.raises(ChunkMissingError) as exc_info:
            await service.complete_upload(task.upload_id)

        assert exc_info.value.chunk_index == 1
        assert upload_tasks.get(task.upload_id) is not None

    @pytest.mark.asyncio
    async def test_cleanup_failure_does_not_fail_completion(self, service, s3_client):
        task = start(service)
        await send_all(service, task)
        s3_client.fail_deletes = True

        result = await service.complete_upload(task.upload_id)

        assert result.dispatch.record_written
        chunk_cleanup = [o for o in result.cleanup if o.operation == "delete-chunks-r2"][0]
        assert len(chunk_cleanup.errors) == 3

    @pytest.mark.asyncio
    async def test_minimized_mode_skips_completeness_and_keeps_kv_state(self, make_service, settings, upload_tasks):
        service = make_service(replace(settings, minimize_kv_writes=True, chunk_backend="kv"))
        task = start(service, storage_mode="s3")
        await send_all(service, task)

        result = await service.complete_upload(task.upload_id)

        assert result.dispatch.record_key.startswith("s3:s3_")
        assert upload_tasks.get(task.upload_id) is not None
        assert upload_tasks.get_chunk(task.upload_id, 0) == CHUNKS[0]

    @pytest.mark.asyncio
    async def test_minimized_mode_still_removes_object_staged_chunks(self, make_service, settings, s3_client):
        service = make_service(replace(settings, minimize_kv_writes=True))
        task = start(service)
        await send_all(service, task)

        await service.complete_upload(task.upload_id)

        assert not [key for key in s3_client.objects if key.startswith("chunk-upload/")]

    @pytest.mark.asyncio
    async def test_relay_completion_with_signed_links(self, make_service, settings, relay, file_records):
        signed_settings = replace(settings, telegram_link_mode="signed", file_url_secret="s3cret")
        service = make_service(signed_settings)
        task = start(service, storage_mode="telegram")
        await send_all(service, task)

        result = await service.complete_upload(task.upload_id)

        identifier = result.dispatch.identifier
        reference = decode_signed_reference(identifier, build_secret_list(signed_settings))
        assert reference.file_id == "AgAD0001"
        assert reference.file_size == len(PAYLOAD)
        assert relay.files["AgAD0001"] == PAYLOAD
        assert file_records.get("AgAD0001.mp4").locator.signed_link is True

    @pytest.mark.asyncio
    async def test_relay_completion_without_metadata(self, make_service, settings, file_records):
        service = make_service(replace(settings, telegram_metadata_mode="off"))
        task = start(service, storage_mode="telegram")
        await send_all(service, task)

        result = await service.complete_upload(task.upload_id)

        assert result.dispatch.identifier == "AgAD0001.mp4"
        assert result.dispatch.record_written is False
        assert file_records.get("AgAD0001.mp4") is None

"""Integration tests for the key-value metadata store and its repositories."""

import time

import pytest

from gateway.database import get_db_connection
from gateway.repositories import candidate_keys
from gateway.types import (
    BackendType,
    ChunkBackend,
    FileRecord,
    R2Locator,
    TelegramLocator,
    UploadTask
)


def expire_now(db_path, key):
    with get_db_connection(db_path) as conn:
        conn.execute("UPDATE kv_entries SET expires_at = ? WHERE key = ?", (time.time() - 1, key))
        conn.commit()


class TestKVRepository:
    """Test the raw key-value operations."""

    def test_put_and_get_round_trip(self, kv):
        kv.put("alpha", b"\x00\x01", metadata={"a": 1})

        entry = kv.get("alpha")

        assert entry is not None
        assert entry.value == b"\x00\x01"
        assert entry.metadata == {"a": 1}
        assert entry.expires_at is None

    def test_put_overwrites_existing_key(self, kv):
        kv.put("alpha", "first")
        kv.put("alpha", "second", metadata={"v": 2})

        entry = kv.get("alpha")
        assert entry.value == b"second"
        assert entry.metadata == {"v": 2}

    def test_missing_key_returns_none(self, kv):
        assert kv.get("nope") is None
        assert kv.get_json("nope") is None

    def test_expired_entry_is_invisible(self, kv, db_path):
        kv.put("short", "value", ttl_seconds=60)
        assert kv.get("short") is not None

        expire_now(db_path, "short")

        assert kv.get("short") is None

    def test_purge_expired_removes_only_expired_rows(self, kv, db_path):
        kv.put("keep", "value")
        kv.put("ttl-keep", "value", ttl_seconds=3600)
        kv.put("gone", "value", ttl_seconds=60)
        expire_now(db_path, "gone")

        removed = kv.purge_expired()

        assert removed == 1
        with get_db_connection(db_path) as conn:
            keys = {row["key"] for row in conn.execute("SELECT key FROM kv_entries")}
        assert keys == {"keep", "ttl-keep"}

    def test_delete_reports_existence(self, kv):
        kv.put("alpha", "value")

        assert kv.delete("alpha") is True
        assert kv.delete("alpha") is False

    def test_get_json_ignores_non_json_values(self, kv):
        kv.put("raw", b"\xff\xfe")
        assert kv.get_json("raw") is None


class TestCandidateKeys:
    """Test legacy key lookup order."""

    def test_prefixed_identifier_is_used_as_is(self):
        assert candidate_keys("r2:r2_1_abc.png") == ["r2:r2_1_abc.png"]
        assert candidate_keys("img:AgAD.jpg") == ["img:AgAD.jpg"]

    def test_bare_identifier_tries_every_prefix_ending_with_bare_key(self):
        keys = candidate_keys("AgAD.jpg")

        assert keys[0] == "img:AgAD.jpg"
        assert keys[-1] == "AgAD.jpg"
        assert "discord:AgAD.jpg" in keys
        assert len(keys) == len(set(keys))


class TestFileRecordRepository:
    """Test file record persistence."""

    def test_save_and_find_by_bare_key(self, file_records):
        record = FileRecord(
            key="AgAD.jpg",
            file_name="cat.jpg",
            file_size=10,
            backend_type=BackendType.TELEGRAM,
            locator=TelegramLocator(file_id="AgAD", message_id=7),
            timestamp=1000,
        )
        file_records.save(record)

        found, key = file_records.find("AgAD.jpg")

        assert key == "AgAD.jpg"
        assert found.file_name == "cat.jpg"
        assert found.locator == TelegramLocator(file_id="AgAD", message_id=7)
        assert found.list_type == "None"

    def test_find_legacy_prefixed_record(self, kv, file_records):
        kv.put("img:AgOLD.png", "", metadata={"fileName": "old.png", "fileSize": 3, "TimeStamp": 5})

        found, key = file_records.find("AgOLD.png")

        assert key == "img:AgOLD.png"
        assert found.backend_type is BackendType.TELEGRAM
        assert found.locator.file_id == "AgOLD"

    def test_r2_record_without_explicit_key_falls_back_to_kv_key(self, kv, file_records):
        kv.put("r2:r2_1_abc.png", "", metadata={"fileName": "x.png", "storageType": "r2"})

        found, _ = file_records.find("r2:r2_1_abc.png")

        assert found.locator == R2Locator(r2_key="r2_1_abc.png")

    def test_find_missing_returns_identifier(self, file_records):
        found, key = file_records.find("unknown.bin")
        assert found is None
        assert key == "unknown.bin"

    def test_unknown_metadata_fields_survive_rewrite(self, kv, file_records):
        kv.put("r2:k.png", "", metadata={"fileName": "k.png", "storageType": "r2", "r2Key": "k.png", "folder": "a/b"})

        updated = file_records.set_list_type("r2:k.png", "Block")

        assert updated.is_blocked
        assert kv.get("r2:k.png").metadata["folder"] == "a/b"
        assert kv.get("r2:k.png").metadata["ListType"] == "Block"

    def test_adult_label_counts_as_blocked(self, kv, file_records):
        kv.put("r2:k.png", "", metadata={"fileName": "k.png", "storageType": "r2", "Label": "adult"})
        found, _ = file_records.find("r2:k.png")
        assert found.is_blocked


class TestUploadTaskRepository:
    """Test upload task bookkeeping."""

    def make_task(self, **overrides):
        fields = dict(
            upload_id="abc123",
            file_name="movie.mp4",
            file_size=12,
            file_type="video/mp4",
            total_chunks=3,
            storage_mode=BackendType.R2,
            chunk_backend=ChunkBackend.KV,
        )
        fields.update(overrides)
        return UploadTask(**fields)

    def test_save_and_get(self, upload_tasks):
        upload_tasks.save(self.make_task(uploaded_chunks=[0, 2]))

        task = upload_tasks.get("abc123")

        assert task.storage_mode is BackendType.R2
        assert task.uploaded_chunks == [0, 2]
        assert task.missing_chunks() == [1]

    def test_stored_task_document_fields(self, upload_tasks, kv):
        upload_tasks.save(self.make_task())

        assert set(kv.get_json("upload:abc123")) == {
            "uploadId", "fileName", "fileSize", "fileType", "totalChunks",
            "storageMode", "chunkBackend", "uploadedChunks", "createdAt", "status",
        }

    def test_task_is_stored_with_ttl(self, upload_tasks, kv):
        upload_tasks.save(self.make_task())
        entry = kv.get("upload:abc123")
        assert entry.expires_at == pytest.approx(time.time() + 3600, abs=5)

    def test_chunks_are_stored_under_their_own_keys(self, upload_tasks, kv):
        upload_tasks.put_chunk("abc123", 1, b"data")

        assert upload_tasks.get_chunk("abc123", 1) == b"data"
        assert kv.get("chunk:abc123:1").expires_at is not None
        assert upload_tasks.get_chunk("abc123", 0) is None

        upload_tasks.delete_chunk("abc123", 1)
        assert upload_tasks.get_chunk("abc123", 1) is None

    def test_expired_task_is_not_returned(self, upload_tasks, db_path):
        upload_tasks.save(self.make_task())
        expire_now(db_path, "upload:abc123")
        assert upload_tasks.get("abc123") is None

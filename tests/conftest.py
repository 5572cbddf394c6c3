"""Shared pytest fixtures for all tests."""

from dataclasses import replace

import httpx
import pytest
from fastapi.testclient import TestClient

from fakes import R2_CONFIG, S3_CONFIG, TELEGRAM_CONFIG, FakeS3Client, MemoryRelayBackend, build_registry
from gateway.backends import BackendRegistry
from gateway.config import Settings, get_settings
from gateway.database import init_database
from gateway.dependencies import get_backend_registry
from gateway.repositories import FileRecordRepository, KVRepository, UploadTaskRepository


@pytest.fixture
def db_path(tmp_path) -> str:
    """
    Initialized metadata database in a temporary directory.
    """
    path = str(tmp_path / "metadata.db")
    init_database(path)
    return path


@pytest.fixture
def kv(db_path) -> KVRepository:
    return KVRepository(db_path)


@pytest.fixture
def file_records(kv) -> FileRecordRepository:
    return FileRecordRepository(kv)


@pytest.fixture
def upload_tasks(kv) -> UploadTaskRepository:
    return UploadTaskRepository(kv)


@pytest.fixture
def settings(db_path) -> Settings:
    """
    Settings with the relay and both object stores configured and no auth.
    """
    return Settings(database_path=db_path, **R2_CONFIG, **S3_CONFIG, **TELEGRAM_CONFIG)


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def relay() -> MemoryRelayBackend:
    return MemoryRelayBackend()


@pytest.fixture
def http_client():
    """
    Outbound client whose every request fails, proving nothing reaches the network.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(599, json={"unexpected": str(request.url)})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def registry(settings, http_client, s3_client, relay) -> BackendRegistry:
    return build_registry(settings, http_client, s3_client, relay)


@pytest.fixture
def make_client(http_client, s3_client, relay):
    """
    Factory for a TestClient bound to the given settings and the in-memory backends.
    """
    from gateway.main import app

    def factory(settings: Settings, **overrides) -> TestClient:
        effective = replace(settings, **overrides) if overrides else settings
        registry = build_registry(effective, http_client, s3_client, relay)
        app.dependency_overrides[get_settings] = lambda: effective
        app.dependency_overrides[get_backend_registry] = lambda: registry
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client, settings) -> TestClient:
    return make_client(settings)

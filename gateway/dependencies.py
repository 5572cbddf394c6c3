"""FastAPI dependency providers wiring settings, storage and services."""

import httpx
from fastapi import Depends, Request

from gateway.backends import BackendRegistry
from gateway.config import Settings, get_settings
from gateway.repositories import FileRecordRepository, KVRepository, UploadTaskRepository
from gateway.services import (
    ChunkedUploadService,
    FileService,
    TelegramNotifier,
    TelegramWebhookService,
    UploadDispatcher,
    UploadService,
    UrlIngestService
)


def get_kv_repository(settings: Settings = Depends(get_settings)) -> KVRepository:
    return KVRepository(settings.database_path)


def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    Shared outbound client created at startup.
    """
    return request.app.state.http_client


def get_backend_registry(
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client)
) -> BackendRegistry:
    return BackendRegistry(settings, http_client)


def get_upload_dispatcher(
    settings: Settings = Depends(get_settings),
    kv: KVRepository = Depends(get_kv_repository),
    registry: BackendRegistry = Depends(get_backend_registry)
) -> UploadDispatcher:
    return UploadDispatcher(settings, registry, FileRecordRepository(kv), TelegramNotifier(settings))


def get_chunked_upload_service(
    settings: Settings = Depends(get_settings),
    kv: KVRepository = Depends(get_kv_repository),
    registry: BackendRegistry = Depends(get_backend_registry),
    dispatcher: UploadDispatcher = Depends(get_upload_dispatcher)
) -> ChunkedUploadService:
    return ChunkedUploadService(settings, UploadTaskRepository(kv), registry, dispatcher)


def get_upload_service(
    settings: Settings = Depends(get_settings),
    dispatcher: UploadDispatcher = Depends(get_upload_dispatcher)
) -> UploadService:
    return UploadService(settings, dispatcher)


def get_url_ingest_service(
    upload_service: UploadService = Depends(get_upload_service),
    registry: BackendRegistry = Depends(get_backend_registry)
) -> UrlIngestService:
    return UrlIngestService(upload_service, registry.http_client)


def get_telegram_webhook_service(
    settings: Settings = Depends(get_settings),
    dispatcher: UploadDispatcher = Depends(get_upload_dispatcher)
) -> TelegramWebhookService:
    return TelegramWebhookService(settings, dispatcher)


def get_file_service(
    settings: Settings = Depends(get_settings),
    kv: KVRepository = Depends(get_kv_repository),
    registry: BackendRegistry = Depends(get_backend_registry)
) -> FileService:
    return FileService(settings, FileRecordRepository(kv), registry)


def request_origin(request: Request) -> str:
    """
    Scheme and host the request was addressed to, without a trailing slash.
    """
    return str(request.base_url).rstrip("/")

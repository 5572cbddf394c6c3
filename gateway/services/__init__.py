"""Service layer for business logic."""

from gateway.services.cache_purge import CachePurger
from gateway.services.chunked_upload_service import ChunkedUploadService
from gateway.services.file_service import FileService, ResolvedFile
from gateway.services.notifications import NoticeOutcome, TelegramNotifier
from gateway.services.telegram_webhook import TelegramWebhookService
from gateway.services.upload_dispatcher import DispatchResult, UploadDispatcher
from gateway.services.upload_service import UploadService
from gateway.services.url_ingest_service import UrlIngestService

__all__ = [
    "CachePurger",
    "ChunkedUploadService",
    "DispatchResult",
    "FileService",
    "NoticeOutcome",
    "ResolvedFile",
    "TelegramNotifier",
    "TelegramWebhookService",
    "UploadDispatcher",
    "UploadService",
    "UrlIngestService",
]

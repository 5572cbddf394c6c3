"""Pydantic schemas for API requests and responses."""

from gateway.schemas.uploads import (
    InitUploadRequest,
    InitUploadResponse,
    UploadTaskResponse,
    ChunkUploadResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    UploadedFile,
    UrlUploadRequest,
    WebhookStatusResponse,
    WebhookResponse
)
from gateway.schemas.files import (
    FileInfoResponse,
    DeleteFileResponse,
    ListTypeResponse
)
from gateway.schemas.common import ErrorResponse, StatusResponse

__all__ = [
    "InitUploadRequest",
    "InitUploadResponse",
    "UploadTaskResponse",
    "ChunkUploadResponse",
    "CompleteUploadRequest",
    "CompleteUploadResponse",
    "UploadedFile",
    "UrlUploadRequest",
    "WebhookStatusResponse",
    "WebhookResponse",
    "FileInfoResponse",
    "DeleteFileResponse",
    "ListTypeResponse",
    "ErrorResponse",
    "StatusResponse"
]

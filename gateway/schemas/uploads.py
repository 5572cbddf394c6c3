"""Pydantic schemas for upload endpoints."""

from typing import List, Optional, Union

from pydantic import BaseModel

# Numeric fields accept strings and floats so that malformed values reach the
# service and yield a 400 instead of a validation error.
LooseNumber = Optional[Union[int, float, str]]


class InitUploadRequest(BaseModel):
    """Request model for starting a chunked upload."""
    fileName: Optional[str] = None
    fileSize: LooseNumber = None
    fileType: Optional[str] = None
    totalChunks: LooseNumber = None
    storageMode: Optional[str] = None


class InitUploadResponse(BaseModel):
    """Response model for a created upload task."""
    success: bool = True
    uploadId: str
    chunkSize: int
    chunkBackend: str


class UploadTaskResponse(BaseModel):
    """Response model for upload task status."""
    success: bool = True
    uploadId: str
    fileName: str
    fileSize: int
    fileType: str
    totalChunks: int
    storageMode: str
    chunkBackend: str
    uploadedChunks: List[int]
    createdAt: int
    status: str


class ChunkUploadResponse(BaseModel):
    """Response model for an accepted chunk."""
    success: bool = True
    chunkIndex: int
    uploadedChunks: List[int]
    chunkBackend: str
    progress: float
    message: Optional[str] = None


class CompleteUploadRequest(BaseModel):
    """Request model for completing a chunked upload."""
    uploadId: Optional[str] = None


class CompleteUploadResponse(BaseModel):
    """Response model for a completed upload."""
    success: bool = True
    src: str
    fileName: str
    fileSize: int


class UploadedFile(BaseModel):
    """One stored file in a single-request upload response."""
    src: str


class UrlUploadRequest(BaseModel):
    """Request model for storing a file fetched from a URL."""
    url: Optional[str] = None
    storageMode: Optional[str] = None


class WebhookStatusResponse(BaseModel):
    """Readiness report for the bot webhook endpoint."""
    ok: bool
    message: str
    endpoint: str


class WebhookResponse(BaseModel):
    """Acknowledgement of a bot update."""
    ok: bool = True
    ignored: Optional[str] = None
    directLink: Optional[str] = None
    storageType: Optional[str] = None
    mode: Optional[str] = None

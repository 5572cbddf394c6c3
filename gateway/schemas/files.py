"""Pydantic schemas for file lookup and management endpoints."""

from typing import List, Optional

from pydantic import BaseModel


class FileInfoResponse(BaseModel):
    """Response model for file metadata lookup."""
    success: bool = True
    fileId: str
    key: Optional[str] = None
    fileName: str
    originalName: Optional[str] = None
    fileSize: int
    uploadTime: Optional[int] = None
    storageType: str
    listType: str
    label: str
    liked: bool
    source: Optional[str] = None


class DeleteFileResponse(BaseModel):
    """Response model for file deletion."""
    success: bool = True
    message: str
    fileId: str
    kvKey: str
    backendDeleted: bool = False
    backendErrors: List[str] = []


class ListTypeResponse(BaseModel):
    """Response model for block and whitelist changes."""
    success: bool = True
    listType: str
    key: str

"""Common schemas used across multiple endpoints."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Response model for errors."""
    error: str
    code: str


class StatusResponse(BaseModel):
    """Response model for liveness endpoints."""
    message: str
    status: str

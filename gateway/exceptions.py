"""Custom exception classes for the gateway."""

from typing import Any, Dict, Optional


class GatewayException(Exception):
    """
    Base exception class for all gateway errors.

    ``extra`` carries additional fields merged into the JSON error body.
    """

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.extra = extra or {}


class ClientInputError(GatewayException):
    """
    Raised when request parameters are missing or invalid.
    """
    pass


class IncompleteUploadError(ClientInputError):
    """
    Raised when completion is requested before every chunk was accepted.
    """

    def __init__(self, uploaded: int, total: int, missing_chunks):
        super().__init__(
            "Not all chunks have been uploaded",
            extra={"uploaded": uploaded, "total": total, "missingChunks": list(missing_chunks)},
        )
        self.missing_chunks = list(missing_chunks)


class PayloadTooLargeError(ClientInputError):
    """
    Raised when fetched content exceeds the ingest size limit.
    """
    pass


class UnauthorizedError(GatewayException):
    """
    Raised when credentials are missing or do not verify.
    """
    pass


class ForbiddenError(GatewayException):
    """
    Raised when an authenticated or guest caller may not use an operation.
    """
    pass


class NotFoundError(GatewayException):
    """
    Raised when an identifier does not resolve to a file record.
    """
    pass


class UploadTaskNotFoundError(NotFoundError):
    """
    Raised when an upload task is unknown or has expired.
    """
    pass


class ChunkMissingError(NotFoundError):
    """
    Raised when a staged chunk cannot be read back during reassembly.
    """

    def __init__(self, upload_id: str, chunk_index: int):
        super().__init__(
            f"Chunk {chunk_index} of upload {upload_id} is missing",
            extra={"chunkIndex": chunk_index},
        )
        self.chunk_index = chunk_index


class BackendUnconfiguredError(GatewayException):
    """
    Raised when the requested storage mode has no credentials configured.
    """
    pass


class BackendFailureError(GatewayException):
    """
    Raised when a remote storage service rejects or fails a request.
    """
    pass


class SourceFetchError(GatewayException):
    """
    Raised when a remote URL given for ingest cannot be fetched.
    """
    pass


class SourceTimeoutError(SourceFetchError):
    """
    Raised when a remote URL given for ingest does not answer in time.
    """
    pass


class RangeNotSatisfiableError(GatewayException):
    """
    Raised when a byte range falls outside the object.

    ``total`` is None when an upstream rejected the range without reporting
    the object size.
    """

    def __init__(self, total: Optional[int]):
        super().__init__(f"Range not satisfiable for object of {total} bytes")
        self.total = total

"""Entry point for the file gateway service."""

import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from gateway.backends import BackendRegistry
from gateway.backends.http import create_http_client
from gateway.config import get_settings
from gateway.database import init_database
from gateway.exceptions import (
    GatewayException,
    ClientInputError,
    IncompleteUploadError,
    UnauthorizedError,
    ForbiddenError,
    NotFoundError,
    UploadTaskNotFoundError,
    ChunkMissingError,
    BackendUnconfiguredError,
    BackendFailureError,
    PayloadTooLargeError,
    SourceFetchError,
    SourceTimeoutError
)
from gateway.expiry_task import ExpiredStateSweeper
from gateway.repositories.kv_repository import KVRepository
from gateway.routes import file_router, manage_router, upload_router
from gateway.schemas.common import StatusResponse

logger = setup_logging('gateway')

app = FastAPI(
    title="File Gateway",
    description="Chunked upload and range-aware download gateway over pluggable storage backends",
    version="1.0.0"
)

sweeper = None


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(
        f"Request started: {request.method} {request.url.path} [request_id={request_id}]"
    )

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Initialize the metadata store, the shared HTTP client and the expiry sweeper.
    """
    global sweeper

    logger.info("Gateway service starting up...")
    settings = get_settings()

    init_database(settings.database_path)
    logger.info(f"Database initialized [path={settings.database_path}]")

    app.state.http_client = create_http_client()

    sweeper = ExpiredStateSweeper(
        KVRepository(settings.database_path),
        BackendRegistry(settings, app.state.http_client)
    )
    await sweeper.start()


@app.on_event("shutdown")
async def shutdown_event():
    """
    Stop background work and release outbound connections.
    """
    logger.info("Gateway service shutting down...")

    if sweeper:
        await sweeper.stop()

    http_client = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()
        logger.info("HTTP client closed")


def error_response(status_code: int, exc: GatewayException, code: str) -> JSONResponse:
    content = {"error": str(exc), "code": code}
    content.update(exc.extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Request validation error: {exc.errors()} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request parameters", "code": "INVALID_INPUT"}
    )


@app.exception_handler(IncompleteUploadError)
async def incomplete_upload_handler(request: Request, exc: IncompleteUploadError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Incomplete upload: missing={exc.missing_chunks} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_400_BAD_REQUEST, exc, "INCOMPLETE_UPLOAD")


@app.exception_handler(ClientInputError)
async def client_input_handler(request: Request, exc: ClientInputError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Invalid input: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_400_BAD_REQUEST, exc, "INVALID_INPUT")


@app.exception_handler(UnauthorizedError)
async def unauthorized_handler(request: Request, exc: UnauthorizedError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Unauthorized: {exc} [request_id={request_id}] path={request.url.path}"
    )
    response = error_response(status.HTTP_401_UNAUTHORIZED, exc, "UNAUTHORIZED")
    response.headers["WWW-Authenticate"] = 'Basic realm="gateway"'
    return response


@app.exception_handler(ForbiddenError)
async def forbidden_handler(request: Request, exc: ForbiddenError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Forbidden: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_403_FORBIDDEN, exc, "FORBIDDEN")


@app.exception_handler(UploadTaskNotFoundError)
async def upload_task_not_found_handler(request: Request, exc: UploadTaskNotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Upload task not found: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_404_NOT_FOUND, exc, "UPLOAD_NOT_FOUND")


@app.exception_handler(ChunkMissingError)
async def chunk_missing_handler(request: Request, exc: ChunkMissingError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Chunk missing during reassembly: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_404_NOT_FOUND, exc, "CHUNK_MISSING")


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Not found: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_404_NOT_FOUND, exc, "NOT_FOUND")


@app.exception_handler(BackendUnconfiguredError)
async def backend_unconfigured_handler(request: Request, exc: BackendUnconfiguredError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Backend not configured: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc, "BACKEND_UNCONFIGURED")


@app.exception_handler(BackendFailureError)
async def backend_failure_handler(request: Request, exc: BackendFailureError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Backend failure: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return error_response(status.HTTP_502_BAD_GATEWAY, exc, "BACKEND_FAILURE")


@app.exception_handler(PayloadTooLargeError)
async def payload_too_large_handler(request: Request, exc: PayloadTooLargeError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Payload too large: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, exc, "FILE_TOO_LARGE")


@app.exception_handler(SourceTimeoutError)
async def source_timeout_handler(request: Request, exc: SourceTimeoutError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Source URL timed out: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_408_REQUEST_TIMEOUT, exc, "SOURCE_TIMEOUT")


@app.exception_handler(SourceFetchError)
async def source_fetch_handler(request: Request, exc: SourceFetchError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Source URL fetch failed: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return error_response(status.HTTP_502_BAD_GATEWAY, exc, "SOURCE_FETCH_FAILED")


@app.exception_handler(GatewayException)
async def gateway_exception_handler(request: Request, exc: GatewayException):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Gateway exception: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc, "INTERNAL_ERROR")


app.include_router(upload_router)
app.include_router(file_router)
app.include_router(manage_router)


@app.get("/", response_model=StatusResponse)
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "File Gateway API", "status": "running"}


@app.get("/health")
async def health_check():
    """
    Health check endpoint for Docker healthcheck.
    Returns 200 if service is alive.
    """
    return {"status": "healthy", "service": "gateway"}


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    settings = get_settings()
    uvicorn.run(
        "gateway.main:app",
        host=settings.host,
        port=settings.port
    )


if __name__ == "__main__":
    main()

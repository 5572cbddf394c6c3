"""Upload API routes: chunked and single-request uploads, URL ingest and the bot webhook."""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query, Request, UploadFile

from common.constants import CHUNK_SIZE_BYTES
from gateway.auth import get_caller, require_admin
from gateway.dependencies import (
    get_chunked_upload_service,
    get_telegram_webhook_service,
    get_upload_service,
    get_url_ingest_service,
    request_origin
)
from gateway.exceptions import ClientInputError
from gateway.schemas.uploads import (
    ChunkUploadResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    UploadedFile,
    UploadTaskResponse,
    UrlUploadRequest,
    WebhookResponse,
    WebhookStatusResponse
)
from gateway.services.chunked_upload_service import ChunkedUploadService
from gateway.services.telegram_webhook import TelegramWebhookService
from gateway.services.upload_service import UploadService
from gateway.services.url_ingest_service import UrlIngestService
from gateway.types import Caller

router = APIRouter(tags=["Upload"])


@router.post("/chunked-upload/init", response_model=InitUploadResponse)
async def init_chunked_upload(
    body: InitUploadRequest,
    caller: Caller = Depends(get_caller),
    service: ChunkedUploadService = Depends(get_chunked_upload_service)
):
    """
    Start a chunked upload.

    Parameters:
        - fileName, fileSize, totalChunks: required
        - fileType: MIME type of the reassembled file
        - storageMode: telegram | r2 | s3 | discord | huggingface (unknown values mean telegram)

    Returns:
        - uploadId: Token identifying the upload task for one hour
        - chunkSize: Suggested chunk size in bytes
        - chunkBackend: Where chunks are staged (kv or r2)

    Raises:
        - 400: Missing fields or file larger than 100MB
        - 401: Invalid credentials
        - 403: Guest caller
    """
    task = service.init_upload(
        caller,
        file_name=body.fileName,
        file_size=body.fileSize,
        file_type=body.fileType,
        total_chunks=body.totalChunks,
        storage_mode=body.storageMode,
    )
    return InitUploadResponse(
        uploadId=task.upload_id,
        chunkSize=CHUNK_SIZE_BYTES,
        chunkBackend=task.chunk_backend.value,
    )


@router.get("/chunked-upload/init", response_model=UploadTaskResponse)
async def get_chunked_upload(
    uploadId: Optional[str] = Query(None),
    service: ChunkedUploadService = Depends(get_chunked_upload_service)
):
    """
    Report the state of an upload task.

    Raises:
        - 400: Missing uploadId
        - 404: Unknown or expired task
    """
    task = service.get_task(uploadId)
    return UploadTaskResponse(**ChunkedUploadService.task_status(task))


@router.post("/chunked-upload/chunk", response_model=ChunkUploadResponse, response_model_exclude_none=True)
async def upload_chunk(
    uploadId: Optional[str] = Form(None),
    chunkIndex: Optional[str] = Form(None),
    chunk: Optional[UploadFile] = File(None),
    caller: Caller = Depends(require_admin),
    service: ChunkedUploadService = Depends(get_chunked_upload_service)
):
    """
    Accept one chunk (multipart/form-data).

    Re-sending an index that was already accepted returns the current state
    without rewriting it.

    Raises:
        - 400: Missing fields or index out of range
        - 401: Missing or invalid credentials
        - 404: Unknown or expired task
    """
    data = await chunk.read() if chunk is not None else None
    accepted = await service.accept_chunk(uploadId, chunkIndex, data)
    return ChunkUploadResponse(
        chunkIndex=accepted.chunk_index,
        uploadedChunks=accepted.uploaded_chunks,
        chunkBackend=accepted.chunk_backend.value,
        progress=accepted.progress,
        message="chunk exists" if accepted.duplicate else None,
    )


@router.post("/chunked-upload/complete", response_model=CompleteUploadResponse)
async def complete_chunked_upload(
    body: CompleteUploadRequest,
    request: Request,
    caller: Caller = Depends(require_admin),
    service: ChunkedUploadService = Depends(get_chunked_upload_service)
):
    """
    Reassemble the chunks and store the file on the task's backend.

    Returns:
        - src: /file/{identifier}
        - fileName, fileSize: As declared at init

    Raises:
        - 400: Chunks missing (body lists missingChunks)
        - 401: Missing or invalid credentials
        - 404: Unknown task or a staged chunk is gone (body names chunkIndex)
        - 500: Storage backend not configured
        - 502: Storage backend failure
    """
    result = await service.complete_upload(body.uploadId, origin=request_origin(request))
    return CompleteUploadResponse(
        src=result.dispatch.src,
        fileName=result.file_name,
        fileSize=result.file_size,
    )


@router.post("/upload", response_model=List[UploadedFile])
async def upload_file(
    request: Request,
    file: Optional[UploadFile] = File(None),
    storageMode: Optional[str] = Form(None),
    caller: Caller = Depends(get_caller),
    service: UploadService = Depends(get_upload_service)
):
    """
    Upload a whole file in one request (multipart/form-data).

    Raises:
        - 400: No file
        - 403: Guest uploads disabled or file over the guest limit
        - 500: Storage backend not configured
        - 502: Storage backend failure
    """
    data = await file.read() if file is not None else None
    result = await service.upload(
        caller,
        data,
        file.filename if file is not None else None,
        file.content_type if file is not None else None,
        storageMode,
        origin=request_origin(request),
    )
    return [UploadedFile(src=result.src)]


@router.post("/upload-from-url", response_model=List[UploadedFile])
async def upload_from_url(
    body: UrlUploadRequest,
    request: Request,
    caller: Caller = Depends(get_caller),
    service: UrlIngestService = Depends(get_url_ingest_service)
):
    """
    Fetch a remote file and store it like a single-request upload.

    Parameters:
        - url: Absolute http(s) URL of the file
        - storageMode: Target backend (unknown values mean telegram)

    Raises:
        - 400: Missing or non-http URL, or empty remote body
        - 403: Guest uploads disabled or file over the guest limit
        - 408: Remote server did not answer in time
        - 413: Remote file larger than 20MB
        - 500: Storage backend not configured
        - 502: Remote fetch failed or storage backend failure
    """
    result = await service.ingest(caller, body.url, body.storageMode, origin=request_origin(request))
    return [UploadedFile(src=result.src)]


@router.get("/telegram/webhook", response_model=WebhookStatusResponse)
async def telegram_webhook_status(request: Request):
    """
    Report that the webhook endpoint is reachable.
    """
    return WebhookStatusResponse(
        ok=True,
        message="Telegram webhook endpoint is ready",
        endpoint=f"{request_origin(request)}/telegram/webhook",
    )


@router.post("/telegram/webhook", response_model=WebhookResponse, response_model_exclude_none=True)
async def telegram_webhook(
    request: Request,
    secret_token: Optional[str] = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
    service: TelegramWebhookService = Depends(get_telegram_webhook_service)
):
    """
    Receive a Bot API update and publish the file it carries.

    Updates without a file are acknowledged with ``ignored`` set.

    Raises:
        - 400: Body is not JSON
        - 401: Secret token header does not match TG_WEBHOOK_SECRET
        - 500: Bot token not configured
    """
    service.authorize(secret_token)
    try:
        update = await request.json()
    except ValueError:
        raise ClientInputError("Invalid JSON body")
    return WebhookResponse(**await service.handle_update(update, origin=request_origin(request)))

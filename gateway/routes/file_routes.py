"""File retrieval API routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response, status
from fastapi.responses import RedirectResponse, StreamingResponse
from starlette.background import BackgroundTask

from gateway.auth import get_caller
from gateway.dependencies import get_file_service, request_origin
from gateway.range_proxy import CORS_HEADERS, ProxiedFile
from gateway.schemas.files import FileInfoResponse
from gateway.services.file_service import FileService
from gateway.types import Caller

router = APIRouter(tags=["Files"])


def to_response(proxied: ProxiedFile) -> Response:
    """
    Turn a proxy result into a response. The backend stream is released once
    the body has been sent, or right after a bodiless answer.
    """
    if proxied.body is None:
        headers = dict(proxied.headers)
        content = b""
        if proxied.status == status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE:
            content = b"Range Not Satisfiable"
            headers["Content-Type"] = "text/plain"
            headers.pop("Content-Length", None)
        return Response(
            content=content,
            status_code=proxied.status,
            headers=headers,
            background=BackgroundTask(proxied.close),
        )

    async def stream():
        try:
            async for piece in proxied.body:
                yield piece
        finally:
            await proxied.close()

    return StreamingResponse(stream(), status_code=proxied.status, headers=proxied.headers)


@router.options("/file/{identifier:path}")
async def file_preflight(identifier: str):
    """CORS preflight for file URLs."""
    headers = dict(CORS_HEADERS, **{"Access-Control-Max-Age": "86400"})
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)


@router.api_route("/file/{identifier:path}", methods=["GET", "HEAD"])
async def get_file(
    identifier: str,
    request: Request,
    range_header: Optional[str] = Header(None, alias="Range"),
    referer: Optional[str] = Header(None),
    caller: Caller = Depends(get_caller),
    service: FileService = Depends(get_file_service)
):
    """
    Stream a stored file, honouring single byte ranges.

    Parameters:
        - identifier: Signed reference, backend-prefixed key or legacy key
        - Range header: bytes=A-B, bytes=A- or bytes=-N (optional)

    Returns:
        - 200 full body, 206 partial body or 416 with Content-Range: bytes */total
        - 302 to the block page or image for blocked files

    Raises:
        - 404: Unknown identifier or object missing from the backend
        - 500: Storage backend not configured
        - 502: Storage backend failure
    """
    origin = request_origin(request)
    resolved = service.resolve(identifier, backfill=True)

    redirect_url = service.access_redirect(resolved, caller, origin, referer)
    if redirect_url:
        return RedirectResponse(redirect_url, status_code=status.HTTP_302_FOUND, headers=CORS_HEADERS)

    proxied = await service.open(resolved, range_header, head_only=request.method == "HEAD")
    return to_response(proxied)


@router.get("/file-info/{identifier:path}", response_model=FileInfoResponse, response_model_exclude_none=True)
async def get_file_info(
    identifier: str,
    response: Response,
    service: FileService = Depends(get_file_service)
):
    """
    Describe a stored file without fetching its bytes.

    Raises:
        - 404: Unknown identifier
    """
    info = service.file_info(identifier)
    response.headers["Cache-Control"] = "public, max-age=3600"
    response.headers["Access-Control-Allow-Origin"] = "*"
    return FileInfoResponse(**info)

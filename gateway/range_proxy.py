"""
Range-aware streaming of stored files.

``RangeStreamProxy.serve`` turns a backend download into a response shape
(200 full body, 206 partial, or 416) for one of three situations:

* no usable ``Range`` header: the backend stream is passed through as 200;
* the backend serves exact windows itself (object storage): the object is
  sized with ``stat``, the window validated and fetched directly;
* otherwise the range is forwarded upstream. A 206 or 416 answer is passed through.
  A 200 answer is materialized once and sliced, unless it declares no length,
  in which case the full body is returned as 200.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

from common.constants import DEFAULT_MIME_TYPE, STREAM_PIECE_SIZE_BYTES
from common.types import ByteRange
from gateway.backends.base import BackendObject, StorageBackend, iterate_bytes
from gateway.exceptions import NotFoundError, RangeNotSatisfiableError
from gateway.types import Locator
from gateway.utils import file_extension

logger = logging.getLogger(__name__)

MIME_TYPES: Dict[str, str] = {
    "mp4": "video/mp4",
    "webm": "video/webm",
    "ogg": "video/ogg",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "m4v": "video/x-m4v",
    "wmv": "video/x-ms-wmv",
    "flv": "video/x-flv",
    "3gp": "video/3gpp",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "aac": "audio/aac",
    "m4a": "audio/mp4",
    "wma": "audio/x-ms-wma",
    "opus": "audio/opus",
    "oga": "audio/ogg",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "svg": "image/svg+xml",
    "ico": "image/x-icon",
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "txt": "text/plain",
    "html": "text/html",
    "css": "text/css",
    "js": "text/javascript",
    "json": "application/json",
    "xml": "application/xml",
    "md": "text/markdown",
    "zip": "application/zip",
    "rar": "application/vnd.rar",
    "7z": "application/x-7z-compressed",
    "tar": "application/x-tar",
    "gz": "application/gzip",
}

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "Range, Content-Type, Accept, Origin",
    "Access-Control-Expose-Headers": "Content-Length, Content-Range, Accept-Ranges, Content-Type, Content-Disposition",
    "CDN-Cache-Control": "no-store",
}

_RANGE_PATTERN = re.compile(r"bytes=(\d*)-(\d*)")


def content_type_for(file_name: str) -> str:
    return MIME_TYPES.get(file_extension(file_name, fallback=""), DEFAULT_MIME_TYPE)


def content_disposition(file_name: str) -> str:
    encoded = quote(file_name or "", safe="")
    return f"inline; filename=\"{encoded}\"; filename*=UTF-8''{encoded}"


def file_headers(file_name: str) -> Dict[str, str]:
    """
    Headers shared by every file response.
    """
    headers = dict(CORS_HEADERS)
    headers.update({
        "Content-Type": content_type_for(file_name),
        "Content-Disposition": content_disposition(file_name),
        "Cache-Control": "no-store, max-age=0",
        "Accept-Ranges": "bytes",
    })
    return headers


@dataclass(frozen=True)
class RangeRequest:
    """
    Syntactic ``bytes=start-end`` request. ``start`` None means a suffix of
    ``end`` bytes; ``end`` None means through the last byte.
    """
    start: Optional[int]
    end: Optional[int]

    def header_value(self) -> str:
        start = "" if self.start is None else str(self.start)
        end = "" if self.end is None else str(self.end)
        return f"bytes={start}-{end}"


def parse_range_header(header: Optional[str]) -> Optional[RangeRequest]:
    """
    Parse a single-range header. Anything else, including ``bytes=-``, is
    treated as no range at all.
    """
    if not header:
        return None
    match = _RANGE_PATTERN.fullmatch(header.strip())
    if not match:
        return None
    raw_start, raw_end = match.group(1), match.group(2)
    if not raw_start and not raw_end:
        return None
    return RangeRequest(
        start=int(raw_start) if raw_start else None,
        end=int(raw_end) if raw_end else None,
    )


def resolve_range(request: RangeRequest, total: int) -> ByteRange:
    """
    Resolve a parsed range against an object of ``total`` bytes.

    Raises:
        RangeNotSatisfiableError: If start >= total or end < start
    """
    if request.start is None:
        start = max(0, total - (request.end or 0))
        end = total - 1
    else:
        start = request.start
        end = total - 1 if request.end is None else request.end

    if start >= total or end < start:
        raise RangeNotSatisfiableError(total)
    return ByteRange(start=start, end=min(end, total - 1), total=total)


async def _noop() -> None:
    return None


@dataclass
class ProxiedFile:
    """
    Response shape produced by the proxy; ``body`` is None for bodiless answers.
    """
    status: int
    headers: Dict[str, str]
    body: Optional[AsyncIterator[bytes]] = None
    close: Callable[[], Awaitable[None]] = field(default=_noop)


class RangeStreamProxy:
    def __init__(self, backend: StorageBackend):
        self.backend = backend

    async def serve(
        self,
        locator: Locator,
        file_name: str,
        range_header: Optional[str] = None,
        head_only: bool = False
    ) -> ProxiedFile:
        """
        Produce the response for one download request.

        Args:
            locator: Backend locator of the stored object
            file_name: Recorded name, used for Content-Type and Content-Disposition
            range_header: Raw ``Range`` request header, if any
            head_only: Release the backend stream without sending a body

        Returns:
            ProxiedFile with status 200, 206 or 416

        Raises:
            NotFoundError: If the backend has no such object
            BackendFailureError: If the backend fails the fetch
        """
        headers = file_headers(file_name)
        requested = parse_range_header(range_header)

        if requested is None:
            obj = await self._open(locator)
            return self._full(obj, headers, head_only)

        if self.backend.supports_native_range:
            return await self._serve_native(locator, requested, headers, head_only)

        try:
            obj = await self._open(locator, requested.header_value())
        except RangeNotSatisfiableError as e:
            return self._unsatisfiable(e.total, headers)
        if obj.status == 206:
            if obj.content_range:
                headers["Content-Range"] = obj.content_range
            if obj.content_length is not None:
                headers["Content-Length"] = str(obj.content_length)
            return self._stream(206, obj, headers, head_only)

        return await self._serve_emulated(obj, requested, headers, head_only)

    async def _open(self, locator: Locator, range_header: Optional[str] = None) -> BackendObject:
        obj = await self.backend.get(locator, range_header)
        if obj is None:
            raise NotFoundError("File not found in storage backend")
        return obj

    async def _serve_native(
        self,
        locator: Locator,
        requested: RangeRequest,
        headers: Dict[str, str],
        head_only: bool
    ) -> ProxiedFile:
        total = await self.backend.stat(locator)
        if total is None:
            raise NotFoundError("File not found in storage backend")
        try:
            window = resolve_range(requested, total)
        except RangeNotSatisfiableError:
            return self._unsatisfiable(total, headers)

        obj = await self._open(locator, window.header_value())
        headers["Content-Range"] = window.content_range()
        headers["Content-Length"] = str(window.length)
        return self._stream(206, obj, headers, head_only)

    async def _serve_emulated(
        self,
        obj: BackendObject,
        requested: RangeRequest,
        headers: Dict[str, str],
        head_only: bool
    ) -> ProxiedFile:
        total = obj.content_length
        if total is None:
            logger.info("Upstream ignored the range and declared no length; serving full body")
            return self._full(obj, headers, head_only)

        try:
            window = resolve_range(requested, total)
        except RangeNotSatisfiableError:
            await obj.close()
            return self._unsatisfiable(total, headers)

        data = await obj.read_all()
        sliced = data[window.start:window.end + 1]
        headers["Content-Range"] = window.content_range()
        headers["Content-Length"] = str(len(sliced))
        if head_only:
            return ProxiedFile(status=206, headers=headers)
        return ProxiedFile(status=206, headers=headers, body=iterate_bytes(sliced, STREAM_PIECE_SIZE_BYTES))

    def _full(self, obj: BackendObject, headers: Dict[str, str], head_only: bool) -> ProxiedFile:
        if obj.content_length is not None:
            headers["Content-Length"] = str(obj.content_length)
        return self._stream(200, obj, headers, head_only)

    def _stream(self, status: int, obj: BackendObject, headers: Dict[str, str], head_only: bool) -> ProxiedFile:
        if head_only:
            return ProxiedFile(status=status, headers=headers, close=obj.close)
        return ProxiedFile(status=status, headers=headers, body=obj.stream, close=obj.close)

    def _unsatisfiable(self, total: Optional[int], headers: Dict[str, str]) -> ProxiedFile:
        headers.pop("Content-Length", None)
        if total is not None:
            headers["Content-Range"] = f"bytes */{total}"
        return ProxiedFile(status=416, headers=headers)

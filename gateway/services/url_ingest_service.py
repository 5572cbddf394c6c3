"""Uploads of files fetched from a remote URL."""

from typing import Optional, Tuple
from urllib.parse import ParseResult, unquote, urlparse

import httpx

from common.constants import DEFAULT_MIME_TYPE, URL_INGEST_MAX_BYTES, URL_INGEST_TIMEOUT_SECONDS
from common.logging_config import get_logger
from gateway.exceptions import ClientInputError, PayloadTooLargeError, SourceFetchError, SourceTimeoutError
from gateway.services.upload_dispatcher import DispatchResult
from gateway.services.upload_service import UploadService
from gateway.types import Caller, now_ms
from gateway.utils import extension_for_mime_type, format_file_size

logger = get_logger(__name__)

FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "image/*,video/*,audio/*,application/*,*/*",
}


def parse_source_url(url: Optional[str]) -> ParseResult:
    """
    Raises:
        ClientInputError: If ``url`` is not an absolute http(s) URL
    """
    if not url or not isinstance(url, str):
        raise ClientInputError("A valid URL is required")
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        raise ClientInputError("Only HTTP and HTTPS URLs are supported")
    if not parsed.netloc:
        raise ClientInputError("Invalid URL")
    return parsed


def derive_file_name(path: str, content_type: str) -> str:
    """
    Last path segment of the URL, with an extension taken from the MIME type
    when the segment has none. An empty segment yields ``url_<ms>.<ext>``.
    """
    name = unquote(path.rsplit("/", 1)[-1])
    if not name:
        return f"url_{now_ms()}.{extension_for_mime_type(content_type)}"
    if "." not in name:
        return f"{name}.{extension_for_mime_type(content_type)}"
    return name


class UrlIngestService:
    """
    Fetches a remote file on the caller's behalf and stores it like a
    single-request upload.
    """

    def __init__(
        self,
        upload_service: UploadService,
        client: httpx.AsyncClient,
        max_bytes: Optional[int] = None
    ):
        self.upload_service = upload_service
        self.client = client
        self.max_bytes = URL_INGEST_MAX_BYTES if max_bytes is None else max_bytes

    async def fetch(self, url: str) -> Tuple[bytes, str]:
        """
        Download ``url`` completely, stopping as soon as the size limit is passed.

        Returns:
            Body and Content-Type of the remote file

        Raises:
            SourceTimeoutError: If the remote server does not answer in time
            SourceFetchError: If the connection fails or the server answers with an error
            PayloadTooLargeError: If the body exceeds the size limit
            ClientInputError: If the body is empty
        """
        try:
            async with self.client.stream(
                "GET",
                url,
                headers=FETCH_HEADERS,
                timeout=URL_INGEST_TIMEOUT_SECONDS
            ) as response:
                if not response.is_success:
                    raise SourceFetchError(f"Source URL returned HTTP {response.status_code}")

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise self._too_large(int(declared))

                body = bytearray()
                async for piece in response.aiter_bytes():
                    body.extend(piece)
                    if len(body) > self.max_bytes:
                        raise self._too_large(len(body))
                content_type = response.headers.get("content-type") or DEFAULT_MIME_TYPE
        except httpx.TimeoutException as e:
            raise SourceTimeoutError(f"Source URL did not respond in time: {e}")
        except httpx.HTTPError as e:
            raise SourceFetchError(f"Could not fetch source URL: {e}")

        if not body:
            raise ClientInputError("Source URL returned an empty body")
        return bytes(body), content_type

    def _too_large(self, size: int) -> PayloadTooLargeError:
        return PayloadTooLargeError(
            f"File size ({format_file_size(size)}) exceeds the limit ({format_file_size(self.max_bytes)})"
        )

    async def ingest(
        self,
        caller: Caller,
        url: Optional[str],
        storage_mode: Optional[str],
        origin: str = ""
    ) -> DispatchResult:
        """
        Fetch ``url`` and store it on the requested backend (telegram by default).

        Raises:
            ClientInputError: If the URL is invalid or the body empty
            SourceTimeoutError, SourceFetchError: If the remote file cannot be fetched
            PayloadTooLargeError: If the remote file exceeds the size limit
            ForbiddenError: If a guest may not upload this file
            BackendUnconfiguredError: If the backend has no credentials
            BackendFailureError: If the remote upload fails
        """
        parsed = parse_source_url(url)
        data, content_type = await self.fetch(parsed.geturl())
        file_name = derive_file_name(parsed.path, content_type)

        logger.info(f"Fetched source URL [host={parsed.netloc}, name={file_name}, size={len(data)}]")
        return await self.upload_service.upload(
            caller,
            data,
            file_name,
            content_type,
            storage_mode,
            origin=origin,
        )

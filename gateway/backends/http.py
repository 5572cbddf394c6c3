"""Retrying HTTP transport shared by the HTTP-based backends."""

import asyncio
import logging
import re
from typing import Callable, Optional

import httpx

from common.constants import (
    DEFAULT_RETRY_AFTER_SECONDS,
    REMOTE_MAX_RETRIES,
    REMOTE_TIMEOUT_SECONDS,
    STREAM_PIECE_SIZE_BYTES
)
from gateway.backends.base import BackendObject
from gateway.exceptions import BackendFailureError, RangeNotSatisfiableError

logger = logging.getLogger(__name__)

_UNSATISFIED_RANGE = re.compile(r"bytes \*/(\d+)")


def create_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(REMOTE_TIMEOUT_SECONDS), follow_redirects=True)


def retry_after_seconds(response: httpx.Response) -> float:
    """
    Delay requested by a rate-limited response.

    Telegram reports it as ``parameters.retry_after``, Discord as a top-level
    ``retry_after``; otherwise the ``Retry-After`` header is used.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        parameters = body.get("parameters") or {}
        for candidate in (parameters.get("retry_after"), body.get("retry_after")):
            if candidate is not None:
                try:
                    return float(candidate)
                except (TypeError, ValueError):
                    break

    header = response.headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    return DEFAULT_RETRY_AFTER_SECONDS


async def send_with_retry(
    client: httpx.AsyncClient,
    build_request: Callable[[], httpx.Request],
    stream: bool = False,
    max_retries: int = REMOTE_MAX_RETRIES,
    operation: Optional[str] = None
) -> httpx.Response:
    """
    Send a request with retries for transient failures.

    Connect errors and timeouts back off exponentially (1s, 2s, 4s). HTTP 429
    waits for the server-supplied retry delay. Any other response, successful
    or not, is returned to the caller.

    Args:
        client: Shared async client
        build_request: Factory producing a fresh request per attempt
        stream: Leave the body unread so the caller can stream it
        max_retries: Retries after the first attempt
        operation: Label used in log messages

    Returns:
        The final response

    Raises:
        BackendFailureError: If every attempt failed at the transport level or was rate limited
    """
    label = operation or "remote call"
    last_error: Optional[str] = None

    for attempt in range(max_retries + 1):
        request = build_request()
        try:
            response = await client.send(request, stream=stream)
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            last_error = f"{type(e).__name__}: {e}"
            if attempt < max_retries:
                delay = 2 ** attempt
                logger.warning(f"Transient failure in {label}, retrying in {delay}s (attempt {attempt + 1}/{max_retries}): {e}")
                await asyncio.sleep(delay)
                continue
            break

        if response.status_code == 429:
            if stream:
                await response.aread()
            delay = retry_after_seconds(response)
            await response.aclose()
            last_error = "rate limited (HTTP 429)"
            if attempt < max_retries:
                logger.warning(f"Rate limited in {label}, retrying in {delay}s (attempt {attempt + 1}/{max_retries})")
                await asyncio.sleep(delay)
                continue
            break

        return response

    logger.error(f"{label} failed after {max_retries + 1} attempts: {last_error}")
    raise BackendFailureError(f"{label} failed: {last_error}")


def _int_header(response: httpx.Response, name: str) -> Optional[int]:
    value = response.headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def unsatisfiable_total(content_range: Optional[str]) -> Optional[int]:
    """
    Object size from a ``bytes */total`` Content-Range, if present.
    """
    match = _UNSATISFIED_RANGE.fullmatch((content_range or "").strip())
    return int(match.group(1)) if match else None


async def open_download(
    response: httpx.Response,
    label: str,
    range_header: Optional[str] = None
) -> Optional[BackendObject]:
    """
    Turn a streamed download response into a BackendObject.

    Returns None when the upstream reports the object missing (404).

    Raises:
        RangeNotSatisfiableError: If the upstream rejected the forwarded range
        BackendFailureError: For any other error status
    """
    if response.status_code == 404:
        await response.aclose()
        return None
    if response.status_code == 416 and range_header:
        await response.aclose()
        raise RangeNotSatisfiableError(unsatisfiable_total(response.headers.get("content-range")))
    if response.status_code >= 400:
        await response.aclose()
        raise BackendFailureError(f"{label} failed with HTTP {response.status_code}")
    return to_backend_object(response)


def to_backend_object(response: httpx.Response) -> BackendObject:
    """
    Wrap a streamed response, keeping the upstream status only when it is a real 206.
    """
    is_partial = response.status_code == 206
    return BackendObject(
        stream=response.aiter_bytes(STREAM_PIECE_SIZE_BYTES),
        status=206 if is_partial else 200,
        content_length=_int_header(response, "content-length"),
        content_range=response.headers.get("content-range") if is_partial else None,
        content_type=response.headers.get("content-type"),
        close=response.aclose,
    )

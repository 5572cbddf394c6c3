"""Storage backend capability interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional

from gateway.types import BackendType, Locator


async def _noop() -> None:
    return None


@dataclass
class BackendObject:
    """
    An open download from a backend.

    ``status`` is 206 only when the backend itself honoured the requested range,
    in which case ``content_range`` carries its ``Content-Range`` value.
    ``close`` must be awaited once the stream is no longer needed.
    """
    stream: AsyncIterator[bytes]
    status: int = 200
    content_length: Optional[int] = None
    content_range: Optional[str] = None
    content_type: Optional[str] = None
    close: Callable[[], Awaitable[None]] = field(default=_noop)

    async def read_all(self) -> bytes:
        try:
            return b"".join([piece async for piece in self.stream])
        finally:
            await self.close()


async def iterate_bytes(data: bytes, piece_size: int) -> AsyncIterator[bytes]:
    for offset in range(0, len(data), piece_size):
        yield data[offset:offset + piece_size]


class StorageBackend(ABC):
    """
    Uniform put/get/delete capability over one remote storage service.

    Backends with ``supports_native_range`` can report an object's size via
    ``stat`` and serve an exact ``bytes=start-end`` window. Others forward the
    range header and may answer with the full object.
    """

    backend_type: BackendType
    supports_native_range: bool = False

    @abstractmethod
    async def put(self, data: bytes, file_name: str, content_type: str) -> Locator:
        """
        Store ``data`` and return the locator needed to fetch it again.

        Raises:
            BackendFailureError: If the remote service rejects the upload
        """

    @abstractmethod
    async def get(self, locator: Locator, range_header: Optional[str] = None) -> Optional[BackendObject]:
        """
        Open a download, or return None when the object does not exist.

        Raises:
            BackendFailureError: If the remote service fails the request
        """

    @abstractmethod
    async def delete(self, locator: Locator) -> bool:
        """
        Remove the object. Returns False when the service reports nothing was deleted.
        """

    async def stat(self, locator: Locator) -> Optional[int]:
        """
        Size of the stored object in bytes, or None when it does not exist.
        """
        raise NotImplementedError(f"{self.backend_type.value} backend does not support stat")

    async def close(self) -> None:
        return None

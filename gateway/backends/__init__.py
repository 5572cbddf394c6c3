"""Storage backends and the registry that builds them from settings."""

from typing import Callable, Dict, Optional

import httpx

from gateway.backends.base import BackendObject, StorageBackend
from gateway.backends.discord import DiscordBackend
from gateway.backends.huggingface import HuggingFaceBackend
from gateway.backends.object_storage import ObjectStorageBackend, R2Backend, S3Backend
from gateway.backends.telegram import TelegramBackend
from gateway.config import Settings
from gateway.exceptions import BackendUnconfiguredError
from gateway.types import BackendType

BackendFactory = Callable[[Settings, httpx.AsyncClient], StorageBackend]

_FACTORIES: Dict[BackendType, BackendFactory] = {
    BackendType.TELEGRAM: TelegramBackend,
    BackendType.R2: lambda settings, client: R2Backend.from_settings(settings),
    BackendType.S3: lambda settings, client: S3Backend.from_settings(settings),
    BackendType.DISCORD: DiscordBackend,
    BackendType.HUGGINGFACE: HuggingFaceBackend,
}

_CONFIGURED: Dict[BackendType, Callable[[Settings], bool]] = {
    BackendType.TELEGRAM: lambda s: s.telegram_configured,
    BackendType.R2: lambda s: s.r2_configured,
    BackendType.S3: lambda s: s.s3_configured,
    BackendType.DISCORD: lambda s: s.discord_configured,
    BackendType.HUGGINGFACE: lambda s: s.huggingface_configured,
}

_missing = (set(BackendType) - set(_FACTORIES)) | (set(BackendType) - set(_CONFIGURED))
if _missing:
    raise RuntimeError(f"Backend registry is missing entries for: {sorted(b.value for b in _missing)}")


class BackendRegistry:
    """
    Builds and caches one backend instance per type for a settings snapshot.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client
        self._instances: Dict[BackendType, StorageBackend] = {}

    def is_configured(self, backend_type: BackendType) -> bool:
        return _CONFIGURED[backend_type](self.settings)

    def get(self, backend_type: BackendType) -> StorageBackend:
        """
        Raises:
            BackendUnconfiguredError: If the backend has no credentials configured
        """
        if not self.is_configured(backend_type):
            raise BackendUnconfiguredError(f"Storage backend '{backend_type.value}' is not configured")
        if backend_type not in self._instances:
            self._instances[backend_type] = _FACTORIES[backend_type](self.settings, self.http_client)
        return self._instances[backend_type]

    def object_staging(self) -> Optional[ObjectStorageBackend]:
        """R2 bucket used for chunk staging, when configured."""
        if not self.is_configured(BackendType.R2):
            return None
        backend = self.get(BackendType.R2)
        return backend if isinstance(backend, ObjectStorageBackend) else None


__all__ = [
    "BackendObject",
    "BackendRegistry",
    "StorageBackend",
    "ObjectStorageBackend",
    "TelegramBackend",
    "R2Backend",
    "S3Backend",
    "DiscordBackend",
    "HuggingFaceBackend",
]

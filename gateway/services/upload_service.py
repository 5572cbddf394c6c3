"""Single-request uploads."""

from typing import Optional

from common.logging_config import get_logger
from gateway.config import Settings
from gateway.exceptions import ClientInputError, ForbiddenError
from gateway.services.upload_dispatcher import DispatchResult, UploadDispatcher
from gateway.types import BackendType, Caller

logger = get_logger(__name__)


class UploadService:
    def __init__(self, settings: Settings, dispatcher: UploadDispatcher):
        self.settings = settings
        self.dispatcher = dispatcher

    def check_guest(self, caller: Caller, file_size: int) -> None:
        """
        Guests may upload only when enabled and below the guest size limit.
        Per-guest quotas are enforced outside the gateway.

        Raises:
            ForbiddenError: If the guest upload is not allowed
        """
        if caller.is_admin:
            return
        if not self.settings.guest_upload:
            raise ForbiddenError("Guest uploads are disabled")
        if file_size > self.settings.guest_max_file_size:
            raise ForbiddenError(
                f"Guest uploads are limited to {self.settings.guest_max_file_size} bytes"
            )

    async def upload(
        self,
        caller: Caller,
        data: Optional[bytes],
        file_name: Optional[str],
        content_type: Optional[str],
        storage_mode: Optional[str],
        origin: str = ""
    ) -> DispatchResult:
        """
        Store one file sent in a single request.

        Raises:
            ClientInputError: If no file was sent
            ForbiddenError: If a guest may not upload this file
            BackendUnconfiguredError: If the backend has no credentials
            BackendFailureError: If the remote upload fails
        """
        if not data or not file_name:
            raise ClientInputError("No file uploaded")

        self.check_guest(caller, len(data))

        backend_type = BackendType.normalize(storage_mode)
        logger.info(f"Single upload [name={file_name}, size={len(data)}, storage={backend_type.value}, admin={caller.is_admin}]")
        return await self.dispatcher.dispatch(
            data,
            file_name,
            content_type or "application/octet-stream",
            backend_type,
            origin=origin,
        )

"""Dispatch of a complete payload to its storage backend."""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from common.logging_config import get_logger
from gateway.backends import BackendRegistry
from gateway.config import Settings
from gateway.repositories import FileRecordRepository
from gateway.services.notifications import NoticeOutcome, TelegramNotifier, build_direct_link
from gateway.signed_reference import (
    SignedReference,
    build_secret_list,
    encode_signed_reference,
    sanitize_extension
)
from gateway.types import (
    BackendType,
    DiscordLocator,
    FileRecord,
    HuggingFaceLocator,
    Locator,
    R2Locator,
    S3Locator,
    TelegramLocator,
    now_ms
)
from gateway.utils import file_extension, generate_object_name

logger = get_logger(__name__)


@dataclass
class DispatchResult:
    identifier: str
    record_key: str
    record_written: bool
    locator: Locator
    notice: Optional[NoticeOutcome] = None

    @property
    def src(self) -> str:
        return f"/file/{self.identifier}"


class UploadDispatcher:
    """
    Stores a payload on the selected backend and records it.

    The remote write happens before the metadata write; a failure in between
    leaves an unreferenced remote object behind.
    """

    def __init__(
        self,
        settings: Settings,
        registry: BackendRegistry,
        file_records: FileRecordRepository,
        notifier: Optional[TelegramNotifier] = None
    ):
        self.settings = settings
        self.registry = registry
        self.file_records = file_records
        self.notifier = notifier or TelegramNotifier(settings)

    async def dispatch(
        self,
        data: bytes,
        file_name: str,
        file_type: str,
        backend_type: BackendType,
        origin: str = "",
        extra: Optional[Dict[str, Any]] = None
    ) -> DispatchResult:
        """
        Upload ``data`` and write its file record.

        Args:
            data: Complete file contents
            file_name: Original file name
            file_type: Declared MIME type
            backend_type: Target backend
            origin: Request origin, used for direct links when no public base URL is set
            extra: Additional metadata fields for the record

        Returns:
            DispatchResult with the public identifier

        Raises:
            BackendUnconfiguredError: If the backend has no credentials
            BackendFailureError: If the remote upload fails
        """
        backend = self.registry.get(backend_type)
        locator = await backend.put(data, file_name, file_type)

        if isinstance(locator, TelegramLocator):
            result = await self.register_telegram_file(
                locator,
                file_name,
                file_type,
                len(data),
                origin=origin,
                extra=extra,
            )
        else:
            record_key = self._record_key(backend_type, locator, file_extension(file_name))
            self.file_records.save(FileRecord(
                key=record_key,
                file_name=file_name,
                file_size=len(data),
                backend_type=backend_type,
                locator=locator,
                timestamp=now_ms(),
                extra=dict(extra or {}),
            ))
            result = DispatchResult(
                identifier=record_key,
                record_key=record_key,
                record_written=True,
                locator=locator,
            )

        logger.info(f"Upload dispatched [id={result.identifier}, storage={backend_type.value}, size={len(data)}]")
        return result

    async def register_telegram_file(
        self,
        locator: TelegramLocator,
        file_name: str,
        file_type: str,
        file_size: int,
        origin: str = "",
        extra: Optional[Dict[str, Any]] = None,
        ext: Optional[str] = None,
        chat_id: Optional[Union[int, str]] = None
    ) -> DispatchResult:
        """
        Publish a file that already sits in a Telegram chat.

        Builds the public identifier (signed or ``{fileId}.{ext}``), writes the
        record unless Telegram metadata is disabled, and replies with an upload
        notice to the message holding the file.
        """
        ext = sanitize_extension(ext or file_extension(file_name))
        record_key = f"{locator.file_id}.{ext}"
        identifier = self._telegram_identifier(locator, ext, file_name, file_type, file_size)
        locator = TelegramLocator(
            file_id=locator.file_id,
            message_id=locator.message_id,
            signed_link=self.settings.use_signed_telegram_links,
        )

        record_written = False
        if self.settings.write_telegram_metadata:
            self.file_records.save(FileRecord(
                key=record_key,
                file_name=file_name,
                file_size=file_size,
                backend_type=BackendType.TELEGRAM,
                locator=locator,
                timestamp=now_ms(),
                extra=dict(extra or {}),
            ))
            record_written = True

        result = DispatchResult(
            identifier=identifier,
            record_key=record_key,
            record_written=record_written,
            locator=locator,
        )
        result.notice = await self.notifier.send_upload_notice(
            direct_link=build_direct_link(self.settings, identifier, origin),
            file_id=locator.file_id,
            file_name=file_name,
            file_size=file_size,
            reply_to_message_id=locator.message_id,
            chat_id=chat_id,
        )
        if not result.notice.ok and not result.notice.skipped:
            logger.warning(f"Telegram upload notice failed: {result.notice.reason}")
        return result

    def _record_key(self, backend_type: BackendType, locator: Locator, ext: str) -> str:
        if isinstance(locator, R2Locator):
            return f"r2:{locator.r2_key}"
        if isinstance(locator, S3Locator):
            return f"s3:{locator.s3_key}"
        if isinstance(locator, DiscordLocator):
            return f"discord:{generate_object_name('discord', ext)}"
        if isinstance(locator, HuggingFaceLocator):
            return f"hf:{generate_object_name('hf', ext)}"
        raise TypeError(f"Unknown locator for backend {backend_type.value}")

    def _telegram_identifier(
        self,
        locator: TelegramLocator,
        ext: str,
        file_name: str,
        file_type: str,
        file_size: int
    ) -> str:
        if not self.settings.use_signed_telegram_links:
            return f"{locator.file_id}.{ext}"
        reference = SignedReference(
            file_id=locator.file_id,
            file_extension=sanitize_extension(ext),
            file_name=file_name,
            mime_type=file_type,
            file_size=file_size,
            message_id=locator.message_id,
            created_at=now_ms(),
        )
        return encode_signed_reference(reference, build_secret_list(self.settings))

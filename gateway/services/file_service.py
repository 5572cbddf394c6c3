"""File resolution, access gating, retrieval and deletion."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from common.logging_config import get_logger
from gateway.backends import BackendRegistry
from gateway.config import Settings
from gateway.exceptions import GatewayException, NotFoundError
from gateway.range_proxy import ProxiedFile, RangeStreamProxy
from gateway.repositories import FileRecordRepository
from gateway.services.cache_purge import CachePurger
from gateway.signed_reference import SignedReference, build_secret_list, decode_signed_reference
from gateway.types import BackendType, Caller, CleanupOutcome, FileRecord, Locator, TelegramLocator, now_ms

logger = get_logger(__name__)

_BACKEND_LABELS = {
    BackendType.TELEGRAM: "Telegram",
    BackendType.R2: "R2",
    BackendType.S3: "S3",
    BackendType.DISCORD: "Discord",
    BackendType.HUGGINGFACE: "HuggingFace",
}


@dataclass
class ResolvedFile:
    """
    Where an identifier's bytes live and the record that describes them.

    ``record`` is None only for a signed reference without a stored record.
    """
    identifier: str
    backend_type: BackendType
    locator: Locator
    file_name: str
    record: Optional[FileRecord] = None
    kv_key: Optional[str] = None
    signed: Optional[SignedReference] = None


class FileService:
    """
    Resolves identifiers in order: signed reference, then the metadata store
    under the explicit or legacy key prefixes.
    """

    def __init__(
        self,
        settings: Settings,
        file_records: FileRecordRepository,
        registry: BackendRegistry,
        cache_purger: Optional[CachePurger] = None
    ):
        self.settings = settings
        self.file_records = file_records
        self.registry = registry
        self.cache_purger = cache_purger or CachePurger(settings, registry.http_client)

    def decode_signed(self, identifier: str) -> Optional[SignedReference]:
        return decode_signed_reference(identifier, build_secret_list(self.settings))

    def resolve(self, identifier: str, backfill: bool = False) -> ResolvedFile:
        """
        Resolve an identifier to its backend and locator.

        Args:
            identifier: Public file identifier
            backfill: Write a record for a signed reference that has none

        Raises:
            NotFoundError: If nothing is stored under the identifier
        """
        signed = self.decode_signed(identifier)
        if signed is not None:
            return self._resolve_signed(identifier, signed, backfill)

        record, kv_key = self.file_records.find(identifier)
        if record is None:
            raise NotFoundError(f"File not found: {identifier}")
        if record.locator is None:
            raise NotFoundError(f"File record has no storage locator: {kv_key}")

        return ResolvedFile(
            identifier=identifier,
            backend_type=record.backend_type,
            locator=record.locator,
            file_name=record.file_name,
            record=record,
            kv_key=kv_key,
        )

    def _resolve_signed(self, identifier: str, signed: SignedReference, backfill: bool) -> ResolvedFile:
        record_key = f"{signed.file_id}.{signed.file_extension}"
        locator = TelegramLocator(file_id=signed.file_id, message_id=signed.message_id, signed_link=True)
        record = self.file_records.get(record_key)

        if record is None and backfill and self.settings.write_telegram_metadata:
            record = FileRecord(
                key=record_key,
                file_name=signed.file_name or record_key,
                file_size=signed.file_size,
                backend_type=BackendType.TELEGRAM,
                locator=locator,
                timestamp=signed.created_at or now_ms(),
                extra={"source": "signed-backfill"},
            )
            self.file_records.save(record)
            logger.info(f"Backfilled record for signed reference [key={record_key}]")

        return ResolvedFile(
            identifier=identifier,
            backend_type=BackendType.TELEGRAM,
            locator=locator,
            file_name=signed.file_name or record_key,
            record=record,
            kv_key=record_key if record is not None else None,
            signed=signed,
        )

    def access_redirect(
        self,
        resolved: ResolvedFile,
        caller: Caller,
        origin: str,
        referer: Optional[str] = None
    ) -> Optional[str]:
        """
        Redirect target when the caller may not see the file, else None.

        Blocked or adult-labelled files send embeds (requests with a Referer)
        to the block image and direct visits to the block page; a White list
        entry does not lift an adult label. In whitelist mode only
        ``ListType=White`` files are served. Callers that presented valid
        credentials, or come from the admin pages, see everything.
        """
        record = resolved.record
        base = origin.rstrip("/")
        if record is None:
            return None
        if caller.authenticated or (referer and referer.startswith(f"{base}/admin")):
            return None
        if record.is_blocked:
            return self.settings.block_image_url if referer else f"{base}/block-img.html"
        if self.settings.whitelist_mode and not record.is_whitelisted:
            return f"{base}/whitelist-on.html"
        return None

    async def open(self, resolved: ResolvedFile, range_header: Optional[str], head_only: bool = False) -> ProxiedFile:
        backend = self.registry.get(resolved.backend_type)
        proxy = RangeStreamProxy(backend)
        return await proxy.serve(resolved.locator, resolved.file_name, range_header, head_only=head_only)

    async def delete(self, identifier: str, origin: str) -> Dict[str, Any]:
        """
        Delete a file: best-effort remote delete, then the record, then the edge cache.

        The record is removed even when the remote delete fails.

        Raises:
            NotFoundError: If no record exists for the identifier
        """
        signed = self.decode_signed(identifier)
        if signed is not None:
            kv_key = f"{signed.file_id}.{signed.file_extension}"
            record = self.file_records.get(kv_key)
        else:
            record, kv_key = self.file_records.find(identifier)
        if record is None:
            raise NotFoundError("File metadata not found")

        remote = await self._delete_remote(record)
        self.file_records.delete(kv_key)
        await self.cache_purger.purge(origin, identifier)

        label = _BACKEND_LABELS[record.backend_type]
        if remote.ok and remote.succeeded:
            message = f"Deleted from {label} and metadata store."
        else:
            message = f"Metadata deleted ({label} deletion best-effort)."

        logger.info(f"File deleted [id={identifier}, key={kv_key}, remote_ok={remote.ok}]")
        return {
            "success": True,
            "message": message,
            "fileId": identifier,
            "kvKey": kv_key,
            "backendDeleted": bool(remote.ok and remote.succeeded),
            "backendErrors": remote.errors,
        }

    async def _delete_remote(self, record: FileRecord) -> CleanupOutcome:
        outcome = CleanupOutcome(operation=f"delete-{record.backend_type.value}")
        if record.locator is None:
            outcome.skipped = True
            return outcome
        try:
            backend = self.registry.get(record.backend_type)
            if await backend.delete(record.locator):
                outcome.record_success()
            else:
                outcome.record_failure("backend reported nothing deleted")
        except (GatewayException, httpx.HTTPError) as e:
            outcome.record_failure(str(e))

        if not outcome.ok:
            logger.warning(f"Remote delete failed (best-effort) [key={record.key}]: {outcome.errors}")
        return outcome

    def file_info(self, identifier: str) -> Dict[str, Any]:
        """
        Describe a file without fetching it.

        Raises:
            NotFoundError: If the identifier resolves to nothing
        """
        signed = self.decode_signed(identifier)
        if signed is not None:
            fallback_name = f"{signed.file_id}.{signed.file_extension}"
            return {
                "success": True,
                "fileId": identifier,
                "key": None,
                "fileName": signed.file_name or fallback_name,
                "originalName": signed.file_name or None,
                "fileSize": signed.file_size,
                "uploadTime": signed.created_at or None,
                "storageType": BackendType.TELEGRAM.value,
                "listType": "None",
                "label": "None",
                "liked": False,
                "source": "signed-link",
            }

        record, kv_key = self.file_records.find(identifier)
        if record is None:
            raise NotFoundError(f"File not found: {identifier}")
        return {
            "success": True,
            "fileId": identifier,
            "key": kv_key,
            "fileName": record.file_name,
            "originalName": record.file_name,
            "fileSize": record.file_size,
            "uploadTime": record.timestamp or None,
            "storageType": record.backend_type.value,
            "listType": record.list_type,
            "label": record.label,
            "liked": record.liked,
        }

    def set_list_type(self, identifier: str, list_type: str) -> Dict[str, Any]:
        """
        Mark a file as blocked or whitelisted.

        Raises:
            NotFoundError: If no record exists for the identifier
        """
        record, kv_key = self.file_records.find(identifier)
        if record is None:
            raise NotFoundError(f"File metadata not found for ID: {identifier}")
        self.file_records.set_list_type(kv_key, list_type)
        logger.info(f"List type changed [key={kv_key}, list_type={list_type}]")
        return {"success": True, "listType": list_type, "key": kv_key}

"""Gateway-specific data type definitions."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class BackendType(str, Enum):
    """
    Closed set of storage backends. The value doubles as the ``storageMode``
    accepted from clients and the ``storageType`` written to metadata.
    """
    TELEGRAM = "telegram"
    R2 = "r2"
    S3 = "s3"
    DISCORD = "discord"
    HUGGINGFACE = "huggingface"

    @classmethod
    def normalize(cls, raw: Optional[str]) -> "BackendType":
        """Unknown or empty modes fall back to the relay backend."""
        try:
            return cls(str(raw or "").strip().lower())
        except ValueError:
            return cls.TELEGRAM


class ChunkBackend(str, Enum):
    KV = "kv"
    R2 = "r2"


@dataclass(frozen=True)
class TelegramLocator:
    file_id: str
    message_id: Optional[int] = None
    signed_link: bool = False


@dataclass(frozen=True)
class R2Locator:
    r2_key: str


@dataclass(frozen=True)
class S3Locator:
    s3_key: str


@dataclass(frozen=True)
class DiscordLocator:
    channel_id: str
    message_id: str
    attachment_id: Optional[str] = None
    upload_mode: Optional[str] = None
    source_url: Optional[str] = None


@dataclass(frozen=True)
class HuggingFaceLocator:
    hf_path: str


Locator = Union[TelegramLocator, R2Locator, S3Locator, DiscordLocator, HuggingFaceLocator]


def locator_to_metadata(locator: Locator) -> Dict[str, Any]:
    """Flatten a locator into the persisted metadata field names."""
    if isinstance(locator, TelegramLocator):
        return {
            "telegramFileId": locator.file_id,
            "telegramMessageId": locator.message_id,
            "signedLink": locator.signed_link,
        }
    if isinstance(locator, R2Locator):
        return {"r2Key": locator.r2_key}
    if isinstance(locator, S3Locator):
        return {"s3Key": locator.s3_key}
    if isinstance(locator, DiscordLocator):
        return {
            "discordChannelId": locator.channel_id,
            "discordMessageId": locator.message_id,
            "discordAttachmentId": locator.attachment_id,
            "discordUploadMode": locator.upload_mode,
            "discordSourceUrl": locator.source_url,
        }
    if isinstance(locator, HuggingFaceLocator):
        return {"hfPath": locator.hf_path}
    raise TypeError(f"Unknown locator type: {type(locator).__name__}")


def _strip_prefix(key: str, prefix: str) -> str:
    return key[len(prefix):] if key.startswith(prefix) else key


def locator_from_metadata(
    backend_type: BackendType,
    metadata: Dict[str, Any],
    kv_key: str
) -> Optional[Locator]:
    """
    Rebuild the locator for a stored record.

    Older records may lack the explicit locator field; the key itself is then
    used, as it was the locator before the field existed.
    """
    if backend_type is BackendType.TELEGRAM:
        file_id = metadata.get("telegramFileId") or _strip_legacy_prefix(kv_key).split(".")[0]
        message_id = metadata.get("telegramMessageId")
        return TelegramLocator(
            file_id=str(file_id),
            message_id=int(message_id) if message_id else None,
            signed_link=bool(metadata.get("signedLink", False)),
        )
    if backend_type is BackendType.R2:
        return R2Locator(r2_key=metadata.get("r2Key") or _strip_prefix(kv_key, "r2:"))
    if backend_type is BackendType.S3:
        return S3Locator(s3_key=metadata.get("s3Key") or _strip_prefix(kv_key, "s3:"))
    if backend_type is BackendType.DISCORD:
        channel_id = metadata.get("discordChannelId")
        message_id = metadata.get("discordMessageId")
        if not channel_id or not message_id:
            return None
        return DiscordLocator(
            channel_id=str(channel_id),
            message_id=str(message_id),
            attachment_id=metadata.get("discordAttachmentId"),
            upload_mode=metadata.get("discordUploadMode"),
            source_url=metadata.get("discordSourceUrl"),
        )
    if backend_type is BackendType.HUGGINGFACE:
        hf_path = metadata.get("hfPath")
        return HuggingFaceLocator(hf_path=hf_path) if hf_path else None
    raise TypeError(f"Unknown backend type: {backend_type}")


def _strip_legacy_prefix(key: str) -> str:
    for prefix in ("img:", "vid:", "aud:", "doc:"):
        if key.startswith(prefix):
            return key[len(prefix):]
    return key


def infer_backend_type(kv_key: str, metadata: Dict[str, Any]) -> BackendType:
    explicit = metadata.get("storageType") or metadata.get("storage")
    if explicit:
        return BackendType.normalize(explicit)
    for prefix, backend_type in (
        ("r2:", BackendType.R2),
        ("s3:", BackendType.S3),
        ("discord:", BackendType.DISCORD),
        ("hf:", BackendType.HUGGINGFACE),
    ):
        if kv_key.startswith(prefix):
            return backend_type
    return BackendType.TELEGRAM


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class FileRecord:
    """
    Persisted metadata for one stored file, keyed by its public identifier.
    """
    key: str
    file_name: str
    file_size: int
    backend_type: BackendType
    locator: Optional[Locator]
    timestamp: int = field(default_factory=now_ms)
    list_type: str = "None"
    label: str = "None"
    liked: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_blocked(self) -> bool:
        return self.list_type == "Block" or self.label == "adult"

    @property
    def is_whitelisted(self) -> bool:
        return self.list_type == "White"

    def to_metadata(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "TimeStamp": self.timestamp,
            "ListType": self.list_type,
            "Label": self.label,
            "liked": self.liked,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "storageType": self.backend_type.value,
        }
        metadata.update(self.extra)
        if self.locator is not None:
            metadata.update(locator_to_metadata(self.locator))
        return {k: v for k, v in metadata.items() if v is not None}

    @classmethod
    def from_metadata(cls, key: str, metadata: Dict[str, Any]) -> "FileRecord":
        backend_type = infer_backend_type(key, metadata)
        known = {
            "TimeStamp", "ListType", "Label", "liked", "fileName", "fileSize",
            "storageType", "storage",
            "telegramFileId", "telegramMessageId", "signedLink", "r2Key", "s3Key",
            "discordChannelId", "discordMessageId", "discordAttachmentId",
            "discordUploadMode", "discordSourceUrl", "hfPath",
        }
        return cls(
            key=key,
            file_name=metadata.get("fileName") or key,
            file_size=int(metadata.get("fileSize") or 0),
            backend_type=backend_type,
            locator=locator_from_metadata(backend_type, metadata, key),
            timestamp=int(metadata.get("TimeStamp") or 0),
            list_type=metadata.get("ListType") or "None",
            label=metadata.get("Label") or "None",
            liked=bool(metadata.get("liked", False)),
            extra={k: v for k, v in metadata.items() if k not in known},
        )


@dataclass
class UploadTask:
    """
    Bookkeeping for one chunked upload. Lives in the metadata store for the
    task TTL and is deleted (or left to expire) after completion.
    """
    upload_id: str
    file_name: str
    file_size: int
    file_type: str
    total_chunks: int
    storage_mode: BackendType
    chunk_backend: ChunkBackend
    uploaded_chunks: List[int] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    status: str = "pending"

    def missing_chunks(self) -> List[int]:
        uploaded = set(self.uploaded_chunks)
        return [index for index in range(self.total_chunks) if index not in uploaded]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "fileType": self.file_type,
            "totalChunks": self.total_chunks,
            "storageMode": self.storage_mode.value,
            "chunkBackend": self.chunk_backend.value,
            "uploadedChunks": list(self.uploaded_chunks),
            "createdAt": self.created_at,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadTask":
        raw_backend = data.get("chunkBackend")
        return cls(
            upload_id=data["uploadId"],
            file_name=data.get("fileName", ""),
            file_size=int(data.get("fileSize") or 0),
            file_type=data.get("fileType") or "",
            total_chunks=int(data.get("totalChunks") or 0),
            storage_mode=BackendType.normalize(data.get("storageMode")),
            chunk_backend=ChunkBackend(raw_backend) if raw_backend in ("kv", "r2") else ChunkBackend.KV,
            uploaded_chunks=[int(i) for i in data.get("uploadedChunks") or []],
            created_at=int(data.get("createdAt") or 0),
            status=data.get("status", "pending"),
        )


@dataclass(frozen=True)
class Caller:
    """
    Identity of the inbound request as seen by the gateway.

    Without configured credentials every caller is admin but none is
    ``authenticated``.
    """
    is_admin: bool
    username: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.username is not None


@dataclass
class CleanupOutcome:
    """
    Result of a best-effort side operation. Failures are recorded, never raised.
    """
    operation: str
    attempted: int = 0
    succeeded: int = 0
    skipped: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def record_success(self) -> None:
        self.attempted += 1
        self.succeeded += 1

    def record_failure(self, error: str) -> None:
        self.attempted += 1
        self.errors.append(error)

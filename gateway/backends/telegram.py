"""Telegram Bot API relay backend."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx

from gateway.backends.base import BackendObject, StorageBackend
from gateway.backends.http import open_download, send_with_retry
from gateway.config import Settings
from gateway.exceptions import BackendFailureError
from gateway.types import BackendType, TelegramLocator, now_ms
from gateway.utils import extension_for_mime_type, file_extension

logger = logging.getLogger(__name__)

DEFAULT_BOT_API_URL = "https://api.telegram.org"

# Message attributes that carry a single file object, in lookup order.
_FILE_FIELDS = ("document", "video", "audio", "voice", "animation", "video_note")


def choose_upload_method(content_type: str) -> Tuple[str, str]:
    """
    Bot API method and multipart field for a MIME type.
    """
    content_type = (content_type or "").lower()
    if content_type.startswith("image/"):
        return "sendPhoto", "photo"
    if content_type.startswith("audio/"):
        return "sendAudio", "audio"
    if content_type.startswith("video/"):
        return "sendVideo", "video"
    return "sendDocument", "document"


def pick_file_id(message: Dict[str, Any]) -> Optional[str]:
    """
    File id of the attachment in a sent message; the largest photo size wins.
    """
    photos = message.get("photo")
    if isinstance(photos, list) and photos:
        largest = max(photos, key=lambda p: p.get("file_size") or 0)
        return largest.get("file_id")
    for field_name in _FILE_FIELDS:
        attachment = message.get(field_name)
        if isinstance(attachment, dict) and attachment.get("file_id"):
            return attachment["file_id"]
    return None


# Attachment kinds a chat message can carry, with the MIME type assumed when
# Telegram omits one.
_MEDIA_KINDS = (
    ("document", "application/octet-stream"),
    ("video", "video/mp4"),
    ("audio", "audio/mpeg"),
    ("voice", "audio/ogg"),
    ("animation", "video/mp4"),
    ("video_note", "video/mp4"),
    ("sticker", "image/webp"),
)


@dataclass
class TelegramMedia:
    """File attached to an incoming chat message."""
    kind: str
    file_id: str
    file_name: str
    file_extension: str
    mime_type: str
    file_size: int
    message_id: int


def media_from_message(message: Dict[str, Any]) -> Optional[TelegramMedia]:
    """
    Describe the file attached to a chat message, or None if there is none.

    Photos use their largest size and are named ``photo_<message_id>.jpg``;
    other attachments keep their own name when Telegram reports one.
    """
    message_id = int(message.get("message_id") or 0)
    photos = message.get("photo")
    if isinstance(photos, list) and photos:
        largest = max(photos, key=lambda p: p.get("file_size") or 0)
        return TelegramMedia(
            kind="photo",
            file_id=largest.get("file_id"),
            file_name=f"photo_{message_id or now_ms()}.jpg",
            file_extension="jpg",
            mime_type="image/jpeg",
            file_size=int(largest.get("file_size") or 0),
            message_id=message_id,
        )

    for kind, default_mime in _MEDIA_KINDS:
        attachment = message.get(kind)
        if not isinstance(attachment, dict) or not attachment.get("file_id"):
            continue
        mime_type = attachment.get("mime_type") or default_mime
        own_name = attachment.get("file_name") or ""
        ext = file_extension(own_name, fallback="") or extension_for_mime_type(mime_type)
        return TelegramMedia(
            kind=kind,
            file_id=attachment["file_id"],
            file_name=own_name or f"{kind}_{message_id or now_ms()}.{ext}",
            file_extension=ext,
            mime_type=mime_type,
            file_size=int(attachment.get("file_size") or 0),
            message_id=message_id,
        )
    return None


class TelegramBackend(StorageBackend):
    backend_type = BackendType.TELEGRAM

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.client = client
        self.token = settings.tg_bot_token
        self.chat_id = settings.tg_chat_id
        self.api_base = (settings.custom_bot_api_url or DEFAULT_BOT_API_URL).rstrip("/")

    def api_url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.token}/{method}"

    def file_url(self, file_path: str) -> str:
        return f"{self.api_base}/file/bot{self.token}/{file_path}"

    async def _send_file(self, method: str, field_name: str, data: bytes, file_name: str, content_type: str) -> httpx.Response:
        def build() -> httpx.Request:
            return self.client.build_request(
                "POST",
                self.api_url(method),
                data={"chat_id": self.chat_id},
                files={field_name: (file_name, data, content_type or "application/octet-stream")},
            )

        return await send_with_retry(self.client, build, operation=f"telegram {method}")

    async def put(self, data: bytes, file_name: str, content_type: str) -> TelegramLocator:
        method, field_name = choose_upload_method(content_type)
        response = await self._send_file(method, field_name, data, file_name, content_type)

        if response.status_code == 413:
            raise BackendFailureError("File exceeds the Telegram 20MB upload limit")

        body = _json_or_empty(response)
        if not body.get("ok") and method in ("sendPhoto", "sendAudio"):
            logger.warning(f"Telegram rejected {method}, retrying as sendDocument: {body.get('description')}")
            response = await self._send_file("sendDocument", "document", data, file_name, content_type)
            if response.status_code == 413:
                raise BackendFailureError("File exceeds the Telegram 20MB upload limit")
            body = _json_or_empty(response)

        if not body.get("ok"):
            description = body.get("description") or f"HTTP {response.status_code}"
            raise BackendFailureError(f"Telegram upload failed: {description}")

        result = body.get("result") or {}
        file_id = pick_file_id(result)
        if not file_id:
            raise BackendFailureError("Telegram response did not include a file id")

        logger.info(f"Uploaded to Telegram [message_id={result.get('message_id')}, size={len(data)}]")
        return TelegramLocator(file_id=file_id, message_id=result.get("message_id"))

    async def get_file_path(self, file_id: str) -> Optional[str]:
        def build() -> httpx.Request:
            return self.client.build_request("GET", self.api_url("getFile"), params={"file_id": file_id})

        response = await send_with_retry(self.client, build, operation="telegram getFile")
        body = _json_or_empty(response)
        if not body.get("ok"):
            logger.warning(f"Telegram getFile failed: {body.get('description') or response.status_code}")
            return None
        return (body.get("result") or {}).get("file_path")

    async def get(self, locator: TelegramLocator, range_header: Optional[str] = None) -> Optional[BackendObject]:
        file_path = await self.get_file_path(locator.file_id)
        if not file_path:
            return None

        headers = {"Range": range_header} if range_header else {}

        def build() -> httpx.Request:
            return self.client.build_request("GET", self.file_url(file_path), headers=headers)

        response = await send_with_retry(self.client, build, stream=True, operation="telegram file download")
        return await open_download(response, "Telegram file download", range_header)

    async def delete(self, locator: TelegramLocator) -> bool:
        if not locator.message_id:
            return False

        def build() -> httpx.Request:
            return self.client.build_request(
                "POST",
                self.api_url("deleteMessage"),
                json={"chat_id": self.chat_id, "message_id": locator.message_id},
            )

        response = await send_with_retry(self.client, build, operation="telegram deleteMessage")
        return response.is_success and bool(_json_or_empty(response).get("ok"))


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}

"""Telegram upload notices."""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import aiohttp

from common.logging_config import get_logger
from gateway.backends.telegram import DEFAULT_BOT_API_URL
from gateway.config import Settings
from gateway.utils import format_file_size

logger = get_logger(__name__)

NOTICE_TIMEOUT_SECONDS = 10
NOTICE_NAME_LIMIT = 120


@dataclass
class NoticeOutcome:
    """
    Result of a best-effort notice. Never raised, only logged.
    """
    ok: bool
    skipped: bool = False
    reason: Optional[str] = None


def build_direct_link(settings: Settings, identifier: str, fallback_origin: str = "") -> str:
    base = (settings.public_base_url or fallback_origin or "").rstrip("/")
    if not base:
        return f"/file/{identifier}"
    return f"{base}/file/{identifier}"


def build_notice_text(
    direct_link: str,
    file_id: str,
    file_name: str,
    file_size: int,
    message_id: Optional[int] = None
) -> str:
    safe_name = (file_name or "")[:NOTICE_NAME_LIMIT] or "unnamed"
    lines = [
        "Upload completed",
        f"Name: {safe_name}",
        f"Size: {format_file_size(file_size)}",
        f"Direct Link: {direct_link}",
        f"File ID: {file_id}",
    ]
    if message_id:
        lines.append(f"Message ID: {message_id}")
    return "\n".join(lines)


class TelegramNotifier:
    """
    Posts an "Upload completed" message to the relay chat after an upload.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        api_base = (settings.custom_bot_api_url or DEFAULT_BOT_API_URL).rstrip("/")
        self.url = f"{api_base}/bot{settings.tg_bot_token}/sendMessage"

    async def _post_message(self, payload: Dict[str, Any]) -> bool:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=NOTICE_TIMEOUT_SECONDS)
            ) as resp:
                data = await resp.json(content_type=None)
                return resp.status == 200 and bool((data or {}).get("ok"))

    async def send_upload_notice(
        self,
        direct_link: str,
        file_id: str,
        file_name: str,
        file_size: int,
        reply_to_message_id: Optional[int] = None,
        chat_id: Optional[Union[int, str]] = None
    ) -> NoticeOutcome:
        """
        Send the notice, replying to the upload message when possible.

        ``chat_id`` defaults to the configured relay chat; webhook uploads
        answer in the chat the file came from.

        Some chats reject replies, so a failed reply is retried once without
        the reply target.
        """
        if not self.settings.telegram_upload_notify:
            return NoticeOutcome(ok=False, skipped=True, reason="disabled")
        target_chat = chat_id or self.settings.tg_chat_id
        if not self.settings.tg_bot_token or not target_chat:
            return NoticeOutcome(ok=False, skipped=True, reason="missing-config")

        payload: Dict[str, Any] = {
            "chat_id": target_chat,
            "text": build_notice_text(direct_link, file_id, file_name, file_size, reply_to_message_id),
            "disable_web_page_preview": True,
        }

        try:
            if reply_to_message_id:
                reply_payload = dict(payload, reply_to_message_id=int(reply_to_message_id), allow_sending_without_reply=True)
                if await self._post_message(reply_payload):
                    return NoticeOutcome(ok=True)
                logger.debug("Upload notice reply rejected, retrying without reply target")
            ok = await self._post_message(payload)
            return NoticeOutcome(ok=ok, reason=None if ok else "rejected")
        except asyncio.TimeoutError:
            logger.warning("Upload notice timed out")
            return NoticeOutcome(ok=False, reason="timeout")
        except (aiohttp.ClientError, ValueError) as e:
            logger.warning(f"Upload notice failed: {e}")
            return NoticeOutcome(ok=False, reason=str(e))

"""Discord chat-attachment backend (webhook or bot token)."""

import logging
from typing import Any, Dict, Optional

import httpx

from gateway.backends.base import BackendObject, StorageBackend
from gateway.backends.http import open_download, send_with_retry
from gateway.config import Settings
from gateway.exceptions import BackendFailureError
from gateway.types import BackendType, DiscordLocator

logger = logging.getLogger(__name__)

DISCORD_API_URL = "https://discord.com/api/v10"

MODE_BOT = "bot"
MODE_WEBHOOK = "webhook"


class DiscordBackend(StorageBackend):
    """
    Stores each file as an attachment of its own message.

    Attachment URLs are signed and expire, so downloads re-read the message to
    obtain a fresh URL and fall back to the URL captured at upload time.
    """

    backend_type = BackendType.DISCORD

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.client = client
        self.webhook_url = settings.discord_webhook_url.rstrip("/")
        self.bot_token = settings.discord_bot_token
        self.channel_id = settings.discord_channel_id

    @property
    def mode(self) -> str:
        if self.bot_token and self.channel_id:
            return MODE_BOT
        return MODE_WEBHOOK

    def _bot_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bot {self.bot_token}"}

    def _message_url(self, locator: DiscordLocator) -> str:
        if (locator.upload_mode or self.mode) == MODE_BOT and self.bot_token:
            return f"{DISCORD_API_URL}/channels/{locator.channel_id}/messages/{locator.message_id}"
        return f"{self.webhook_url}/messages/{locator.message_id}"

    def _message_headers(self, locator: DiscordLocator) -> Dict[str, str]:
        if (locator.upload_mode or self.mode) == MODE_BOT and self.bot_token:
            return self._bot_headers()
        return {}

    async def put(self, data: bytes, file_name: str, content_type: str) -> DiscordLocator:
        mode = self.mode
        files = {"files[0]": (file_name, data, content_type or "application/octet-stream")}

        def build() -> httpx.Request:
            if mode == MODE_BOT:
                return self.client.build_request(
                    "POST",
                    f"{DISCORD_API_URL}/channels/{self.channel_id}/messages",
                    headers=self._bot_headers(),
                    files=files,
                )
            return self.client.build_request("POST", self.webhook_url, params={"wait": "true"}, files=files)

        response = await send_with_retry(self.client, build, operation="discord upload")
        if response.status_code == 413:
            raise BackendFailureError("File exceeds the Discord attachment size limit")
        if not response.is_success:
            raise BackendFailureError(f"Discord upload failed with HTTP {response.status_code}: {response.text[:200]}")

        message: Dict[str, Any] = response.json()
        attachments = message.get("attachments") or []
        if not attachments:
            raise BackendFailureError("Discord response did not include an attachment")
        attachment = attachments[0]

        logger.info(f"Uploaded to Discord [message_id={message.get('id')}, mode={mode}, size={len(data)}]")
        return DiscordLocator(
            channel_id=str(message.get("channel_id") or self.channel_id),
            message_id=str(message["id"]),
            attachment_id=str(attachment.get("id")) if attachment.get("id") else None,
            upload_mode=mode,
            source_url=attachment.get("url"),
        )

    async def _fresh_attachment_url(self, locator: DiscordLocator) -> Optional[str]:
        def build() -> httpx.Request:
            return self.client.build_request("GET", self._message_url(locator), headers=self._message_headers(locator))

        response = await send_with_retry(self.client, build, operation="discord message lookup")
        if not response.is_success:
            logger.warning(f"Discord message lookup failed with HTTP {response.status_code} [message_id={locator.message_id}]")
            return None

        for attachment in response.json().get("attachments") or []:
            if locator.attachment_id is None or str(attachment.get("id")) == locator.attachment_id:
                return attachment.get("url")
        return None

    async def get(self, locator: DiscordLocator, range_header: Optional[str] = None) -> Optional[BackendObject]:
        url = await self._fresh_attachment_url(locator) or locator.source_url
        if not url:
            return None

        headers = {"Range": range_header} if range_header else {}

        def build() -> httpx.Request:
            return self.client.build_request("GET", url, headers=headers)

        response = await send_with_retry(self.client, build, stream=True, operation="discord attachment download")
        return await open_download(response, "Discord attachment download", range_header)

    async def delete(self, locator: DiscordLocator) -> bool:
        def build() -> httpx.Request:
            return self.client.build_request("DELETE", self._message_url(locator), headers=self._message_headers(locator))

        response = await send_with_retry(self.client, build, operation="discord delete")
        return response.status_code in (200, 204)

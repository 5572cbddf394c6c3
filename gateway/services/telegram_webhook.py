"""Bot webhook: files sent to the bot become gateway links."""

import hmac
from typing import Any, Dict, Optional

from common.logging_config import get_logger
from gateway.backends.telegram import media_from_message
from gateway.config import Settings
from gateway.exceptions import BackendUnconfiguredError, UnauthorizedError
from gateway.services.notifications import build_direct_link
from gateway.services.upload_dispatcher import UploadDispatcher
from gateway.types import TelegramLocator

logger = get_logger(__name__)


class TelegramWebhookService:
    """
    Handles Bot API updates. The file already lives in Telegram, so nothing is
    uploaded: the update is turned into a public identifier, a record and a
    reply carrying the direct link.
    """

    def __init__(self, settings: Settings, dispatcher: UploadDispatcher):
        self.settings = settings
        self.dispatcher = dispatcher

    def authorize(self, secret_header: Optional[str]) -> None:
        """
        Raises:
            BackendUnconfiguredError: If no bot token is configured
            UnauthorizedError: If a webhook secret is configured and the header does not match it
        """
        if not self.settings.tg_bot_token:
            raise BackendUnconfiguredError("TG_BOT_TOKEN is not configured")
        expected = self.settings.tg_webhook_secret
        if expected and not hmac.compare_digest((secret_header or "").encode(), expected.encode()):
            logger.warning("Webhook call rejected: secret token mismatch")
            raise UnauthorizedError("Invalid webhook secret")

    async def handle_update(self, update: Any, origin: str = "") -> Dict[str, Any]:
        """
        Publish the file carried by ``update``.

        Updates without a message, or messages without a file, are acknowledged
        and ignored so Telegram does not redeliver them.
        """
        message = None
        if isinstance(update, dict):
            message = update.get("message") or update.get("channel_post")
        if not isinstance(message, dict):
            return {"ok": True, "ignored": "no-message"}

        media = media_from_message(message)
        if media is None:
            return {"ok": True, "ignored": "message-without-file"}

        result = await self.dispatcher.register_telegram_file(
            TelegramLocator(file_id=media.file_id, message_id=media.message_id or None),
            media.file_name,
            media.mime_type,
            media.file_size,
            origin=origin,
            extra={"fromWebhook": True},
            ext=media.file_extension,
            chat_id=(message.get("chat") or {}).get("id"),
        )

        logger.info(f"Webhook file published [id={result.identifier}, kind={media.kind}, size={media.file_size}]")
        return {
            "ok": True,
            "directLink": build_direct_link(self.settings, result.identifier, origin),
            "storageType": "telegram",
            "mode": "signed" if self.settings.use_signed_telegram_links else "kv",
        }

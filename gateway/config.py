"""Configuration settings for the gateway.

Every environment read happens here. ``Settings.from_env()`` snapshots the
environment into one immutable value that the request handlers pass down to
services and backends.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_BLOCK_IMAGE_URL = "https://static-res.pages.dev/teleimage/img-block-compressed.png"

_TRUE_VALUES = {"1", "true", "yes", "on", "enable", "enabled"}
_FALSE_VALUES = {"0", "false", "no", "off", "disable", "disabled"}


def _flag(raw: Optional[str], default: bool) -> bool:
    normalized = (raw or "").strip().lower()
    if not normalized:
        return default
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def _clean(raw: Optional[str]) -> str:
    return (raw or "").strip()


@dataclass(frozen=True)
class Settings:
    database_path: str = "/app/data/metadata.db"
    host: str = "0.0.0.0"
    port: int = 8000

    basic_user: str = ""
    basic_pass_hash: str = ""

    minimize_kv_writes: bool = False
    chunk_backend: str = "auto"
    telegram_link_mode: str = ""
    telegram_metadata_mode: str = ""
    telegram_skip_metadata: bool = False
    telegram_upload_notify: bool = True

    tg_bot_token: str = ""
    tg_chat_id: str = ""
    custom_bot_api_url: str = ""
    tg_webhook_secret: str = ""

    file_url_secret: str = ""
    tg_file_url_secret: str = ""

    r2_endpoint: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket: str = ""

    s3_endpoint: str = ""
    s3_region: str = "auto"
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_bucket: str = ""

    discord_webhook_url: str = ""
    discord_bot_token: str = ""
    discord_channel_id: str = ""

    hf_token: str = ""
    hf_repo: str = ""

    public_base_url: str = ""
    whitelist_mode: bool = False
    block_image_url: str = DEFAULT_BLOCK_IMAGE_URL

    cache_purge_url: str = ""
    cache_purge_token: str = ""

    guest_upload: bool = False
    guest_max_file_size: int = 5 * 1024 * 1024

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            database_path=env.get("GATEWAY_DATABASE_PATH", "/app/data/metadata.db"),
            host=env.get("GATEWAY_HOST", "0.0.0.0"),
            port=int(env.get("GATEWAY_PORT", "8000")),
            basic_user=_clean(env.get("BASIC_USER")),
            basic_pass_hash=_clean(env.get("BASIC_PASS_HASH")),
            minimize_kv_writes=_clean(env.get("MINIMIZE_KV_WRITES")).lower() == "true",
            chunk_backend=_clean(env.get("CHUNK_BACKEND")).lower() or "auto",
            telegram_link_mode=_clean(env.get("TELEGRAM_LINK_MODE")).lower(),
            telegram_metadata_mode=_clean(env.get("TELEGRAM_METADATA_MODE")).lower(),
            telegram_skip_metadata=_flag(env.get("TELEGRAM_SKIP_METADATA"), False),
            telegram_upload_notify=_flag(env.get("TG_UPLOAD_NOTIFY", env.get("TELEGRAM_UPLOAD_NOTIFY")), True),
            tg_bot_token=_clean(env.get("TG_BOT_TOKEN")),
            tg_chat_id=_clean(env.get("TG_CHAT_ID")),
            custom_bot_api_url=_clean(env.get("CUSTOM_BOT_API_URL")),
            tg_webhook_secret=_clean(env.get("TG_WEBHOOK_SECRET", env.get("TELEGRAM_WEBHOOK_SECRET"))),
            file_url_secret=_clean(env.get("FILE_URL_SECRET")),
            tg_file_url_secret=_clean(env.get("TG_FILE_URL_SECRET")),
            r2_endpoint=_clean(env.get("R2_ENDPOINT")),
            r2_access_key_id=_clean(env.get("R2_ACCESS_KEY_ID")),
            r2_secret_access_key=_clean(env.get("R2_SECRET_ACCESS_KEY")),
            r2_bucket=_clean(env.get("R2_BUCKET")),
            s3_endpoint=_clean(env.get("S3_ENDPOINT")),
            s3_region=_clean(env.get("S3_REGION")) or "auto",
            s3_access_key_id=_clean(env.get("S3_ACCESS_KEY_ID")),
            s3_secret_access_key=_clean(env.get("S3_SECRET_ACCESS_KEY")),
            s3_bucket=_clean(env.get("S3_BUCKET")),
            discord_webhook_url=_clean(env.get("DISCORD_WEBHOOK_URL")),
            discord_bot_token=_clean(env.get("DISCORD_BOT_TOKEN")),
            discord_channel_id=_clean(env.get("DISCORD_CHANNEL_ID")),
            hf_token=_clean(env.get("HF_TOKEN")),
            hf_repo=_clean(env.get("HF_REPO")),
            public_base_url=_clean(env.get("PUBLIC_BASE_URL")),
            whitelist_mode=_flag(env.get("WHITELIST_MODE"), False),
            block_image_url=_clean(env.get("BLOCK_IMAGE_URL")) or DEFAULT_BLOCK_IMAGE_URL,
            cache_purge_url=_clean(env.get("CACHE_PURGE_URL")),
            cache_purge_token=_clean(env.get("CACHE_PURGE_TOKEN")),
            guest_upload=_flag(env.get("GUEST_UPLOAD"), False),
            guest_max_file_size=int(env.get("GUEST_MAX_FILE_SIZE", str(5 * 1024 * 1024))),
        )

    @property
    def auth_required(self) -> bool:
        return bool(self.basic_user and self.basic_pass_hash)

    @property
    def use_signed_telegram_links(self) -> bool:
        if self.telegram_link_mode == "signed":
            return True
        return self.minimize_kv_writes

    @property
    def write_telegram_metadata(self) -> bool:
        if self.telegram_metadata_mode in ("off", "none", "disable", "disabled", "minimal"):
            return False
        if self.telegram_metadata_mode in ("on", "full", "always", "enable", "enabled"):
            return True
        return not self.telegram_skip_metadata

    @property
    def r2_configured(self) -> bool:
        return bool(self.r2_bucket and self.r2_endpoint and self.r2_access_key_id)

    @property
    def s3_configured(self) -> bool:
        return bool(self.s3_bucket and self.s3_endpoint and self.s3_access_key_id)

    @property
    def telegram_configured(self) -> bool:
        return bool(self.tg_bot_token and self.tg_chat_id)

    @property
    def discord_configured(self) -> bool:
        return bool(self.discord_webhook_url or (self.discord_bot_token and self.discord_channel_id))

    @property
    def huggingface_configured(self) -> bool:
        return bool(self.hf_token and self.hf_repo)


def get_settings() -> Settings:
    """
    FastAPI dependency returning a fresh configuration snapshot.
    """
    return Settings.from_env()

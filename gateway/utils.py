"""Utility helper functions for the gateway."""

import secrets
import time


def generate_upload_id() -> str:
    """
    Generate a new upload id.

    Returns:
        32 hex characters from 16 random bytes
    """
    return secrets.token_hex(16)


def generate_object_name(prefix: str, extension: str) -> str:
    """
    Generate a unique object name such as ``r2_1712345678901_a1b2c3.png``.

    Args:
        prefix: Backend-specific name prefix
        extension: File extension without the dot

    Returns:
        Object name string
    """
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(3)}.{extension}"


def file_extension(file_name: str, fallback: str = "bin") -> str:
    """
    Lower-cased extension of ``file_name`` without the dot.
    """
    if not file_name or "." not in file_name:
        return fallback
    ext = file_name.rsplit(".", 1)[-1].strip().lower()
    return ext or fallback


def format_file_size(size: int) -> str:
    """
    Human readable size, e.g. ``1.5 MB``.
    """
    if size < 1024:
        return f"{size} B"
    for unit in ("KB", "MB", "GB"):
        size /= 1024
        if size < 1024 or unit == "GB":
            return f"{size:.2f} {unit}"
    return f"{size:.2f} GB"


EXTENSIONS_BY_MIME_TYPE = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/svg+xml": "svg",
    "image/x-icon": "ico",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "video/x-msvideo": "avi",
    "video/x-matroska": "mkv",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
    "audio/x-m4a": "m4a",
    "audio/mp4": "m4a",
    "application/pdf": "pdf",
    "application/zip": "zip",
    "application/x-rar-compressed": "rar",
    "application/x-7z-compressed": "7z",
    "text/plain": "txt",
    "text/html": "html",
    "text/css": "css",
    "text/javascript": "js",
    "application/json": "json",
}


def extension_for_mime_type(mime_type: str, fallback: str = "bin") -> str:
    """
    Usual extension for a MIME type; parameters such as ``charset`` are ignored.
    """
    essence = (mime_type or "").split(";", 1)[0].strip().lower()
    return EXTENSIONS_BY_MIME_TYPE.get(essence, fallback)

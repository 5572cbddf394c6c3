"""
Tamper-evident self-describing file identifiers.

A signed reference looks like ``tgs_<payload>.<signature>.<ext>`` where the
payload is the base64url JSON of the file description and the signature is
the base64url HMAC-SHA256 of the payload string. Any identifier that does not
decode and verify is simply not a signed reference; ``decode_signed_reference``
never raises.
"""

import base64
import binascii
import hashlib
import hmac
import json
import re
import time
from dataclasses import dataclass
from typing import List, Optional

from gateway.config import Settings

SIGNED_REFERENCE_PREFIX = "tgs_"
SIGNED_REFERENCE_VERSION = 1
MAX_FILE_NAME_LENGTH = 180
MAX_EXTENSION_LENGTH = 10

BUILTIN_SECRET = "k-vault-default-secret"
LEGACY_BUILTIN_SECRET = "tgbed-default-secret"

_SIGNED_REFERENCE_PATTERN = re.compile(
    r"^tgs_([A-Za-z0-9_-]+)\.([A-Za-z0-9_-]+)(?:\.([A-Za-z0-9]+))?$"
)
_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class SignedReference:
    file_id: str
    file_extension: str
    file_name: str = ""
    mime_type: str = ""
    file_size: int = 0
    message_id: Optional[int] = None
    created_at: int = 0
    version: int = SIGNED_REFERENCE_VERSION


def sanitize_extension(raw: Optional[str], fallback: str = "bin") -> str:
    normalized = _NON_ALNUM.sub("", str(raw or "").lower())
    if not normalized:
        return fallback
    return normalized[:MAX_EXTENSION_LENGTH]


def build_secret_list(settings: Settings) -> List[str]:
    """
    Ordered, de-duplicated signing secrets. The first one signs; all verify.
    """
    candidates = [
        settings.file_url_secret,
        settings.tg_file_url_secret,
        settings.tg_bot_token,
        BUILTIN_SECRET,
        LEGACY_BUILTIN_SECRET,
    ]
    secrets: List[str] = []
    for candidate in candidates:
        value = (candidate or "").strip()
        if value and value not in secrets:
            secrets.append(value)
    return secrets


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(payload: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def encode_signed_reference(reference: SignedReference, secrets: List[str]) -> str:
    """
    Serialize and sign ``reference`` with the primary secret.

    Args:
        reference: File description to embed
        secrets: Rotation list from ``build_secret_list``

    Returns:
        Signed identifier string
    """
    ext = sanitize_extension(reference.file_extension)
    payload_obj = {
        "v": reference.version,
        "f": str(reference.file_id),
        "e": ext,
        "n": (reference.file_name or "")[:MAX_FILE_NAME_LENGTH],
        "m": reference.mime_type or "",
        "s": int(reference.file_size or 0),
        "t": reference.created_at or int(time.time() * 1000),
    }
    if reference.message_id:
        payload_obj["mid"] = int(reference.message_id)

    payload = _b64url_encode(
        json.dumps(payload_obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    )
    signature = _sign(payload, secrets[0])
    return f"{SIGNED_REFERENCE_PREFIX}{payload}.{signature}.{ext}"


def decode_signed_reference(identifier: str, secrets: List[str]) -> Optional[SignedReference]:
    """
    Verify and decode a signed identifier.

    Returns None for anything that is not a well-formed reference signed by
    one of ``secrets``.
    """
    match = _SIGNED_REFERENCE_PATTERN.match(str(identifier or ""))
    if not match:
        return None

    payload, signature, suffix = match.group(1), match.group(2), match.group(3)

    if not any(hmac.compare_digest(signature, _sign(payload, secret)) for secret in secrets):
        return None

    try:
        parsed = json.loads(_b64url_decode(payload).decode("utf-8"))
    except (ValueError, UnicodeDecodeError, binascii.Error):
        return None
    if not isinstance(parsed, dict) or not parsed.get("f"):
        return None

    try:
        message_id = int(parsed["mid"]) if parsed.get("mid") else None
        return SignedReference(
            file_id=str(parsed["f"]),
            file_extension=sanitize_extension(parsed.get("e") or suffix),
            file_name=str(parsed.get("n") or ""),
            mime_type=str(parsed.get("m") or ""),
            file_size=int(parsed.get("s") or 0),
            message_id=message_id,
            created_at=int(parsed.get("t") or 0),
            version=int(parsed.get("v") or SIGNED_REFERENCE_VERSION),
        )
    except (TypeError, ValueError):
        return None


def is_signed_reference_shape(identifier: str) -> bool:
    return bool(_SIGNED_REFERENCE_PATTERN.match(str(identifier or "")))

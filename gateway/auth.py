"""Authentication and security utilities."""

import base64
import binascii
from typing import Optional, Tuple

import bcrypt
from fastapi import Depends, Header

from gateway.config import Settings, get_settings
from gateway.exceptions import UnauthorizedError
from gateway.types import Caller


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password to hash

    Returns:
        Bcrypt hash of the password, suitable for BASIC_PASS_HASH
    """
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Args:
        password: Plain text password to verify
        password_hash: Bcrypt hash to verify against

    Returns:
        True if password matches hash, False otherwise
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def parse_basic_credentials(authorization: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Extract ``(username, password)`` from a ``Basic`` Authorization header.
    """
    if not authorization:
        return None
    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


def authenticate(authorization: Optional[str], settings: Settings) -> Caller:
    """
    Resolve the caller for a request.

    Without configured credentials every caller is the administrator. With
    them, a request without credentials is a guest and wrong credentials fail.

    Raises:
        UnauthorizedError: If credentials are supplied but do not verify
    """
    if not settings.auth_required:
        return Caller(is_admin=True)

    if not authorization:
        return Caller(is_admin=False)

    credentials = parse_basic_credentials(authorization)
    if credentials is None:
        raise UnauthorizedError("Invalid Authorization header format. Expected: Basic <credentials>")

    username, password = credentials
    if username != settings.basic_user or not verify_password(password, settings.basic_pass_hash):
        raise UnauthorizedError("Invalid username or password")

    return Caller(is_admin=True, username=username)


async def get_caller(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings)
) -> Caller:
    """
    FastAPI dependency identifying the caller as administrator or guest.
    """
    return authenticate(authorization, settings)


async def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    """
    FastAPI dependency rejecting guests.

    Raises:
        UnauthorizedError: If the caller is not the administrator
    """
    if not caller.is_admin:
        raise UnauthorizedError("Authentication required")
    return caller

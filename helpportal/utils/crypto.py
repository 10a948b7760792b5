"""Encryption at rest for provider credentials.

Columns typed ``EncryptedText`` are Fernet-encrypted on write and decrypted
on read, so tokens never reach the database in plaintext. The Fernet key is
derived from ``PORTAL_ENCRYPTION_KEY``.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from functools import lru_cache
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

from helpportal.config import settings
from helpportal.errors import InternalError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _fernet(secret: str) -> Fernet:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def _current_fernet() -> Fernet:
    if not settings.encryption_key:
        raise InternalError("PORTAL_ENCRYPTION_KEY is not set")
    return _fernet(settings.encryption_key)


def encrypt(plaintext: str) -> str:
    return _current_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt(token: str) -> str | None:
    """Plaintext for ``token``, or None if it was written under another key."""
    try:
        return _current_fernet().decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        logger.warning("Stored credential could not be decrypted; treating it as missing")
        return None


class EncryptedText(TypeDecorator):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return encrypt(value)

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return decrypt(value)

"""Encryption helpers for external API keys stored on agents."""

import base64
import logging

from cryptography.fernet import Fernet, InvalidToken

from agentdesk.config import settings

logger = logging.getLogger(__name__)


def _get_fernet() -> Fernet | None:
    """Return Fernet instance if encryption_key is configured, else None."""
    key = settings.encryption_key
    if not key or key == "change-me-in-production":
        return None
    try:
        return Fernet(key.encode() if isinstance(key, str) else key)
    except ValueError:
        logger.warning("AGENTDESK_ENCRYPTION_KEY is not a valid Fernet key; using base64")
        return None


def encrypt_key(raw_key: str) -> str:
    """Encrypt an API key. Uses Fernet if available, else base64."""
    f = _get_fernet()
    if f:
        return f.encrypt(raw_key.encode()).decode()
    return base64.b64encode(raw_key.encode()).decode()


def decrypt_key(encrypted: str) -> str:
    """Decrypt an API key. Uses Fernet if available, else base64."""
    f = _get_fernet()
    if f:
        try:
            return f.decrypt(encrypted.encode()).decode()
        except InvalidToken:
            # stored before the encryption key was configured
            pass
    return base64.b64decode(encrypted.encode()).decode()


def mask_key(raw_key: str) -> str:
    """Mask an API key, showing only last 4 chars."""
    if len(raw_key) <= 4:
        return "****"
    return "*" * (len(raw_key) - 4) + raw_key[-4:]

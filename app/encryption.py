"""
encryption.py — Fernet symmetric encryption for two-factor secrets
==================================================================
TOTP secrets are encrypted before they are stored on the user row and
decrypted when a code is verified.

When ECOSYSTEM_ENCRYPTION_KEY is not set, storage falls back to plain text
(development mode). In production, set this to a Fernet key:

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""
from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger("ecosystem.encryption")

_fernet = None
_initialized = False


def _get_fernet():
    """Lazily initialise Fernet cipher from settings."""
    global _fernet, _initialized
    if _initialized:
        return _fernet
    _initialized = True
    from .config import settings
    key = settings.encryption_key
    if key:
        try:
            _fernet = Fernet(key.encode() if isinstance(key, str) else key)
            logger.info("Encryption enabled for two-factor secrets.")
        except ValueError as exc:
            logger.warning("Invalid ECOSYSTEM_ENCRYPTION_KEY, secrets stored in plain text: %s", exc)
    else:
        logger.warning(
            "ECOSYSTEM_ENCRYPTION_KEY not set — two-factor secrets stored in plain text. "
            "Set this in production."
        )
    return _fernet


def reset_cipher() -> None:
    """Drop the cached cipher so the next call re-reads settings."""
    global _fernet, _initialized
    _fernet = None
    _initialized = False


def encrypt_value(plain_text: str) -> str:
    """Encrypt a string value. Returns the encrypted token or plain text if no key."""
    f = _get_fernet()
    if f is None:
        return plain_text
    return f.encrypt(plain_text.encode()).decode()


def decrypt_value(encrypted_text: str) -> str:
    """Decrypt a string value. Returns the input if no key or it was never encrypted."""
    f = _get_fernet()
    if f is None:
        return encrypted_text
    try:
        return f.decrypt(encrypted_text.encode()).decode()
    except InvalidToken:
        # Plain text stored before encryption was enabled
        return encrypted_text

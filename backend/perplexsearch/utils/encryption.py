"""
Credential encryption for user data at rest.
Uses Fernet symmetric encryption keyed from the configured secret.
"""

import base64
import hashlib
import logging
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from perplexsearch.config import get_settings
from perplexsearch.models.settings import CREDENTIAL_FIELDS

logger = logging.getLogger(__name__)


def _get_fernet(secret: Optional[str] = None) -> Fernet:
    """
    Build a Fernet instance from ``secret`` (defaults to settings.encryption_key).

    Any string is accepted: it is hashed to the 32 bytes Fernet requires.
    """
    secret = secret if secret is not None else get_settings().encryption_key
    key_bytes = hashlib.sha256(secret.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(key_bytes))


def encrypt_api_key(api_key: str, secret: Optional[str] = None) -> str:
    """
    Encrypt an API key for storage.

    Args:
        api_key: Plain text API key
        secret: Encryption secret override

    Returns:
        Fernet token as a string ("" for an empty key)
    """
    if not api_key:
        return ""
    return _get_fernet(secret).encrypt(api_key.encode()).decode()


def decrypt_api_key(encrypted_key: str, secret: Optional[str] = None) -> str:
    """
    Decrypt a stored API key.

    Raises:
        ValueError: If the token was not produced with this secret
    """
    if not encrypted_key:
        return ""
    try:
        return _get_fernet(secret).decrypt(encrypted_key.encode()).decode()
    except InvalidToken as e:
        logger.error("Failed to decrypt API key (wrong encryption key?)")
        raise ValueError("Decryption failed - key may be corrupted") from e


def encrypt_credentials(settings: Dict[str, Any], secret: Optional[str] = None) -> Dict[str, Any]:
    """Return a copy of a settings dict with every credential field encrypted."""
    stored = dict(settings)
    for field in CREDENTIAL_FIELDS.values():
        if stored.get(field):
            stored[field] = encrypt_api_key(stored[field], secret)
    return stored


def decrypt_credentials(stored: Dict[str, Any], secret: Optional[str] = None) -> Dict[str, Any]:
    """
    Inverse of encrypt_credentials.

    A credential that no longer decrypts is dropped (set to "") so the
    user is prompted to re-enter it instead of failing the whole load.
    """
    settings = dict(stored)
    for field in CREDENTIAL_FIELDS.values():
        if not settings.get(field):
            continue
        try:
            settings[field] = decrypt_api_key(settings[field], secret)
        except ValueError:
            logger.warning(f"Discarding undecryptable credential '{field}'")
            settings[field] = ""
    return settings


def mask_api_key(api_key: str, visible_chars: int = 4) -> str:
    """
    Mask an API key for display, showing only the last few characters.

    Returns:
        Masked key like "sk-...abc1" or "pplx...abc1"
    """
    if not api_key:
        return ""

    if len(api_key) <= visible_chars:
        return "*" * len(api_key)

    prefix = ""
    for known in ("sk-ant-", "sk-", "pplx-", "AIza"):
        if api_key.startswith(known):
            prefix = known
            break
    return f"{prefix}...{api_key[-visible_chars:]}"

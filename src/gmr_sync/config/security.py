"""Security utilities for encrypting the relay auth key at rest.

Uses Fernet symmetric encryption with a machine-specific key derived from
the user name, machine name and a static salt. This provides basic
protection against casual file access while keeping data recoverable on
the same machine.
"""

import base64
import getpass
import hashlib
import platform

from cryptography.fernet import Fernet, InvalidToken

from ..logging_config import get_logger

logger = get_logger("security")

# Static salt - not secret, just adds entropy
_SALT = b"GmrSync_v1_salt_2021"

ENCRYPTED_PREFIX = "ENC:"


def _get_machine_key() -> bytes:
    """Generate a machine-specific encryption key.

    Derives a key from the current user name and computer name. This
    means encrypted data can only be decrypted on the same machine by the
    same user.

    Returns:
        32-byte key suitable for Fernet encryption
    """
    try:
        username = getpass.getuser()
    except (KeyError, OSError):
        username = "default_user"
    computername = platform.node() or "default_machine"

    key_material = f"{username}:{computername}".encode('utf-8')

    # Use PBKDF2 to derive a proper key
    key = hashlib.pbkdf2_hmac(
        'sha256',
        key_material,
        _SALT,
        iterations=100000,
        dklen=32
    )

    return base64.urlsafe_b64encode(key)


def _get_cipher() -> Fernet:
    return Fernet(_get_machine_key())


def encrypt_secret(plain_text: str) -> str:
    """Encrypt a secret for storage.

    Args:
        plain_text: The plain text secret to encrypt

    Returns:
        Encrypted string prefixed with 'ENC:' to identify it
    """
    if not plain_text:
        return ""

    encrypted = _get_cipher().encrypt(plain_text.encode('utf-8'))
    return f"{ENCRYPTED_PREFIX}{encrypted.decode('utf-8')}"


def decrypt_secret(encrypted_text: str) -> str:
    """Decrypt a stored secret.

    Args:
        encrypted_text: The encrypted string (prefixed with 'ENC:')

    Returns:
        The decrypted plain text, the original string if it was never
        encrypted, or an empty string if decryption fails.
    """
    if not encrypted_text:
        return ""

    if not encrypted_text.startswith(ENCRYPTED_PREFIX):
        # Not encrypted, return as-is (legacy plain text)
        return encrypted_text

    try:
        encrypted_data = encrypted_text[len(ENCRYPTED_PREFIX):].encode('utf-8')
        return _get_cipher().decrypt(encrypted_data).decode('utf-8')
    except (InvalidToken, TypeError, ValueError, UnicodeError) as e:
        logger.error(f"Failed to decrypt secret: {type(e).__name__}")
        # Return empty string for security rather than the encrypted data
        return ""


def is_encrypted(text: str) -> bool:
    """Check if a string is encrypted.

    Args:
        text: The string to check

    Returns:
        True if the string appears to be encrypted
    """
    return text.startswith(ENCRYPTED_PREFIX) if text else False

"""
Per-user field encryption for habit names.

Each user gets a key derived on demand from the master secret and the user's
id (HMAC-SHA256); the derived key is never stored. Every value is sealed with
AES-256-GCM under a fresh 96-bit nonce and stored as base64(nonce + ciphertext),
where the ciphertext carries the GCM authentication tag.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.config import settings
from app.core.exceptions import DecryptionError

logger = logging.getLogger(__name__)

NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


def get_master_secret() -> bytes:
    """Return the configured master secret as bytes."""
    return settings.HABIT_ENCRYPTION_KEY.encode()


def derive_key(master_secret: bytes, user_id: int | str) -> bytes:
    """Derive the 32-byte key for one user: HMAC-SHA256(master_secret, str(user_id))."""
    return hmac.new(master_secret, str(user_id).encode(), hashlib.sha256).digest()


def encrypt(plaintext: str, user_id: int | str, master_secret: bytes | None = None) -> str:
    """Encrypt a string for a user, return the base64 envelope."""
    key = derive_key(master_secret or get_master_secret(), user_id)
    nonce = os.urandom(NONCE_LENGTH)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt(envelope: str, user_id: int | str, master_secret: bytes | None = None) -> str:
    """Decrypt a base64 envelope for a user.

    Raises:
        DecryptionError: envelope is not base64, is truncated, or fails authentication
    """
    try:
        data = base64.b64decode(envelope.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError, AttributeError) as e:
        logger.warning(f"Decryption failed for user {user_id}: invalid base64 encoding")
        raise DecryptionError("invalid encoding") from e

    if len(data) < NONCE_LENGTH + TAG_LENGTH:
        logger.warning(f"Decryption failed for user {user_id}: envelope truncated")
        raise DecryptionError("truncated envelope")

    nonce, ciphertext = data[:NONCE_LENGTH], data[NONCE_LENGTH:]
    key = derive_key(master_secret or get_master_secret(), user_id)

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        logger.warning(f"Decryption failed for user {user_id}: authentication failed")
        raise DecryptionError("authentication failed") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("invalid plaintext encoding") from e

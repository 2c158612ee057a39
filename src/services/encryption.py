"""AES-256-GCM encryption for OAuth tokens and API keys stored at rest.

Every call to :func:`encrypt` draws a fresh random salt and nonce.  The
256-bit key is derived from the process-wide ``ENCRYPTION_KEY`` secret with
scrypt and the per-message salt, so two encryptions of the same plaintext
never produce the same ciphertext.

Envelope format (base64)::

    salt (16 bytes) | nonce (12 bytes) | ciphertext + GCM tag
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from src.config import ENCRYPTION_KEY

SALT_LENGTH = 16
NONCE_LENGTH = 12
KEY_LENGTH = 32

# scrypt cost parameters (interactive-login strength)
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


class CredentialDecryptionError(Exception):
    """Raised when a stored ciphertext cannot be decrypted."""


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: str, *, secret: str | None = None) -> str:
    """Encrypt *plaintext* and return the base64 envelope."""
    salt = os.urandom(SALT_LENGTH)
    nonce = os.urandom(NONCE_LENGTH)
    key = _derive_key(secret or ENCRYPTION_KEY, salt)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(salt + nonce + ciphertext).decode("ascii")


def decrypt(envelope: str, *, secret: str | None = None) -> str:
    """Decrypt an envelope produced by :func:`encrypt`.

    Raises:
        CredentialDecryptionError: malformed envelope, wrong key, or
            tampered ciphertext.
    """
    try:
        raw = base64.b64decode(envelope, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise CredentialDecryptionError(f"Invalid envelope encoding: {exc}") from exc

    if len(raw) <= SALT_LENGTH + NONCE_LENGTH:
        raise CredentialDecryptionError("Envelope is too short")

    salt = raw[:SALT_LENGTH]
    nonce = raw[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH]
    ciphertext = raw[SALT_LENGTH + NONCE_LENGTH:]

    key = _derive_key(secret or ENCRYPTION_KEY, salt)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None).decode("utf-8")
    except InvalidTag as exc:
        raise CredentialDecryptionError("Ciphertext failed authentication") from exc

"""Symmetric encryption of stored EHR client secrets.

Secrets are encrypted with Fernet (AES-128-CBC with HMAC-SHA256) before they
reach the database and are only decrypted in memory for the duration of an
OAuth probe. The key is supplied when the codec is constructed.
"""

import base64
import binascii
import hashlib
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from ehr_onboarding.config import Settings, get_settings
from ehr_onboarding.core.exceptions import DecryptionError
from ehr_onboarding.utils.logging import get_logger

logger = get_logger(__name__)


def _to_fernet_key(key: Union[str, bytes]) -> bytes:
    """Accept a Fernet key as-is, otherwise derive one from the passphrase."""
    raw = key.encode() if isinstance(key, str) else key
    if not raw:
        raise ValueError("Encryption key must not be empty")
    try:
        if len(base64.urlsafe_b64decode(raw)) == 32:
            return raw
    except (binascii.Error, ValueError):
        pass
    return base64.urlsafe_b64encode(hashlib.sha256(raw).digest())


class SecretCodec:
    """Encrypts and decrypts client secrets with a fixed key."""

    def __init__(self, key: Union[str, bytes]) -> None:
        """Initialize codec.

        Args:
            key: Fernet key, or any passphrase to derive one from
        """
        self._fernet = Fernet(_to_fernet_key(key))

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SecretCodec":
        """Build a codec from the configured encryption key."""
        settings = settings or get_settings()
        return cls(settings.encryption_key)

    def encrypt(self, secret: str) -> str:
        """Encrypt a secret. Every call uses a fresh IV."""
        return self._fernet.encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a secret produced by encrypt().

        Raises:
            DecryptionError: wrong key, tampered or malformed ciphertext
        """
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("ascii"))
            return plaintext.decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError, TypeError, AttributeError) as e:
            logger.warning("secret_decryption_failed", error_type=type(e).__name__)
            raise DecryptionError() from e

"""
Encryption-at-rest for persisted collections.

The provider is opaque to the rest of the SDK: collections are serialized to
text, passed through ``encrypt`` before they reach the store and through
``decrypt`` after they are read back.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from replica.config import EncryptionProviderType, EncryptionSettings
from replica.errors import ConfigurationError, ErrorCode, ReplicaError

KEY_SALT = b"replica_offline_storage_salt_v1"
KEY_ITERATIONS = 480000


class EncryptionProvider(ABC):
    """Symmetric text encryption."""

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        pass

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        pass


class PassthroughEncryption(EncryptionProvider):
    """Stores data as plain text. Used when no key is configured."""

    def encrypt(self, plaintext: str) -> str:
        return plaintext

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext


class FernetEncryption(EncryptionProvider):
    """Fernet (AES-128-CBC + HMAC) with a key derived from a passphrase."""

    def __init__(self, passphrase: str, salt: bytes = KEY_SALT):
        self._fernet = Fernet(self._derive_key(passphrase, salt))

    @staticmethod
    def _derive_key(passphrase: str, salt: bytes) -> bytes:
        """Derive an encryption key from a passphrase."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=KEY_ITERATIONS,
        )
        return base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise ReplicaError(
                "Offline data could not be decrypted with the configured key",
                ErrorCode.GENERAL_DATABASE_ERROR,
            ) from e


def create_encryption_provider(settings: EncryptionSettings) -> EncryptionProvider:
    """Build the provider selected by the settings."""
    if settings.provider == EncryptionProviderType.CUSTOM:
        if not isinstance(settings.implementation, EncryptionProvider):
            raise ConfigurationError(
                "Custom encryption provider requires an EncryptionProvider implementation"
            )
        return settings.implementation

    if settings.key:
        return FernetEncryption(settings.key)
    return PassthroughEncryption()

"""Credential store used by engine adapters to read connection secrets."""

from typing import Protocol

from nlquery.services.credential_encryption import (
    decrypt_secret,
    encrypt_secret,
    get_or_create_key,
)

_AAD = "nlquery:database_connection"


class CredentialStore(Protocol):
    """Encrypt/decrypt capability for connection secrets."""

    def encrypt(self, plaintext: str) -> str: ...

    def decrypt(self, secret_reference: str) -> str: ...


class EncryptedCredentialStore:
    """AES-256-GCM credential store.

    The key is resolved lazily on first use so importing the application
    never touches the key file.

    Args:
        key: Explicit 32-byte key. Resolved via get_or_create_key() if None.
        key_dir: Directory for an auto-generated key file.
    """

    def __init__(self, key: bytes | None = None, key_dir: str | None = None) -> None:
        self._key = key
        self._key_dir = key_dir

    def _get_key(self) -> bytes:
        if self._key is None:
            self._key = get_or_create_key(self._key_dir)
        return self._key

    def encrypt(self, plaintext: str) -> str:
        return encrypt_secret(plaintext, self._get_key(), aad=_AAD)

    def decrypt(self, secret_reference: str) -> str:
        return decrypt_secret(secret_reference, self._get_key(), aad=_AAD)

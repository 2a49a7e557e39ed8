"""AES-256-GCM encryption for stored database secrets.

Key source precedence:
    1. NLQUERY_CREDENTIAL_KEY env var (base64-encoded 32-byte key)
    2. NLQUERY_CREDENTIAL_KEY_FILE env var (path to raw key file)
    3. platformdirs local file (auto-generated on first use, mode 0600)

Ciphertext format: versioned JSON envelope with AAD binding,
``{"v": 1, "alg": "AES-256-GCM", "nonce": "<b64>", "ct": "<b64>"}``.
"""

import base64
import binascii
import json
import logging
import os
import platform
import stat

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

KEY_FILENAME = ".nlquery_key"
_CURRENT_VERSION = 1
_ALGORITHM = "AES-256-GCM"
_REQUIRED_KEY_LENGTH = 32
_NONCE_LENGTH = 12


class CredentialDecryptionError(Exception):
    """Raised when secret decryption fails for any reason."""


def get_default_key_dir() -> str:
    """Return the platform-appropriate app-data directory for key storage."""
    from platformdirs import user_data_dir

    return user_data_dir("nlquery", appauthor=False, ensure_exists=True)


def _read_key_file(path: str) -> bytes:
    with open(path, "rb") as f:
        key = f.read()
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Key file {path} has invalid length {len(key)} (expected {_REQUIRED_KEY_LENGTH})"
        )
    return key


def get_or_create_key(key_dir: str | None = None) -> bytes:
    """Load or generate the 32-byte AES-256 encryption key.

    Args:
        key_dir: Directory for the auto-generated key file (source 3 only).
            Defaults to the platformdirs app-data directory.

    Returns:
        32-byte encryption key.

    Raises:
        ValueError: If a configured key has invalid length or invalid base64,
            or the configured key file is missing or a symlink.
    """
    env_key = os.environ.get("NLQUERY_CREDENTIAL_KEY", "").strip()
    if env_key:
        try:
            key = base64.b64decode(env_key, validate=True)
        except binascii.Error as e:
            raise ValueError(f"NLQUERY_CREDENTIAL_KEY contains invalid base64: {e}") from e
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"NLQUERY_CREDENTIAL_KEY has invalid length {len(key)} (expected {_REQUIRED_KEY_LENGTH})"
            )
        return key

    env_key_file = os.environ.get("NLQUERY_CREDENTIAL_KEY_FILE", "").strip()
    if env_key_file:
        if not os.path.isfile(env_key_file):
            raise ValueError(f"NLQUERY_CREDENTIAL_KEY_FILE is not a regular file: {env_key_file}")
        if os.path.islink(env_key_file):
            raise ValueError(f"NLQUERY_CREDENTIAL_KEY_FILE is a symlink: {env_key_file}")
        return _read_key_file(env_key_file)

    directory = key_dir or get_default_key_dir()
    os.makedirs(directory, exist_ok=True)
    key_path = os.path.join(directory, KEY_FILENAME)

    if os.path.exists(key_path):
        key = _read_key_file(key_path)
        if platform.system() != "Windows":
            mode = stat.S_IMODE(os.stat(key_path).st_mode)
            if mode & (stat.S_IRGRP | stat.S_IWGRP | stat.S_IROTH | stat.S_IWOTH):
                logger.warning(
                    "Key file %s has permissions %o, recommend chmod 600",
                    key_path, mode,
                )
        return key

    key = os.urandom(_REQUIRED_KEY_LENGTH)
    try:
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        try:
            os.write(fd, key)
        finally:
            os.close(fd)
    except FileExistsError:
        # Another process created the key first.
        return _read_key_file(key_path)

    logger.info("Generated new encryption key at %s", key_path)
    return key


def encrypt_secret(plaintext: str, key: bytes, aad: str = "") -> str:
    """Encrypt a secret string to a versioned JSON envelope.

    Args:
        plaintext: Secret to protect (e.g. a database password).
        key: 32-byte AES-256 key.
        aad: Additional authenticated data bound to the ciphertext.

    Returns:
        JSON envelope string.

    Raises:
        ValueError: If key is not exactly 32 bytes.
    """
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Encryption key must be exactly {_REQUIRED_KEY_LENGTH} bytes (got {len(key)})"
        )
    nonce = os.urandom(_NONCE_LENGTH)
    aad_bytes = aad.encode("utf-8") if aad else None
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), aad_bytes)
    return json.dumps({
        "v": _CURRENT_VERSION,
        "alg": _ALGORITHM,
        "nonce": base64.b64encode(nonce).decode("ascii"),
        "ct": base64.b64encode(ciphertext).decode("ascii"),
    })


def decrypt_secret(envelope_text: str, key: bytes, aad: str = "") -> str:
    """Decrypt a JSON envelope produced by :func:`encrypt_secret`.

    Raises:
        CredentialDecryptionError: On any failure, including a wrong key,
            mismatched AAD, or a malformed envelope.
    """
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise CredentialDecryptionError(
            f"Decryption key must be exactly {_REQUIRED_KEY_LENGTH} bytes (got {len(key)})"
        )
    try:
        envelope = json.loads(envelope_text)
    except (json.JSONDecodeError, TypeError) as e:
        raise CredentialDecryptionError(f"Invalid envelope format: {e}") from e
    if not isinstance(envelope, dict):
        raise CredentialDecryptionError("Invalid envelope format: not an object")

    if envelope.get("v") != _CURRENT_VERSION:
        raise CredentialDecryptionError(
            f"Unsupported envelope version {envelope.get('v')} (expected {_CURRENT_VERSION})"
        )
    if envelope.get("alg") != _ALGORITHM:
        raise CredentialDecryptionError(
            f"Unsupported algorithm '{envelope.get('alg')}' (expected '{_ALGORITHM}')"
        )

    try:
        nonce = base64.b64decode(envelope["nonce"], validate=True)
        ciphertext = base64.b64decode(envelope["ct"], validate=True)
    except (KeyError, TypeError, binascii.Error) as e:
        raise CredentialDecryptionError(f"Malformed envelope fields: {e}") from e
    if len(nonce) != _NONCE_LENGTH:
        raise CredentialDecryptionError(
            f"Invalid nonce length {len(nonce)} (expected {_NONCE_LENGTH})"
        )

    try:
        aad_bytes = aad.encode("utf-8") if aad else None
        return AESGCM(key).decrypt(nonce, ciphertext, aad_bytes).decode("utf-8")
    except Exception as e:
        raise CredentialDecryptionError(f"Decryption failed: {type(e).__name__}") from e

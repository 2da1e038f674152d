"""Credential vault: authenticated encryption for stored secrets.

Secrets (API keys, passwords, tokens, client secrets) are stored as
``base64(nonce || ciphertext || tag)`` produced by AES-256-GCM. The key is
derived once per vault from the master secret with scrypt, so a leaked
derived key cannot be cheaply recomputed from a guessed secret.

Parameters match the stored-record format used by existing deployments:
16-byte nonce, 16-byte tag, scrypt(N=2**14, r=8, p=1) over a fixed salt.

Design principles:
- Fresh random nonce per encrypt call
- Tag failure is a DecryptionError, never a silent "not encrypted"
- No plaintext or key material in logs or error messages
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import secrets
from collections.abc import Iterable, Mapping
from typing import Any, Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from conduit.config import ENV_ENCRYPTION_KEY
from conduit.errors import DecryptionError, MissingSecretError

logger = logging.getLogger(__name__)

KEY_LENGTH: Final[int] = 32
NONCE_LENGTH: Final[int] = 16
TAG_LENGTH: Final[int] = 16
KDF_SALT: Final[bytes] = b"headless-admin-dashboard-salt"
SCRYPT_N: Final[int] = 2**14
SCRYPT_R: Final[int] = 8
SCRYPT_P: Final[int] = 1


def derive_key(master_secret: str, salt: bytes = KDF_SALT) -> bytes:
    """Derive a 32-byte AES key from the master secret with scrypt.

    Args:
        master_secret: Externally supplied process secret.
        salt: KDF salt (fixed for compatibility with stored records).

    Returns:
        32-byte derived key.
    """
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(master_secret.encode("utf-8"))


class CredentialVault:
    """Encrypts and decrypts secret strings with a process-derived key.

    The KDF runs once in the constructor; encrypt/decrypt are cheap afterwards.
    Instances are safe to share across tasks and threads (no mutable state).
    """

    def __init__(self, master_secret: str) -> None:
        """Initialize the vault.

        Args:
            master_secret: Master secret to derive the key from.

        Raises:
            MissingSecretError: If master_secret is empty.
        """
        if not master_secret:
            raise MissingSecretError(ENV_ENCRYPTION_KEY)
        self._aead = AESGCM(derive_key(master_secret))

    @classmethod
    def from_env(cls) -> CredentialVault:
        """Build a vault from CONDUIT_ENCRYPTION_KEY.

        Raises:
            MissingSecretError: If the env var is not set.
        """
        secret = os.environ.get(ENV_ENCRYPTION_KEY, "")
        if not secret.strip():
            raise MissingSecretError(ENV_ENCRYPTION_KEY)
        return cls(secret)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string.

        Args:
            plaintext: Secret value.

        Returns:
            Base64 string containing nonce + ciphertext + auth tag.
        """
        nonce = secrets.token_bytes(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a string produced by encrypt().

        Args:
            ciphertext: Base64 nonce + ciphertext + tag.

        Returns:
            Original plaintext.

        Raises:
            DecryptionError: On malformed input, wrong key, or tampering.
        """
        try:
            payload = base64.b64decode(ciphertext.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError, ValueError) as e:
            raise DecryptionError("Invalid ciphertext: not valid base64") from e

        if len(payload) < NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionError("Invalid ciphertext: too short")

        nonce = payload[:NONCE_LENGTH]
        sealed = payload[NONCE_LENGTH:]

        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise DecryptionError("Invalid ciphertext: authentication failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Invalid ciphertext: plaintext is not UTF-8") from e

    def encrypt_fields(
        self,
        obj: Mapping[str, Any],
        sensitive_fields: Iterable[str],
    ) -> dict[str, Any]:
        """Return a copy of obj with each populated string field encrypted."""
        result = dict(obj)
        for name in sensitive_fields:
            value = result.get(name)
            if isinstance(value, str) and value:
                result[name] = self.encrypt(value)
        return result

    def decrypt_fields(
        self,
        obj: Mapping[str, Any],
        sensitive_fields: Iterable[str],
        *,
        strict: bool = False,
    ) -> dict[str, Any]:
        """Return a copy of obj with each populated string field decrypted.

        Args:
            obj: Mapping holding encrypted values.
            sensitive_fields: Field names to decrypt.
            strict: Raise instead of keeping the stored value on failure.

        Raises:
            DecryptionError: If strict and any field fails to decrypt.
        """
        result = dict(obj)
        for name in sensitive_fields:
            value = result.get(name)
            if not isinstance(value, str) or not value:
                continue
            try:
                result[name] = self.decrypt(value)
            except DecryptionError:
                if strict:
                    raise
                logger.warning("Field %s is not decryptable; keeping stored value", name)
        return result


def hash_value(text: str) -> str:
    """SHA-256 hex digest for non-reversible comparisons (e.g. API key lookup)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def generate_secure_token(length: int = 32) -> str:
    """Generate a random hex token from ``length`` random bytes."""
    return secrets.token_hex(length)

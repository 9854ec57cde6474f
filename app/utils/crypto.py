"""
Crypto utilities - AES-256-GCM encryption of HMRC gateway credentials at rest.

`CredentialVault` encrypts a JSON-serialisable credential object and
returns an opaque string of three base64 components joined by dots:

    base64(iv) "." base64(tag) "." base64(ciphertext)

The AES key is the SHA-256 digest of the operator-configured secret
(GATEWAY_CRED_ENCRYPTION_KEY); the raw secret is never used as a key.
GCM authenticates the ciphertext, so `decrypt` refuses tampered input
instead of returning corrupted plaintext.

WARNING: GATEWAY_CRED_ENCRYPTION_KEY must be at least 16 characters.
Generate one with:
    python -c "import secrets; print(secrets.token_urlsafe(48))"
Store it in the environment - never hard-code or commit it. Changing it
makes every stored connection undecryptable; charities must re-save
their credentials.
"""

import base64
import binascii
import hashlib
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.exceptions import ConfigurationError

ENV_KEY_NAME = "GATEWAY_CRED_ENCRYPTION_KEY"
MIN_SECRET_LENGTH = 16

_IV_BYTES = 12
_TAG_BYTES = 16


class CredentialIntegrityError(Exception):
    """Raised when an encrypted payload is malformed, tampered or keyed differently."""


class CredentialVault:
    """Authenticated symmetric encryption for credential objects.

    Usage:
        vault = CredentialVault(secret)
        blob = vault.encrypt({"sender_id": "ABC", "password": "s3cret"})
        creds = vault.decrypt(blob)
    """

    def __init__(self, secret: str | None) -> None:
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"{ENV_KEY_NAME} is missing or too short "
                f"(need at least {MIN_SECRET_LENGTH} characters)"
            )
        self._aead = AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())

    def encrypt(self, obj) -> str:
        iv = os.urandom(_IV_BYTES)
        plaintext = json.dumps(obj, separators=(",", ":")).encode("utf-8")
        sealed = self._aead.encrypt(iv, plaintext, None)
        # cryptography appends the tag to the ciphertext
        ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        return ".".join(
            base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext)
        )

    def decrypt(self, payload: str):
        """Verify and decrypt a value produced by `encrypt`.

        Raises:
            CredentialIntegrityError: On bad format, wrong key or any tampering.
        """
        parts = (payload or "").split(".")
        if len(parts) != 3:
            raise CredentialIntegrityError("Invalid encrypted payload format")
        try:
            iv, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts)
        except (binascii.Error, ValueError) as exc:
            raise CredentialIntegrityError("Invalid encrypted payload encoding") from exc
        if len(iv) != _IV_BYTES or len(tag) != _TAG_BYTES:
            raise CredentialIntegrityError("Invalid encrypted payload format")

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise CredentialIntegrityError(
                "Encrypted credentials failed authentication"
            ) from exc

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise CredentialIntegrityError("Decrypted credentials are not valid JSON") from exc


def _get_vault() -> CredentialVault:
    """Return a vault keyed by the GATEWAY_CRED_ENCRYPTION_KEY env var.

    Raises ConfigurationError if the secret is unset or too short.
    """
    return CredentialVault(os.getenv(ENV_KEY_NAME))


def encrypt_credentials(obj) -> str:
    """Encrypt a credential object with the operator-configured secret."""
    return _get_vault().encrypt(obj)


def decrypt_credentials(payload: str):
    """Decrypt a value previously returned by encrypt_credentials()."""
    return _get_vault().decrypt(payload)

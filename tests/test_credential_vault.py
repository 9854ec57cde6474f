"""Unit tests for app.utils.crypto - AES-256-GCM credential vault."""

import base64
import hashlib

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.exceptions import ConfigurationError
from app.utils.crypto import (
    CredentialIntegrityError,
    CredentialVault,
    decrypt_credentials,
    encrypt_credentials,
)

SECRET = "a-sufficiently-long-operator-secret"
CREDS = {"sender_id": "GIFTAIDCHAR", "password": "p@ss&<word>", "updated_at": "2024-06-01T10:00:00+00:00"}


def _flip_first_byte(b64: str) -> str:
    raw = bytearray(base64.b64decode(b64))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestRoundTrip:
    def test_decrypt_returns_exact_original_object(self):
        vault = CredentialVault(SECRET)
        assert vault.decrypt(vault.encrypt(CREDS)) == CREDS

    def test_output_has_iv_tag_ciphertext_components(self):
        blob = CredentialVault(SECRET).encrypt(CREDS)
        iv, tag, ciphertext = blob.split(".")
        assert len(base64.b64decode(iv)) == 12
        assert len(base64.b64decode(tag)) == 16
        assert base64.b64decode(ciphertext)

    def test_same_plaintext_encrypts_differently_each_time(self):
        vault = CredentialVault(SECRET)
        assert vault.encrypt(CREDS) != vault.encrypt(CREDS)

    def test_plaintext_not_visible_in_output(self):
        blob = CredentialVault(SECRET).encrypt(CREDS)
        assert "GIFTAIDCHAR" not in blob
        assert "p@ss" not in blob

    def test_key_is_sha256_of_secret(self):
        """Given a blob, When decrypting with AESGCM(sha256(secret)), Then it opens."""
        iv, tag, ciphertext = (
            base64.b64decode(p) for p in CredentialVault(SECRET).encrypt(CREDS).split(".")
        )
        key = hashlib.sha256(SECRET.encode("utf-8")).digest()
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        assert b"GIFTAIDCHAR" in plaintext


class TestFailClosed:
    def test_flipped_ciphertext_byte_is_rejected(self):
        vault = CredentialVault(SECRET)
        iv, tag, ciphertext = vault.encrypt(CREDS).split(".")
        with pytest.raises(CredentialIntegrityError):
            vault.decrypt(".".join([iv, tag, _flip_first_byte(ciphertext)]))

    def test_flipped_tag_byte_is_rejected(self):
        vault = CredentialVault(SECRET)
        iv, tag, ciphertext = vault.encrypt(CREDS).split(".")
        with pytest.raises(CredentialIntegrityError):
            vault.decrypt(".".join([iv, _flip_first_byte(tag), ciphertext]))

    def test_flipped_iv_byte_is_rejected(self):
        vault = CredentialVault(SECRET)
        iv, tag, ciphertext = vault.encrypt(CREDS).split(".")
        with pytest.raises(CredentialIntegrityError):
            vault.decrypt(".".join([_flip_first_byte(iv), tag, ciphertext]))

    def test_wrong_secret_is_rejected(self):
        blob = CredentialVault(SECRET).encrypt(CREDS)
        with pytest.raises(CredentialIntegrityError):
            CredentialVault("another-long-operator-secret").decrypt(blob)

    @pytest.mark.parametrize("payload", ["", "abc", "a.b", "a.b.c.d", "!!!.???.###"])
    def test_malformed_payload_is_rejected(self, payload):
        with pytest.raises(CredentialIntegrityError):
            CredentialVault(SECRET).decrypt(payload)


class TestSecretConfiguration:
    @pytest.mark.parametrize("secret", [None, "", "short-secret"])
    def test_missing_or_short_secret_raises_configuration_error(self, secret):
        with pytest.raises(ConfigurationError):
            CredentialVault(secret)

    def test_module_functions_use_env_secret(self):
        assert decrypt_credentials(encrypt_credentials(CREDS)) == CREDS

    def test_module_functions_fail_without_env_secret(self, monkeypatch):
        monkeypatch.delenv("GATEWAY_CRED_ENCRYPTION_KEY")
        with pytest.raises(ConfigurationError):
            encrypt_credentials(CREDS)

"""
Token Vault

Encrypts long-lived third-party credentials (GitHub tokens) at rest.

Format: base64( nonce[12] | ciphertext | tag[16] )  -- AES-256-GCM

This key is NOT the message EncodingAESKey. The two envelopes are
independent and must never share key material.
"""

import base64
import binascii
import os

from Crypto.Cipher import AES

NONCE_LEN = 12
TAG_LEN = 16
KEY_LEN = 32


class TokenVaultError(Exception):
    """Stored credential could not be decrypted."""

    code = "token_decrypt_failed"


class TokenVaultConfigError(TokenVaultError):
    """Vault key is missing or malformed."""

    code = "token_key_invalid"


class TokenVault:
    """AES-GCM envelope for credentials stored in the KV store."""

    def __init__(self, key: bytes):
        if len(key) != KEY_LEN:
            raise TokenVaultConfigError(
                f"TOKEN_ENCRYPTION_KEY_BASE64 must be {KEY_LEN} bytes (base64-encoded)"
            )
        self._key = key

    @classmethod
    def from_base64(cls, key_b64: str) -> "TokenVault":
        """Build a vault from the configured base64 key."""
        if not key_b64:
            raise TokenVaultConfigError("TOKEN_ENCRYPTION_KEY_BASE64 is not configured")
        try:
            raw = base64.b64decode(key_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise TokenVaultConfigError(f"TOKEN_ENCRYPTION_KEY_BASE64 is not valid base64: {e}") from e
        return cls(raw)

    def uses_key(self, raw_key: bytes) -> bool:
        """True if this vault is keyed with ``raw_key``."""
        return self._key == raw_key

    def encrypt(self, token: str) -> str:
        nonce = os.urandom(NONCE_LEN)
        cipher = AES.new(self._key, AES.MODE_GCM, nonce=nonce)
        ciphertext, tag = cipher.encrypt_and_digest(token.encode("utf-8"))
        return base64.b64encode(nonce + ciphertext + tag).decode("ascii")

    def decrypt(self, payload_b64: str) -> str:
        """
        Decrypt a value produced by :meth:`encrypt`.

        Fails closed on short, undecodable or tampered payloads.

        Raises:
            TokenVaultError: Payload invalid or authentication failed
        """
        try:
            payload = base64.b64decode(payload_b64 or "", validate=True)
        except (binascii.Error, ValueError) as e:
            raise TokenVaultError("invalid encrypted token") from e

        if len(payload) < NONCE_LEN + 1 or len(payload) < NONCE_LEN + TAG_LEN:
            raise TokenVaultError("invalid encrypted token")

        nonce = payload[:NONCE_LEN]
        ciphertext = payload[NONCE_LEN:-TAG_LEN]
        tag = payload[-TAG_LEN:]
        cipher = AES.new(self._key, AES.MODE_GCM, nonce=nonce)
        try:
            plaintext = cipher.decrypt_and_verify(ciphertext, tag)
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise TokenVaultError("invalid encrypted token") from e

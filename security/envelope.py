"""
WeChat Message Envelope (AES-256-CBC)

Encrypt/decrypt platform message bodies in "safe mode".

Wire format (before base64):
    AES-CBC( pad32( random16 | len32_be(msg) | msg | app_id ) )

- Key:  EncodingAESKey (43 chars, unpadded base64) + "=" -> 32 raw bytes
- IV:   first 16 bytes of the key (fixed by the platform protocol)
- Pad:  PKCS#7-style with a 32-byte block, pad byte never zero

CPU-bound only. No I/O.
"""

import base64
import binascii
import os
import secrets
import string
import struct
from typing import Optional

from Crypto.Cipher import AES

BLOCK_SIZE = 32
RANDOM_PREFIX_LEN = 16
LENGTH_FIELD_LEN = 4
AES_KEY_LEN = 32
IV_LEN = 16


# ============================================================================
# ERRORS
# ============================================================================

class EnvelopeError(Exception):
    """Base class for envelope failures."""

    code = "wechat_crypto_error"


class EnvelopeConfigError(EnvelopeError):
    """EncodingAESKey or app id is missing or malformed."""

    code = "wechat_crypto_config"


class PaddingError(EnvelopeError):
    """Padding bytes are invalid."""

    code = "wechat_crypto_invalid_padding"


class PlaintextFramingError(EnvelopeError):
    """Decrypted plaintext does not follow the packed layout."""

    code = "wechat_crypto_invalid_plaintext"


class AppIdMismatchError(EnvelopeError):
    """Embedded app id differs from the configured one."""

    code = "wechat_crypto_appid_mismatch"


class CipherError(EnvelopeError):
    """Ciphertext could not be decoded or decrypted."""

    code = "wechat_crypto_invalid_ciphertext"


# ============================================================================
# KEY + PADDING
# ============================================================================

def decode_aes_key(encoding_aes_key: Optional[str]) -> bytes:
    """
    Decode the 43-char EncodingAESKey into 32 raw bytes.

    Raises:
        EnvelopeConfigError: Key is missing, not base64, or not 32 bytes
    """
    if not encoding_aes_key:
        raise EnvelopeConfigError("WECHAT_AES_KEY is not configured")
    try:
        raw = base64.b64decode(f"{encoding_aes_key}=", validate=True)
    except (binascii.Error, ValueError) as e:
        raise EnvelopeConfigError(f"WECHAT_AES_KEY is not valid base64: {e}") from e
    if len(raw) != AES_KEY_LEN:
        raise EnvelopeConfigError(
            f"WECHAT_AES_KEY must decode to {AES_KEY_LEN} bytes (got {len(raw)})"
        )
    return raw


def pkcs7_pad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    """Pad to a multiple of ``block_size``; a full block is added when already aligned."""
    pad_len = block_size - (len(data) % block_size)
    return data + bytes([pad_len]) * pad_len


def pkcs7_unpad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    """
    Strip padding added by :func:`pkcs7_pad`.

    Raises:
        PaddingError: Empty input, pad length outside [1, block_size],
            or trailing bytes that do not all equal the pad length
    """
    if not data:
        raise PaddingError("empty plaintext")
    pad_len = data[-1]
    if pad_len < 1 or pad_len > block_size or pad_len > len(data):
        raise PaddingError(f"invalid pad length {pad_len}")
    if data[-pad_len:] != bytes([pad_len]) * pad_len:
        raise PaddingError("inconsistent pad bytes")
    return data[:-pad_len]


def _cipher(raw_key: bytes):
    return AES.new(raw_key, AES.MODE_CBC, iv=raw_key[:IV_LEN])


# ============================================================================
# DECRYPT / ENCRYPT
# ============================================================================

def decrypt_message(
    encoding_aes_key: Optional[str],
    app_id: Optional[str],
    encrypted_b64: str,
) -> str:
    """
    Decrypt an ``Encrypt`` payload (or an encrypted ``echostr``).

    Args:
        encoding_aes_key: 43-char EncodingAESKey
        app_id: Expected app id; empty disables the identity check
        encrypted_b64: Base64 ciphertext

    Returns:
        The inner message (usually an XML document)

    Raises:
        EnvelopeConfigError: Bad key material (raised before any AES call)
        CipherError: Ciphertext not base64 or not block aligned
        PaddingError: Invalid padding
        PlaintextFramingError: Declared length runs past the buffer
        AppIdMismatchError: Embedded app id differs from ``app_id``
    """
    raw_key = decode_aes_key(encoding_aes_key)

    try:
        cipher_bytes = base64.b64decode(encrypted_b64 or "", validate=True)
    except (binascii.Error, ValueError) as e:
        raise CipherError(f"ciphertext is not valid base64: {e}") from e
    if not cipher_bytes or len(cipher_bytes) % AES.block_size != 0:
        raise CipherError("ciphertext length is not a multiple of the AES block size")

    plaintext = pkcs7_unpad(_cipher(raw_key).decrypt(cipher_bytes))

    header_len = RANDOM_PREFIX_LEN + LENGTH_FIELD_LEN
    if len(plaintext) < header_len + 1:
        raise PlaintextFramingError("plaintext shorter than header")
    (msg_len,) = struct.unpack(">I", plaintext[RANDOM_PREFIX_LEN:header_len])
    msg_end = header_len + msg_len
    if msg_end > len(plaintext):
        raise PlaintextFramingError("declared message length exceeds plaintext")

    try:
        message = plaintext[header_len:msg_end].decode("utf-8")
        received_app_id = plaintext[msg_end:].decode("utf-8")
    except UnicodeDecodeError as e:
        raise PlaintextFramingError(f"plaintext is not valid UTF-8: {e}") from e

    # Only verifiable when both sides carry an identity
    if app_id and received_app_id and received_app_id != app_id:
        raise AppIdMismatchError("app id mismatch")

    return message


def encrypt_message(
    encoding_aes_key: Optional[str],
    app_id: Optional[str],
    plaintext: str,
    random_prefix: Optional[bytes] = None,
) -> str:
    """
    Encrypt a reply for the platform.

    Args:
        encoding_aes_key: 43-char EncodingAESKey
        app_id: App id appended to the frame (required)
        plaintext: Message to encrypt
        random_prefix: 16 bytes to use instead of fresh randomness (tests only)

    Returns:
        Base64 ciphertext

    Raises:
        EnvelopeConfigError: Missing app id or bad key material
    """
    if not app_id:
        raise EnvelopeConfigError("WECHAT_APP_ID is required to encrypt replies")
    raw_key = decode_aes_key(encoding_aes_key)

    prefix = random_prefix if random_prefix is not None else os.urandom(RANDOM_PREFIX_LEN)
    if len(prefix) != RANDOM_PREFIX_LEN:
        raise ValueError(f"random_prefix must be {RANDOM_PREFIX_LEN} bytes")

    msg_bytes = plaintext.encode("utf-8")
    packed = b"".join([
        prefix,
        struct.pack(">I", len(msg_bytes)),
        msg_bytes,
        app_id.encode("utf-8"),
    ])
    cipher_bytes = _cipher(raw_key).encrypt(pkcs7_pad(packed))
    return base64.b64encode(cipher_bytes).decode("ascii")


def random_nonce(length: int = 8) -> str:
    """Numeric nonce for encrypted replies."""
    return "".join(secrets.choice(string.digits) for _ in range(length))

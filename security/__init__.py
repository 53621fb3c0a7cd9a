"""Security Layer - Module Exports"""

from .envelope import (
    AppIdMismatchError,
    CipherError,
    EnvelopeConfigError,
    EnvelopeError,
    PaddingError,
    PlaintextFramingError,
    decode_aes_key,
    decrypt_message,
    encrypt_message,
    pkcs7_pad,
    pkcs7_unpad,
    random_nonce,
)
from .replay_guard import ReplayCheckResult, ReplayGuard
from .signature import compute_signature, verify, verify_msg_signature, verify_plain_signature
from .token_vault import TokenVault, TokenVaultConfigError, TokenVaultError

__all__ = [
    # Signature
    "compute_signature",
    "verify",
    "verify_plain_signature",
    "verify_msg_signature",
    # Envelope
    "EnvelopeError",
    "EnvelopeConfigError",
    "PaddingError",
    "PlaintextFramingError",
    "AppIdMismatchError",
    "CipherError",
    "decode_aes_key",
    "decrypt_message",
    "encrypt_message",
    "pkcs7_pad",
    "pkcs7_unpad",
    "random_nonce",
    # Replay
    "ReplayGuard",
    "ReplayCheckResult",
    # Vault
    "TokenVault",
    "TokenVaultError",
    "TokenVaultConfigError",
]

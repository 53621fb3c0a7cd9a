"""
WeChat Callback Security

SECURITY BOUNDARY - signature check, replay guard, envelope handling.
No handler imports. No retries.
"""

import time
from typing import Optional

from security.envelope import decrypt_message, encrypt_message, random_nonce
from security.replay_guard import ACCEPTED, ReplayCheckResult, ReplayGuard
from security.signature import compute_signature, verify_msg_signature, verify_plain_signature

from .normalize import build_encrypted_reply_xml
from .schemas import CallbackParams, EncryptedReply


class MissingCryptoConfigError(Exception):
    """Safe mode request but WECHAT_AES_KEY / WECHAT_APP_ID not configured."""

    code = "missing_crypto_config"


def verify_callback(params: CallbackParams, token: str, encrypted: Optional[str] = None) -> bool:
    """
    Verify the callback signature for either mode.

    Safe mode signs ``encrypted`` (the ``Encrypt`` tag, or ``echostr`` on GET)
    with ``msg_signature``; plain mode signs only timestamp and nonce.
    """
    if params.encrypted_mode:
        return verify_msg_signature(token, params.timestamp, params.nonce, params.msg_signature, encrypted or "")
    return verify_plain_signature(token, params.timestamp, params.nonce, params.signature)


async def enforce_replay_guard(guard: Optional[ReplayGuard], params: CallbackParams) -> ReplayCheckResult:
    """Run the replay guard; disabled protection accepts everything."""
    if guard is None:
        return ACCEPTED
    return await guard.check(params.timestamp, params.nonce)


def _require_crypto(aes_key: str, app_id: str) -> None:
    if not aes_key or not app_id:
        raise MissingCryptoConfigError("WECHAT_AES_KEY and WECHAT_APP_ID are required in safe mode")


def open_envelope(aes_key: str, app_id: str, encrypted: str) -> str:
    """
    Decrypt a safe-mode payload.

    Raises:
        MissingCryptoConfigError: Keys not configured
        EnvelopeError: Any crypto-integrity failure
    """
    _require_crypto(aes_key, app_id)
    return decrypt_message(aes_key, app_id, encrypted)


def seal_reply(
    token: str,
    aes_key: str,
    app_id: str,
    plain_reply: str,
    now: Optional[int] = None,
) -> str:
    """Encrypt a passive reply and wrap it with a fresh signature."""
    _require_crypto(aes_key, app_id)
    timestamp = str(int(time.time()) if now is None else now)
    nonce = random_nonce()
    encrypted = encrypt_message(aes_key, app_id, plain_reply)
    reply = EncryptedReply(
        encrypt=encrypted,
        msg_signature=compute_signature(token, timestamp, nonce, encrypted),
        timestamp=timestamp,
        nonce=nonce,
    )
    return build_encrypted_reply_xml(reply)

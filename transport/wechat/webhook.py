"""
WeChat Webhook Receiver

FastAPI router for the official-account callback URL.

GET  /api/callback  URL verification (echo ``echostr``)
POST /api/callback  message callback -> passive XML reply
GET  /api/healthz   liveness for the callback host

Components are read from ``request.app.state.infra`` through the
``get_infra`` dependency (overridable in tests).
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse

from observability.logs import RequestLogAdapter, new_request_id
from security.envelope import EnvelopeError

from .normalize import normalize_message, xml_get_text, xml_text_reply
from .schemas import CallbackParams
from .security import (
    MissingCryptoConfigError,
    enforce_replay_guard,
    open_envelope,
    seal_reply,
    verify_callback,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["WeChat Transport"])

REQUEST_ID_HEADER = "x-request-id"


def get_infra(request: Request) -> Any:
    """Wired components (an InfraBootstrap) stored on the app at startup."""
    return request.app.state.infra


def _params(request: Request) -> CallbackParams:
    query = request.query_params
    return CallbackParams(
        timestamp=query.get("timestamp"),
        nonce=query.get("nonce"),
        signature=query.get("signature"),
        msg_signature=query.get("msg_signature"),
        echostr=query.get("echostr"),
    )


def _reject(status_code: int, detail: str, request_id: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail=detail, headers={REQUEST_ID_HEADER: request_id})


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


# ============================================================================
# URL VERIFICATION (Setup only)
# ============================================================================

@router.get("/callback", response_class=PlainTextResponse)
async def wechat_callback_verify(request: Request, infra: Any = Depends(get_infra)) -> Response:
    """
    Verify the callback URL.

    Plain mode echoes ``echostr``; safe mode decrypts it first.

    Raises:
        HTTPException(400): Bad signature, missing crypto config, bad echostr
        HTTPException(500): Unexpected failure
    """
    request_id = new_request_id()
    log = RequestLogAdapter(logger, request_id)
    params = _params(request)
    config = infra.config

    try:
        echostr = params.echostr or ""
        if not verify_callback(params, config.wechat_token, encrypted=echostr):
            log.warning("wechat_verify_failed", extra={"stage": "get"})
            raise _reject(status.HTTP_400_BAD_REQUEST, "invalid signature", request_id)

        if params.encrypted_mode:
            try:
                echostr = open_envelope(config.wechat_aes_key, config.wechat_app_id, echostr)
            except MissingCryptoConfigError:
                log.warning("wechat_missing_crypto_config", extra={"stage": "get"})
                raise _reject(status.HTTP_400_BAD_REQUEST, "missing crypto config", request_id)
            except EnvelopeError as e:
                log.warning(f"wechat_decrypt_failed: {e.code}", extra={"stage": "get"})
                raise _reject(status.HTTP_400_BAD_REQUEST, "invalid echostr", request_id)

        log.info("wechat_verify_ok", extra={"stage": "get", "encrypted": params.encrypted_mode})
        return PlainTextResponse(echostr, headers={REQUEST_ID_HEADER: request_id})

    except HTTPException:
        raise
    except Exception as e:
        log.error(f"unhandled_error: {e}", exc_info=True)
        raise _reject(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", request_id)


# ============================================================================
# MESSAGE CALLBACK
# ============================================================================

@router.post("/callback")
async def wechat_callback_receiver(request: Request, infra: Any = Depends(get_infra)) -> Response:
    """
    Receive a WeChat message and answer with a passive reply.

    Flow:
    1. Verify signature (msg_signature covers the Encrypt payload)
    2. Replay guard (timestamp window + nonce)
    3. Decrypt (safe mode)
    4. Normalize and handle
    5. Reply, encrypted in safe mode

    Authentication and replay failures never reach the ledger and
    never say why they failed.

    Raises:
        HTTPException(400): Bad signature, replay, missing crypto config,
            undecryptable message
        HTTPException(500): Unexpected failure
    """
    request_id = new_request_id()
    log = RequestLogAdapter(logger, request_id)
    params = _params(request)
    config = infra.config

    try:
        # Step 1: Signature (security boundary)
        body = (await request.body()).decode("utf-8", errors="replace")
        encrypted = xml_get_text(body, "Encrypt") if params.encrypted_mode else None
        if not verify_callback(params, config.wechat_token, encrypted=encrypted):
            log.warning("wechat_verify_failed", extra={"stage": "post", "encrypted": params.encrypted_mode})
            raise _reject(status.HTTP_400_BAD_REQUEST, "invalid signature", request_id)

        # Step 2: Replay guard
        guard = await enforce_replay_guard(infra.replay_guard, params)
        if not guard.ok:
            log.warning("wechat_replay_guard_block", extra={"reason": guard.reason})
            raise _reject(status.HTTP_400_BAD_REQUEST, "invalid request", request_id)

        # Step 3: Decrypt
        if params.encrypted_mode:
            try:
                body = open_envelope(config.wechat_aes_key, config.wechat_app_id, encrypted)
            except MissingCryptoConfigError:
                log.warning("wechat_missing_crypto_config", extra={"stage": "post"})
                raise _reject(status.HTTP_400_BAD_REQUEST, "missing crypto config", request_id)
            except EnvelopeError as e:
                log.warning(f"wechat_decrypt_failed: {e.code}", extra={"stage": "post"})
                raise _reject(status.HTTP_400_BAD_REQUEST, "invalid message", request_id)

        # Step 4: Normalize and handle
        message = normalize_message(body)
        reply_text = await infra.handler.handle(message, log)

        # Step 5: Reply (swap sender/recipient)
        plain_reply = xml_text_reply(message.from_user, message.to_user, reply_text)
        if params.encrypted_mode:
            try:
                reply = seal_reply(config.wechat_token, config.wechat_aes_key, config.wechat_app_id, plain_reply)
            except MissingCryptoConfigError:
                raise _reject(status.HTTP_400_BAD_REQUEST, "missing crypto config", request_id)
        else:
            reply = plain_reply

        return Response(
            content=reply,
            media_type="text/xml; charset=utf-8",
            headers={REQUEST_ID_HEADER: request_id},
        )

    except HTTPException:
        raise
    except Exception as e:
        log.error(f"unhandled_error: {e}", exc_info=True)
        raise _reject(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", request_id)

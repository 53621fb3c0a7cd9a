"""WeChat Transport Layer - Module Exports"""

from .commands import (
    BindCommand,
    BindUsageError,
    is_valid_repo_full_name,
    normalize_path_prefix,
    parse_bind_command,
)
from .handlers import MessageHandler
from .normalize import (
    build_encrypted_reply_xml,
    normalize_message,
    xml_get_text,
    xml_text_reply,
)
from .schemas import CallbackParams, EncryptedReply, InboundMessage
from .security import (
    MissingCryptoConfigError,
    enforce_replay_guard,
    open_envelope,
    seal_reply,
    verify_callback,
)
from .sender import AccessTokenCache, WeChatCustomerServiceSender, WeChatTokenError
from .webhook import get_infra, router

__all__ = [
    # Schemas
    "CallbackParams",
    "InboundMessage",
    "EncryptedReply",
    # Normalization
    "normalize_message",
    "xml_get_text",
    "xml_text_reply",
    "build_encrypted_reply_xml",
    # Commands
    "BindCommand",
    "BindUsageError",
    "parse_bind_command",
    "is_valid_repo_full_name",
    "normalize_path_prefix",
    # Security
    "verify_callback",
    "enforce_replay_guard",
    "open_envelope",
    "seal_reply",
    "MissingCryptoConfigError",
    # Sender
    "AccessTokenCache",
    "WeChatCustomerServiceSender",
    "WeChatTokenError",
    # Handlers
    "MessageHandler",
    # Router
    "router",
    "get_infra",
]

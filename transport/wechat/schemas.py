"""
WeChat Transport Layer - Pydantic Schemas

PURE DATA MODELS - NO LOGIC
Only defines the contract between the WeChat callback and the handlers.
"""

from typing import Optional

from pydantic import BaseModel, Field


# ============================================================================
# CALLBACK QUERY (INPUT)
# ============================================================================

class CallbackParams(BaseModel):
    """
    Query parameters WeChat attaches to every callback.

    ``msg_signature`` present means safe (encrypted) mode; otherwise the
    plain ``signature`` is used.
    """

    timestamp: Optional[str] = None
    nonce: Optional[str] = None
    signature: Optional[str] = None
    msg_signature: Optional[str] = None
    echostr: Optional[str] = None

    @property
    def encrypted_mode(self) -> bool:
        return bool(self.msg_signature)

    class Config:
        frozen = True


# ============================================================================
# INBOUND MESSAGE (THE CONTRACT)
# ============================================================================

class InboundMessage(BaseModel):
    """
    A decrypted callback message, reduced to the fields handlers use.

    Empty strings stand for absent tags.
    """

    to_user: str = Field("", description="Official account id (ToUserName)")
    from_user: str = Field("", description="Sender openid (FromUserName)")
    msg_type: str = Field("", description="Lower-cased MsgType")
    content: str = Field("", description="Text body (text messages)")
    url: str = Field("", description="Shared link (link messages)")
    title: str = Field("", description="Link title (link messages)")
    msg_id: str = Field("", description="Platform message id")

    @property
    def has_required_fields(self) -> bool:
        return bool(self.to_user and self.from_user and self.msg_type)

    class Config:
        frozen = True


# ============================================================================
# ENCRYPTED REPLY (OUTPUT)
# ============================================================================

class EncryptedReply(BaseModel):
    """Fields of the encrypted passive-reply wrapper."""

    encrypt: str
    msg_signature: str
    timestamp: str
    nonce: str

    class Config:
        frozen = True

"""
WeChat XML Normalization

PURE CONVERSION - NO NETWORK, NO STORAGE

- Reads tags from callback XML (plain text or CDATA-wrapped)
- Builds passive text replies and the encrypted reply wrapper

WeChat bodies are flat and small; tags are read with a non-greedy,
case-insensitive match rather than a full XML parser.
"""

import re
import time
from typing import Optional

from .schemas import EncryptedReply, InboundMessage

_CDATA_RE = re.compile(r"^<!\[CDATA\[([\s\S]*?)\]\]>$")


def xml_get_text(xml: str, tag: str) -> str:
    """Text of the first ``<tag>`` element, CDATA unwrapped; "" when absent."""
    match = re.search(
        rf"<{re.escape(tag)}>([\s\S]*?)</{re.escape(tag)}>",
        xml or "",
        re.IGNORECASE,
    )
    if not match:
        return ""
    raw = match.group(1).strip()
    cdata = _CDATA_RE.match(raw)
    if cdata:
        return cdata.group(1)
    return re.sub(r"\]\]>$", "", re.sub(r"^<!\[CDATA\[", "", raw))


def escape_cdata(text: str) -> str:
    # Stop user text from closing the CDATA section
    return str(text).replace("]]>", "]]&gt;")


def normalize_message(xml: str) -> InboundMessage:
    """Convert a (decrypted) callback body into an InboundMessage."""
    return InboundMessage(
        to_user=xml_get_text(xml, "ToUserName"),
        from_user=xml_get_text(xml, "FromUserName"),
        msg_type=xml_get_text(xml, "MsgType").lower(),
        content=xml_get_text(xml, "Content"),
        url=xml_get_text(xml, "Url"),
        title=xml_get_text(xml, "Title"),
        msg_id=xml_get_text(xml, "MsgId"),
    )


def xml_text_reply(to_user: str, from_user: str, content: str, now: Optional[int] = None) -> str:
    create_time = int(time.time()) if now is None else now
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<xml>\n"
        f"\t<ToUserName><![CDATA[{escape_cdata(to_user)}]]></ToUserName>\n"
        f"\t<FromUserName><![CDATA[{escape_cdata(from_user)}]]></FromUserName>\n"
        f"\t<CreateTime>{create_time}</CreateTime>\n"
        "\t<MsgType><![CDATA[text]]></MsgType>\n"
        f"\t<Content><![CDATA[{escape_cdata(content)}]]></Content>\n"
        "</xml>"
    )


def build_encrypted_reply_xml(reply: EncryptedReply) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<xml>\n"
        f"\t<Encrypt><![CDATA[{reply.encrypt}]]></Encrypt>\n"
        f"\t<MsgSignature><![CDATA[{reply.msg_signature}]]></MsgSignature>\n"
        f"\t<TimeStamp>{reply.timestamp}</TimeStamp>\n"
        f"\t<Nonce><![CDATA[{reply.nonce}]]></Nonce>\n"
        "</xml>"
    )

"""WhatsApp Cloud API webhook parsing and verification helpers.

Pure functions: no network access, easy to unit test against captured
payloads.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ...models import InboundMessage, MediaRef

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = frozenset({"text", "image", "interactive", "button"})


def _field(obj: Any, key: str) -> Dict[str, Any]:
    """Return ``obj[key]`` when it is an object, else an empty dict."""
    value = obj.get(key) if isinstance(obj, dict) else None
    return value if isinstance(value, dict) else {}


def _items(obj: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    """Return the object entries of the list at ``obj[key]``."""
    value = obj.get(key)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    expected_token: str,
) -> Optional[str]:
    """Return the challenge to echo back, or None when the handshake fails."""

    if mode != "subscribe" or not expected_token or challenge is None:
        return None
    if not hmac.compare_digest(str(token or ""), expected_token):
        return None
    return challenge


def verify_signature(body: bytes, signature_header: Optional[str], app_secret: str) -> bool:
    """Check ``X-Hub-Signature-256`` against the raw request body."""

    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature_header[len("sha256="):], expected)


def extract_text(msg: Dict[str, Any]) -> str:
    """Return the command-bearing text of a raw message, or an empty string."""

    mtype = msg.get("type")
    if mtype == "text":
        return str(_field(msg, "text").get("body") or "")
    if mtype == "image":
        return str(_field(msg, "image").get("caption") or "")
    if mtype == "interactive":
        interactive = _field(msg, "interactive")
        reply = _field(interactive, "button_reply") or _field(interactive, "list_reply")
        return str(reply.get("title") or reply.get("id") or "")
    if mtype == "button":
        button = _field(msg, "button")
        return str(button.get("text") or button.get("payload") or "")
    return ""


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value else None


def _parse_timestamp(raw: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(timezone.utc)


def _contact_names(value: Dict[str, Any]) -> Dict[str, str]:
    names: Dict[str, str] = {}
    for contact in _items(value, "contacts"):
        wa_id = contact.get("wa_id")
        name = _field(contact, "profile").get("name")
        if wa_id and name:
            names[str(wa_id)] = str(name)
    return names


def parse_message(msg: Dict[str, Any], names: Optional[Dict[str, str]] = None) -> Optional[InboundMessage]:
    """Convert one raw Cloud API message into an ``InboundMessage``."""

    mtype = msg.get("type")
    message_id = msg.get("id")
    sender = msg.get("from")
    if not isinstance(mtype, str) or mtype not in SUPPORTED_TYPES or not message_id or not sender:
        return None

    image = None
    if mtype == "image":
        payload = _field(msg, "image")
        media_id = payload.get("id")
        if not media_id:
            return None
        image = MediaRef(
            media_id=str(media_id),
            mime_type=str(payload.get("mime_type") or "image/jpeg"),
            sha256=_optional_str(payload.get("sha256")),
            caption=_optional_str(payload.get("caption")),
        )

    context = _field(msg, "context")
    return InboundMessage(
        message_id=str(message_id),
        chat_id=str(sender),
        message_type=str(mtype),
        text=extract_text(msg),
        sender_name=(names or {}).get(str(sender)),
        image=image,
        quoted_message_id=_optional_str(context.get("id")),
        timestamp=_parse_timestamp(msg.get("timestamp")),
    )


def parse_webhook(payload: Any) -> List[InboundMessage]:
    """Extract user messages from a webhook delivery.

    Status callbacks (sent/delivered/read) and unsupported message types are
    skipped. Malformed payloads yield an empty list.
    """

    messages: List[InboundMessage] = []
    if not isinstance(payload, dict):
        logger.debug("Ignoring non-object webhook payload")
        return messages

    for entry in _items(payload, "entry"):
        for change in _items(entry, "changes"):
            if change.get("field", "messages") != "messages":
                continue
            value = _field(change, "value")
            names = _contact_names(value)
            for raw in _items(value, "messages"):
                parsed = parse_message(raw, names)
                if parsed is None:
                    logger.debug("Skipping unsupported message type %s", raw.get("type"))
                    continue
                messages.append(parsed)
    return messages


__all__ = [
    "verify_subscription",
    "verify_signature",
    "extract_text",
    "parse_message",
    "parse_webhook",
]

"""
LINE webhook adapter.

Verifies the X-Line-Signature header and normalizes LINE's webhook JSON
into provider-agnostic ChatEvent models.

LINE webhook field assumptions
------------------------------
The request body is {"destination": str, "events": [...]}, each event with
camelCase keys:

  type              str   — "follow", "message", "unfollow", "postback", ...
  replyToken        str   — present on events that can be replied to
  source            dict  — {"type": "user"|"group"|"room", "userId": str}
  message           dict  — for message events: {"type": "text", "text": str}
  webhookEventId    str   — unique per event, stable across redeliveries
  deliveryContext   dict  — {"isRedelivery": bool}

If LINE changes their schema, only this file needs updating.
"""

import base64
import hashlib
import hmac
from typing import Optional

from app.models.chat_event import ChatEvent


def verify_line_signature(body: bytes, signature: Optional[str], channel_secret: str) -> bool:
    """
    Check that body was signed by LINE with the channel secret.

    The signature is base64(HMAC-SHA256(channel_secret, raw_body)).
    Returns False when either the signature or the secret is missing.
    """
    if not signature or not channel_secret:
        return False

    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def normalize_line_event(event: dict) -> ChatEvent:
    """Convert one LINE webhook event to ChatEvent."""
    source = event.get("source") or {}
    user_id = source.get("userId")

    event_type = event.get("type")
    text: Optional[str] = None
    if event_type == "follow":
        kind = "follow"
    elif event_type == "message":
        kind = "message"
        message = event.get("message") or {}
        if message.get("type") == "text":
            text = message.get("text") or ""
    else:
        kind = "other"

    return ChatEvent(
        kind=kind,
        user_id=user_id,
        reply_token=event.get("replyToken"),
        text=text,
        event_id=event.get("webhookEventId"),
        is_redelivery=bool((event.get("deliveryContext") or {}).get("isRedelivery")),
    )


def parse_line_events(payload: dict) -> list[ChatEvent]:
    """Normalize every event in a LINE webhook body."""
    return [normalize_line_event(e) for e in payload.get("events") or []]

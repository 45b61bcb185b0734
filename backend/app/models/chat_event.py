"""
Platform-agnostic inbound chat event model.

The webhook router and the binding flow work exclusively with ChatEvent;
only the adapter layer (app.services.line_webhook_adapter) knows about the
LINE webhook JSON format.
"""

from typing import Literal, Optional
from pydantic import BaseModel


class ChatEvent(BaseModel):
    """
    One normalized inbound event.

    kind:
      follow   — the account added the bot as a friend
      message  — the account sent a message (text is set for text messages)
      other    — anything else (unfollow, postback, join, ...); ignored
    """

    kind: Literal["follow", "message", "other"]
    user_id: Optional[str] = None          # None when LINE omits it (some group events)
    reply_token: Optional[str] = None
    text: Optional[str] = None
    event_id: Optional[str] = None
    is_redelivery: bool = False

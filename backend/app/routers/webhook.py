"""
LINE webhook receiver.

Environment variables
---------------------
LINE_CHANNEL_SECRET   Channel secret used to verify X-Line-Signature.

The endpoint verifies the signature against the raw body, acknowledges with
200 straight away, and processes the events in a background task so LINE
never waits on the database or on reply calls. Redelivered events are
processed again; binding is idempotent so this is harmless.
"""

import json
import logging
import os
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request

from app.dependencies import gateway_dependency, store_dependency
from app.services.binding_flow import handle_chat_events
from app.services.binding_store import BindingStore
from app.services.line_webhook_adapter import parse_line_events, verify_line_signature

logger = logging.getLogger(__name__)

router = APIRouter()


async def _verified_body(
    request: Request,
    x_line_signature: Optional[str] = Header(None),
) -> bytes:
    """
    Return the raw request body after checking its LINE signature.

    Raises 401 if the secret is unconfigured or the signature is missing
    or wrong.
    """
    secret = os.getenv("LINE_CHANNEL_SECRET", "")
    if not secret:
        logger.warning(
            "LINE_CHANNEL_SECRET is not configured; all webhook requests will be rejected"
        )
        raise HTTPException(status_code=401, detail="Webhook secret not configured")

    body = await request.body()
    if not verify_line_signature(body, x_line_signature, secret):
        raise HTTPException(status_code=401, detail="Invalid signature")
    return body


@router.post("")
async def receive_line_webhook(
    background_tasks: BackgroundTasks,
    body: bytes = Depends(_verified_body),
    store: BindingStore = Depends(store_dependency),
    gateway=Depends(gateway_dependency),
) -> dict:
    """
    Accept a LINE webhook delivery.

    Always returns 200 for correctly signed requests, even when the body
    cannot be parsed, so LINE does not keep redelivering it.
    """
    try:
        payload = json.loads(body or b"{}")
        events = parse_line_events(payload)
    except (ValueError, AttributeError) as exc:
        logger.error(f"Could not parse LINE webhook body: {exc}")
        return {"received": True, "events": 0}

    if events:
        background_tasks.add_task(handle_chat_events, events, store, gateway)

    return {"received": True, "events": len(events)}

"""
Inbound chat binding flow.

Residents bind their LINE account to an apartment by sending the apartment
number to the bot. Each event is handled on its own; there is no
conversation state between messages.

    follow                        -> instructions
    text, bad format              -> format error
    text, unknown apartment       -> not found
    text, bind failed             -> please retry
    text, bound                   -> confirmation
"""

import logging
from typing import Optional

from app.models.chat_event import ChatEvent
from app.services.apartment_key import is_valid_apartment_no, normalize_apartment_no
from app.services.binding_store import BindingStore
from app.services.line_messaging import GatewayError

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = (
    "Welcome to the building package notification service!\n"
    "Reply with your apartment number to link this account.\n"
    "Examples: 14F-1 or A-14-1"
)
INVALID_FORMAT_MESSAGE = (
    "That apartment number is not in a recognized format. "
    "Please enter something like \"14F-1\" or \"A-14-1\"."
)
RETRY_MESSAGE = "Linking failed, please try again later."


def not_found_message(apartment_no: str) -> str:
    return f"Apartment {apartment_no} was not found. Please check it and try again."


def bound_message(apartment_no: str) -> str:
    return (
        f"Linked! Package notifications for \"{apartment_no}\" "
        "will now be sent to this account."
    )


def build_reply(event: ChatEvent, store: BindingStore) -> Optional[str]:
    """
    Decide the reply for one event, binding the account when appropriate.

    Returns None for events that get no reply (no user id, non-text
    messages, unfollow and other event types).
    """
    if not event.user_id:
        return None

    if event.kind == "follow":
        return WELCOME_MESSAGE

    if event.kind != "message" or event.text is None:
        return None

    apartment_no = normalize_apartment_no(event.text)
    if not is_valid_apartment_no(apartment_no):
        return INVALID_FORMAT_MESSAGE

    if not store.apartment_exists(apartment_no):
        return not_found_message(apartment_no)

    try:
        bound = store.bind_apartment_to_user(apartment_no, event.user_id)
    except Exception as e:
        logger.error(f"Failed to bind {event.user_id!r} to {apartment_no}: {e}")
        bound = False

    if not bound:
        return RETRY_MESSAGE

    logger.info(f"Bound {event.user_id!r} to {apartment_no}")
    return bound_message(apartment_no)


async def handle_chat_event(event: ChatEvent, store: BindingStore, gateway) -> Optional[str]:
    """Process one event and send the reply, if any. Returns the reply text."""
    reply = build_reply(event, store)
    if reply is None or not event.reply_token:
        return reply

    try:
        await gateway.reply(event.reply_token, reply)
    except GatewayError as e:
        logger.warning(f"Reply to {event.user_id!r} failed: {e} {e.payload!r}")
    return reply


async def handle_chat_events(events: list[ChatEvent], store: BindingStore, gateway) -> None:
    """Background task entry point for one webhook delivery."""
    for event in events:
        try:
            await handle_chat_event(event, store, gateway)
        except Exception:
            logger.exception(f"Failed to process chat event {event.event_id!r}")

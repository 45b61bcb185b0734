"""
Shared FastAPI dependencies.

Tests swap these out with app.dependency_overrides.
"""

import logging

from fastapi import HTTPException

from app.services.binding_store import BindingStore, get_store
from app.services.line_messaging import LineMessagingClient, get_line_client

logger = logging.getLogger(__name__)


def store_dependency() -> BindingStore:
    """Return the configured binding store, or 503 if it cannot be built."""
    try:
        return get_store()
    except ValueError as exc:
        logger.error(f"Binding store unavailable: {exc}")
        raise HTTPException(
            status_code=503,
            detail={"code": "STORE_UNAVAILABLE", "message": str(exc)},
        )


def gateway_dependency() -> LineMessagingClient:
    """Return the LINE client, or 503 if LINE_CHANNEL_ACCESS_TOKEN is not set."""
    try:
        return get_line_client()
    except ValueError as exc:
        logger.error(f"Messaging gateway unavailable: {exc}")
        raise HTTPException(
            status_code=503,
            detail={"code": "GATEWAY_UNAVAILABLE", "message": str(exc)},
        )

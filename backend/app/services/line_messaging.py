"""
LINE Messaging API client.

Sends plain text messages through the push and reply endpoints. Each call
is a single attempt: there is no retry, and a failure surfaces as a
GatewayError carrying LINE's error body so callers can record it.

Environment variables
---------------------
LINE_CHANNEL_ACCESS_TOKEN   Long-lived channel access token (required).
LINE_API_BASE_URL           Override the API host (default: https://api.line.me).
"""

import logging
import os
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.line.me"
DEFAULT_TIMEOUT_SECONDS = 10.0


class GatewayError(Exception):
    """A message could not be delivered to the LINE API."""

    def __init__(self, message: str, payload: Any = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.payload = payload
        self.status_code = status_code


class LineMessagingClient:
    """
    Thin async wrapper around the LINE Messaging API.

    One instance holds a long-lived httpx.AsyncClient; call aclose() on
    shutdown.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not access_token:
            raise ValueError("LINE channel access token is not configured.")
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=httpx.Timeout(timeout, connect=5.0),
            transport=transport,
        )

    async def push(self, user_id: str, text: str) -> None:
        """Push a text message to one user."""
        await self._post(
            "/v2/bot/message/push",
            {"to": user_id, "messages": [{"type": "text", "text": text}]},
        )

    async def reply(self, reply_token: str, text: str) -> None:
        """Answer a webhook event using its reply token."""
        await self._post(
            "/v2/bot/message/reply",
            {"replyToken": reply_token, "messages": [{"type": "text", "text": text}]},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, body: dict) -> None:
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as e:
            raise GatewayError(f"LINE API request failed: {e}") from e

        if response.is_success:
            return

        try:
            payload = response.json()
        except ValueError:
            payload = response.text

        raise GatewayError(
            f"LINE API returned {response.status_code} for {path}",
            payload=payload,
            status_code=response.status_code,
        )


_client: Optional[LineMessagingClient] = None


def get_line_client() -> LineMessagingClient:
    """
    Return the process-wide client, creating it on first use.

    Raises ValueError when LINE_CHANNEL_ACCESS_TOKEN is not set.
    """
    global _client
    if _client is None:
        _client = LineMessagingClient(
            access_token=os.getenv("LINE_CHANNEL_ACCESS_TOKEN", ""),
            base_url=os.getenv("LINE_API_BASE_URL", DEFAULT_API_BASE_URL),
        )
    return _client


async def close_line_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None

"""
LINE webhook tests: signature verification, event normalization, the
binding flow, and the POST /webhook endpoint.

The LINE gateway is mocked and the store is an in-memory SQLite database.
"""

import base64
import hashlib
import hmac
import json
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

os.environ.setdefault("STORE_BACKEND", "sqlite")
os.environ.setdefault("LINE_CHANNEL_SECRET", "test-channel-secret")

from fastapi.testclient import TestClient

from app.models.chat_event import ChatEvent
from app.services import binding_flow
from app.services.binding_store import SqliteBindingStore
from app.services.line_messaging import GatewayError
from app.services.line_webhook_adapter import (
    normalize_line_event,
    parse_line_events,
    verify_line_signature,
)

SECRET = "test-channel-secret"


# ---------------------------------------------------------------------------
# Payload builder helpers
# ---------------------------------------------------------------------------

def _sign(body: bytes, secret: str = SECRET) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def _make_text_event(
    text: str = "A-14-1",
    user_id: str | None = "U-resident-1",
    reply_token: str = "reply-token-1",
    event_id: str = "01HEVENT000000000000000001",
    redelivery: bool = False,
) -> dict:
    source = {"type": "user"}
    if user_id is not None:
        source["userId"] = user_id
    return {
        "type": "message",
        "mode": "active",
        "timestamp": 1760000000000,
        "replyToken": reply_token,
        "source": source,
        "webhookEventId": event_id,
        "deliveryContext": {"isRedelivery": redelivery},
        "message": {"id": "468789577898262530", "type": "text", "text": text},
    }


def _make_follow_event(user_id: str = "U-resident-1") -> dict:
    return {
        "type": "follow",
        "replyToken": "reply-token-follow",
        "source": {"type": "user", "userId": user_id},
        "webhookEventId": "01HEVENTFOLLOW",
        "deliveryContext": {"isRedelivery": False},
    }


def _make_body(*events: dict) -> bytes:
    return json.dumps({"destination": "Ubot", "events": list(events)}).encode()


@pytest.fixture()
def store():
    s = SqliteBindingStore(":memory:")
    s.add_apartment("A-14-1")
    s.add_apartment("14F-1")
    yield s
    s.close()


# ===========================================================================
# verify_line_signature
# ===========================================================================

class TestVerifyLineSignature:

    def test_valid_signature(self):
        body = _make_body(_make_follow_event())
        assert verify_line_signature(body, _sign(body), SECRET) is True

    def test_tampered_body(self):
        body = _make_body(_make_follow_event())
        assert verify_line_signature(body + b" ", _sign(body), SECRET) is False

    def test_wrong_secret(self):
        body = _make_body()
        assert verify_line_signature(body, _sign(body, "other"), SECRET) is False

    def test_missing_signature(self):
        assert verify_line_signature(b"{}", None, SECRET) is False

    def test_missing_secret(self):
        assert verify_line_signature(b"{}", _sign(b"{}"), "") is False

    def test_non_ascii_signature_is_rejected(self):
        assert verify_line_signature(b"{}", "签名", SECRET) is False


# ===========================================================================
# normalize_line_event / parse_line_events
# ===========================================================================

class TestParseLineEvents:

    def test_text_message(self):
        event = normalize_line_event(_make_text_event("a14-1", redelivery=True))
        assert event == ChatEvent(
            kind="message",
            user_id="U-resident-1",
            reply_token="reply-token-1",
            text="a14-1",
            event_id="01HEVENT000000000000000001",
            is_redelivery=True,
        )

    def test_follow(self):
        event = normalize_line_event(_make_follow_event())
        assert event.kind == "follow"
        assert event.text is None

    def test_non_text_message_has_no_text(self):
        raw = _make_text_event()
        raw["message"] = {"id": "1", "type": "sticker", "packageId": "1", "stickerId": "1"}
        event = normalize_line_event(raw)
        assert event.kind == "message"
        assert event.text is None

    def test_other_event_types(self):
        event = normalize_line_event({"type": "unfollow", "source": {"type": "user", "userId": "U1"}})
        assert event.kind == "other"
        assert event.reply_token is None

    def test_missing_user_id(self):
        event = normalize_line_event(_make_text_event(user_id=None))
        assert event.user_id is None

    def test_parse_multiple_events(self):
        payload = json.loads(_make_body(_make_follow_event(), _make_text_event()))
        events = parse_line_events(payload)
        assert [e.kind for e in events] == ["follow", "message"]

    def test_parse_empty_body(self):
        assert parse_line_events({}) == []
        assert parse_line_events({"events": []}) == []


# ===========================================================================
# Binding flow
# ===========================================================================

def _chat(text=None, kind="message", user_id="U1", reply_token="rt") -> ChatEvent:
    return ChatEvent(kind=kind, user_id=user_id, reply_token=reply_token, text=text)


class TestBindingFlow:

    @pytest.mark.asyncio
    async def test_follow_sends_instructions_without_mutation(self, store):
        gateway = AsyncMock()
        reply = await binding_flow.handle_chat_event(_chat(kind="follow"), store, gateway)

        assert reply == binding_flow.WELCOME_MESSAGE
        gateway.reply.assert_awaited_once_with("rt", binding_flow.WELCOME_MESSAGE)
        assert store.get_user_ids_by_apartment("A-14-1") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["14-1", "AA-1-1", "", "A-14", "hello"])
    async def test_invalid_format(self, store, text):
        gateway = AsyncMock()
        reply = await binding_flow.handle_chat_event(_chat(text), store, gateway)

        assert reply == binding_flow.INVALID_FORMAT_MESSAGE
        gateway.reply.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_apartment(self, store):
        gateway = AsyncMock()
        reply = await binding_flow.handle_chat_event(_chat("b-2-2"), store, gateway)

        assert reply == binding_flow.not_found_message("B-2-2")
        assert "B-2-2" in reply

    @pytest.mark.asyncio
    async def test_valid_known_apartment_binds(self, store):
        gateway = AsyncMock()
        reply = await binding_flow.handle_chat_event(_chat(" a14-1 "), store, gateway)

        assert reply == binding_flow.bound_message("A-14-1")
        assert store.get_user_ids_by_apartment("A-14-1") == ["U1"]
        gateway.reply.assert_awaited_once_with("rt", reply)

    @pytest.mark.asyncio
    async def test_floor_unit_form_binds(self, store):
        reply = await binding_flow.handle_chat_event(_chat("14f-1"), store, AsyncMock())

        assert reply == binding_flow.bound_message("14F-1")
        assert store.get_user_ids_by_apartment("14F-1") == ["U1"]

    @pytest.mark.asyncio
    async def test_duplicate_delivery_keeps_one_binding(self, store):
        event = _chat("A-14-1")
        await binding_flow.handle_chat_event(event, store, AsyncMock())
        await binding_flow.handle_chat_event(event, store, AsyncMock())

        assert store.get_user_ids_by_apartment("A-14-1") == ["U1"]

    @pytest.mark.asyncio
    async def test_bind_failure_asks_to_retry(self):
        mock_store = MagicMock()
        mock_store.apartment_exists.return_value = True
        mock_store.bind_apartment_to_user.return_value = False

        reply = await binding_flow.handle_chat_event(_chat("A-14-1"), mock_store, AsyncMock())

        assert reply == binding_flow.RETRY_MESSAGE

    @pytest.mark.asyncio
    async def test_bind_storage_error_asks_to_retry(self):
        mock_store = MagicMock()
        mock_store.apartment_exists.return_value = True
        mock_store.bind_apartment_to_user.side_effect = RuntimeError("connection reset")

        reply = await binding_flow.handle_chat_event(_chat("A-14-1"), mock_store, AsyncMock())

        assert reply == binding_flow.RETRY_MESSAGE

    @pytest.mark.asyncio
    async def test_event_without_user_is_ignored(self, store):
        gateway = AsyncMock()
        reply = await binding_flow.handle_chat_event(_chat("A-14-1", user_id=None), store, gateway)

        assert reply is None
        gateway.reply.assert_not_called()
        assert store.get_user_ids_by_apartment("A-14-1") == []

    @pytest.mark.asyncio
    async def test_non_text_message_is_ignored(self, store):
        gateway = AsyncMock()
        reply = await binding_flow.handle_chat_event(_chat(None), store, gateway)

        assert reply is None
        gateway.reply.assert_not_called()

    @pytest.mark.asyncio
    async def test_reply_failure_is_logged_not_raised(self, store):
        gateway = AsyncMock()
        gateway.reply.side_effect = GatewayError("LINE API returned 400", payload={"message": "Invalid reply token"})

        reply = await binding_flow.handle_chat_event(_chat("A-14-1"), store, gateway)

        assert reply == binding_flow.bound_message("A-14-1")
        assert store.get_user_ids_by_apartment("A-14-1") == ["U1"]

    @pytest.mark.asyncio
    async def test_handle_chat_events_continues_after_failure(self, store):
        broken_store = MagicMock()
        broken_store.apartment_exists.side_effect = RuntimeError("db down")
        gateway = AsyncMock()

        await binding_flow.handle_chat_events(
            [_chat("A-14-1"), _chat(kind="follow")], broken_store, gateway
        )

        gateway.reply.assert_awaited_once_with("rt", binding_flow.WELCOME_MESSAGE)


# ===========================================================================
# POST /webhook
# ===========================================================================

@pytest.fixture()
def gateway():
    return AsyncMock()


@pytest.fixture()
def client(store, gateway):
    """TestClient with the store and gateway dependencies overridden."""
    from app.dependencies import gateway_dependency, store_dependency
    from app.main import app

    app.dependency_overrides[store_dependency] = lambda: store
    app.dependency_overrides[gateway_dependency] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestWebhookEndpoint:

    def _post(self, client, body: bytes, signature: str | None = None):
        headers = {"Content-Type": "application/json"}
        if signature is not None:
            headers["X-Line-Signature"] = signature
        return client.post("/webhook", content=body, headers=headers)

    def test_rejects_missing_signature(self, client, gateway):
        response = self._post(client, _make_body(_make_text_event()))
        assert response.status_code == 401
        gateway.reply.assert_not_called()

    def test_rejects_bad_signature(self, client, store):
        body = _make_body(_make_text_event())
        response = self._post(client, body, _sign(body, "wrong-secret"))

        assert response.status_code == 401
        assert store.get_user_ids_by_apartment("A-14-1") == []

    def test_rejects_when_secret_not_configured(self, client):
        body = _make_body()
        with patch.dict(os.environ, {"LINE_CHANNEL_SECRET": ""}):
            response = self._post(client, body, _sign(body))
        assert response.status_code == 401

    def test_text_event_binds_and_replies(self, client, store, gateway):
        body = _make_body(_make_text_event("a14-1"))
        with patch.dict(os.environ, {"LINE_CHANNEL_SECRET": SECRET}):
            response = self._post(client, body, _sign(body))

        assert response.status_code == 200
        assert response.json() == {"received": True, "events": 1}
        assert store.get_user_ids_by_apartment("A-14-1") == ["U-resident-1"]
        gateway.reply.assert_awaited_once_with(
            "reply-token-1", binding_flow.bound_message("A-14-1")
        )

    def test_follow_event_replies_with_instructions(self, client, gateway):
        body = _make_body(_make_follow_event())
        with patch.dict(os.environ, {"LINE_CHANNEL_SECRET": SECRET}):
            response = self._post(client, body, _sign(body))

        assert response.status_code == 200
        gateway.reply.assert_awaited_once_with(
            "reply-token-follow", binding_flow.WELCOME_MESSAGE
        )

    def test_verification_request_with_no_events(self, client, gateway):
        body = _make_body()
        with patch.dict(os.environ, {"LINE_CHANNEL_SECRET": SECRET}):
            response = self._post(client, body, _sign(body))

        assert response.status_code == 200
        assert response.json() == {"received": True, "events": 0}
        gateway.reply.assert_not_called()

    def test_unparseable_body_is_acknowledged(self, client, gateway):
        body = b"not json"
        with patch.dict(os.environ, {"LINE_CHANNEL_SECRET": SECRET}):
            response = self._post(client, body, _sign(body))

        assert response.status_code == 200
        assert response.json()["events"] == 0

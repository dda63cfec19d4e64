"""
test_chat_api.py — Tests for the chat HTTP API, health endpoints and
error responses.

The app is built with a DeliveryClient whose httpx client talks to an
httpx.MockTransport, so no request leaves the process.

Run with:
    pytest tests/test_chat_api.py -v
"""

from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.app.chat.chat_service import STARTUP_LIST_NOTICE
from backend.app.chat.models import FALLBACK_UNAVAILABLE, FALLBACK_UNPROCESSABLE
from backend.app.chat.webhook_client import DeliveryClient, RetryPolicy
from backend.app.main import create_app


WEBHOOK_URL = "https://webhook.test/webhook/production"


async def _no_wait(seconds: float) -> None:
    return None


def _client_for(handler: Callable[[httpx.Request], httpx.Response]) -> TestClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    delivery = DeliveryClient(
        WEBHOOK_URL,
        policy=RetryPolicy(max_attempts=3, delay_seconds=1.0),
        http_client=http,
        sleep=_no_wait,
    )
    return TestClient(create_app(delivery_client=delivery))


@pytest.fixture
def seen() -> List[httpx.Request]:
    return []


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: POST /api/v1/chat/messages
# ═══════════════════════════════════════════════════════════════════════════

class TestSendMessageEndpoint:
    """Test chat turn delivery over HTTP."""

    def test_reply(self, seen):
        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"output": "O prazo é de 30 dias."})

        with _client_for(handler) as client:
            resp = client.post(
                "/api/v1/chat/messages",
                json={"message": "Qual o prazo do desafio?", "session_id": "sess-42"},
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["reply"] == "O prazo é de 30 dias."
        assert data["outcome"] == "reply"
        assert data["attempts"] == 1
        assert data["user_message"]["role"] == "user"
        assert data["assistant_message"]["content"] == "O prazo é de 30 dias."
        assert json.loads(seen[0].content) == {
            "message": "Qual o prazo do desafio?",
            "sessionId": "sess-42",
        }

    def test_unavailable_is_still_200(self, seen):
        def handler(request):
            seen.append(request)
            raise httpx.ConnectError("Connection refused", request=request)

        with _client_for(handler) as client:
            resp = client.post(
                "/api/v1/chat/messages",
                json={"message": "oi", "session_id": "sess-1"},
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["reply"] == FALLBACK_UNAVAILABLE
        assert data["outcome"] == "unavailable"
        assert data["attempts"] == 3
        assert len(data["attempt_log"]) == 3
        assert len(seen) == 3

    def test_unprocessable_is_still_200(self):
        with _client_for(lambda request: httpx.Response(200, text="not json")) as client:
            resp = client.post(
                "/api/v1/chat/messages",
                json={"message": "oi", "session_id": "sess-1"},
            )

        data = resp.json()
        assert resp.status_code == 200
        assert data["reply"] == FALLBACK_UNPROCESSABLE
        assert data["outcome"] == "unprocessable"
        assert data["attempts"] == 1

    def test_startup_cards_reply(self):
        cards = {"challengeTitle": "Energia", "startups": []}
        body = [{"output": f"<startup cards>{json.dumps(cards)}</startup cards>"}]

        with _client_for(lambda request: httpx.Response(200, json=body)) as client:
            resp = client.post(
                "/api/v1/chat/messages",
                json={"message": "liste", "session_id": "sess-1"},
            )

        data = resp.json()
        assert data["is_startup_list"] is True
        assert data["startup_cards"] == cards
        assert data["assistant_message"]["content"] == STARTUP_LIST_NOTICE

    def test_blank_message_rejected(self, seen):
        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"output": "x"})

        with _client_for(handler) as client:
            resp = client.post(
                "/api/v1/chat/messages",
                json={"message": "   ", "session_id": "sess-1"},
            )

        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert resp.json()["error"]["details"]["field"] == "message"
        assert seen == []

    def test_missing_fields_rejected(self):
        with _client_for(lambda request: httpx.Response(200, json={"output": "x"})) as client:
            resp = client.post("/api/v1/chat/messages", json={"message": "oi"})
        assert resp.status_code == 422

    def test_request_id_header(self):
        with _client_for(lambda request: httpx.Response(200, json={"output": "x"})) as client:
            resp = client.post(
                "/api/v1/chat/messages",
                json={"message": "oi", "session_id": "sess-1"},
                headers={"X-Request-ID": "req-123", "X-Session-ID": "sess-1"},
            )
        assert resp.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time" in resp.headers


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Sessions & Config
# ═══════════════════════════════════════════════════════════════════════════

class TestSessionAndConfigEndpoints:
    """Test session opening and delivery config endpoints."""

    def test_open_session(self):
        with _client_for(lambda request: httpx.Response(200)) as client:
            resp = client.post("/api/v1/chat/sessions")
        data = resp.json()
        assert resp.status_code == 200
        assert len(data["session_id"]) == 12
        assert data["welcome_message"]["role"] == "assistant"

    def test_config(self):
        with _client_for(lambda request: httpx.Response(200)) as client:
            data = client.get("/api/v1/chat/config").json()
        assert data == {
            "endpoint_host": "webhook.test",
            "max_attempts": 3,
            "retry_delay_seconds": 1.0,
            "timeout_seconds": 30.0,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Root & Health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealthEndpoints:
    """Test root and health probes."""

    def test_root(self):
        with _client_for(lambda request: httpx.Response(200)) as client:
            data = client.get("/").json()
        assert "webhook-delivery" in data["modules"]

    def test_liveness(self):
        with _client_for(lambda request: httpx.Response(200)) as client:
            assert client.get("/health/live").json() == {"status": "alive"}

    def test_health_healthy(self):
        with _client_for(lambda request: httpx.Response(200)) as client:
            data = client.get("/health").json()
        assert data["status"] == "healthy"
        names = {c["name"] for c in data["components"]}
        assert names == {"webhook", "delivery_client"}

    def test_readiness_unhealthy_on_bad_url(self):
        delivery = DeliveryClient("not a url", sleep=_no_wait)
        with TestClient(create_app(delivery_client=delivery)) as client:
            resp = client.get("/health/ready")
        assert resp.status_code == 503
        assert resp.json()["status"] == "unhealthy"

    def test_injected_client_closed_on_shutdown(self):
        class _CloseCounter(DeliveryClient):
            closed = 0

            async def close(self):
                self.closed += 1
                await super().close()

        delivery = _CloseCounter(WEBHOOK_URL, sleep=_no_wait)
        with TestClient(create_app(delivery_client=delivery)) as client:
            client.get("/health/live")
            assert delivery.closed == 0
        assert delivery.closed == 1

    def test_default_app_builds_client_from_settings(self):
        with TestClient(create_app()) as client:
            data = client.get("/api/v1/chat/config").json()
        assert data["max_attempts"] == 3
        assert data["retry_delay_seconds"] == 1.0

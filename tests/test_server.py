"""Tests for the FastAPI webhook application."""
from __future__ import annotations

import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest
import requests
from fastapi.testclient import TestClient

from imagine_bot.config import ImageSettings, Settings, WhatsAppSettings
from imagine_bot.errors import WhatsAppAPIError, WhatsAppAuthError
from imagine_bot.server import check_connection, create_app
from imagine_bot.telemetry import MetricType


class RecordingDispatcher:
    def __init__(self):
        self.handled = []

    async def handle(self, message):
        self.handled.append(message)
        return "sent"


def _settings(app_secret: str = "") -> Settings:
    return Settings(
        whatsapp=WhatsAppSettings(
            access_token="tok",
            phone_number_id="555",
            verify_token="verify-me",
            app_secret=app_secret,
        ),
        image=ImageSettings(mock_mode=True),
    )


def _delivery(text: str = ".imagine a cat") -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "biz",
            "changes": [{
                "field": "messages",
                "value": {
                    "contacts": [{"profile": {"name": "Aina"}, "wa_id": "60123"}],
                    "messages": [{
                        "from": "60123",
                        "id": "wamid.1",
                        "timestamp": "1700000000",
                        "type": "text",
                        "text": {"body": text},
                    }],
                },
            }],
        }],
    }


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def client(dispatcher):
    return TestClient(create_app(dispatcher, _settings()))


def test_keep_awake(client):
    response = client.get("/keep-awake")
    assert response.status_code == 200
    assert response.text == "Bot is Awake!"


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["whatsapp_configured"] is True
    assert body["image_mode"] == "mock"


def test_subscription_handshake(client):
    response = client.get(
        "/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"},
    )
    assert response.status_code == 200
    assert response.text == "1158201444"


def test_subscription_with_wrong_token(client):
    response = client.get(
        "/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
    )
    assert response.status_code == 403


def test_delivery_dispatches_messages(client, dispatcher):
    response = client.post("/webhook", json=_delivery())
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "messages": 1}
    [message] = dispatcher.handled
    assert message.text == ".imagine a cat"
    assert message.chat_id == "60123"


def test_status_only_delivery(client, dispatcher):
    payload = {"entry": [{"changes": [{"field": "messages", "value": {"statuses": [{"id": "x"}]}}]}]}
    response = client.post("/webhook", json=payload)
    assert response.json()["messages"] == 0
    assert dispatcher.handled == []


def test_invalid_json_is_rejected(client):
    response = client.post("/webhook", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


def test_signed_delivery(dispatcher):
    client = TestClient(create_app(dispatcher, _settings(app_secret="s3cret")))
    body = json.dumps(_delivery()).encode()
    signature = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

    ok = client.post("/webhook", content=body, headers={"X-Hub-Signature-256": signature})
    assert ok.status_code == 200
    assert len(dispatcher.handled) == 1

    forged = client.post("/webhook", content=body, headers={"X-Hub-Signature-256": "sha256=" + "0" * 64})
    assert forged.status_code == 403
    unsigned = client.post("/webhook", content=body)
    assert unsigned.status_code == 403
    assert len(dispatcher.handled) == 1


def test_stats_report(client, telemetry):
    telemetry.track_command(".anime", "60123", success=True, duration_ms=12.0, outcome="sent")
    body = client.get("/stats").json()
    assert body["commands"][".anime"]["usage_count"] == 1
    assert "uptime_seconds" in body
    assert body["errors_24h"] == {}


def test_check_connection_success(telemetry):
    whatsapp = MagicMock()
    whatsapp.verify_credentials.return_value = {"verified_name": "Khytron"}
    assert check_connection(whatsapp) is True
    events = [e.name for e in telemetry._metrics_buffer if e.metric_type == MetricType.SYSTEM_EVENT]
    assert events == ["whatsapp_connected"]


def test_check_connection_transient_failure():
    whatsapp = MagicMock()
    whatsapp.verify_credentials.side_effect = requests.ConnectionError("dns")
    assert check_connection(whatsapp) is False
    whatsapp.verify_credentials.side_effect = WhatsAppAPIError(500, "oops")
    assert check_connection(whatsapp) is False


def test_check_connection_rejected_token():
    whatsapp = MagicMock()
    whatsapp.verify_credentials.side_effect = WhatsAppAuthError(401, "expired")
    with pytest.raises(WhatsAppAuthError):
        check_connection(whatsapp)

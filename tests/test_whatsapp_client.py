"""Tests for the Graph API client."""
from __future__ import annotations

import json

import pytest

from imagine_bot.adapters.whatsapp.client import MAX_CAPTION_LENGTH, MAX_TEXT_LENGTH, WhatsAppClient
from imagine_bot.config import WhatsAppSettings
from imagine_bot.errors import MediaNotFoundError, WhatsAppAPIError, WhatsAppAuthError


class DummyResponse:
    def __init__(self, status_code: int = 200, payload=None, content: bytes = b""):
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.reason = "OK" if status_code < 400 else "Error"
        self.text = json.dumps(payload) if payload is not None else ""

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    """Records requests and replays queued responses."""

    def __init__(self, *responses: DummyResponse):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "headers": headers, "timeout": timeout, **kwargs})
        return self.responses.pop(0)

    def close(self):
        self.closed = True


SETTINGS = WhatsAppSettings(
    access_token="tok",
    phone_number_id="555",
    graph_base="https://graph.test/v22.0",
    timeout=7,
)


def _client(*responses):
    session = FakeSession(*responses)
    return WhatsAppClient(SETTINGS, session=session), session


@pytest.mark.asyncio
async def test_send_text_quotes_original_message():
    client, session = _client(DummyResponse(payload={"messages": [{"id": "out.1"}]}))
    result = await client.send_text("60123", "hello", reply_to="wamid.1")

    assert result["messages"][0]["id"] == "out.1"
    [call] = session.calls
    assert call["method"] == "POST"
    assert call["url"] == "https://graph.test/v22.0/555/messages"
    assert call["headers"]["Authorization"] == "Bearer tok"
    assert call["timeout"] == 7
    body = call["json"]
    assert body["to"] == "60123"
    assert body["type"] == "text"
    assert body["text"]["body"] == "hello"
    assert body["context"] == {"message_id": "wamid.1"}
    client.close()


@pytest.mark.asyncio
async def test_send_text_truncates_and_skips_context():
    client, session = _client(DummyResponse(payload={}))
    await client.send_text("60123", "x" * (MAX_TEXT_LENGTH + 50))
    body = session.calls[0]["json"]
    assert len(body["text"]["body"]) == MAX_TEXT_LENGTH
    assert "context" not in body


@pytest.mark.asyncio
async def test_send_image_uploads_then_sends():
    client, session = _client(
        DummyResponse(payload={"id": "media-1"}),
        DummyResponse(payload={"messages": [{"id": "out.2"}]}),
    )
    sent = await client.send_image("60123", b"PNGDATA", mime_type="image/png", caption="", reply_to="wamid.7")

    assert sent.message_id == "out.2"
    assert sent.media.media_id == "media-1"
    assert sent.media.mime_type == "image/png"

    upload, send = session.calls
    assert upload["url"] == "https://graph.test/v22.0/555/media"
    assert upload["data"] == {"messaging_product": "whatsapp", "type": "image/png"}
    filename, data, mime = upload["files"]["file"]
    assert filename.endswith(".png")
    assert data == b"PNGDATA"
    assert mime == "image/png"

    body = send["json"]
    assert body["type"] == "image"
    assert body["image"] == {"id": "media-1"}
    assert body["context"] == {"message_id": "wamid.7"}


@pytest.mark.asyncio
async def test_send_image_clamps_caption():
    client, session = _client(DummyResponse(payload={"id": "m"}), DummyResponse(payload={}))
    sent = await client.send_image("1", b"x", caption="c" * 2000)
    assert sent.message_id is None
    assert len(session.calls[1]["json"]["image"]["caption"]) == MAX_CAPTION_LENGTH


@pytest.mark.asyncio
async def test_upload_without_id_is_an_error():
    client, _ = _client(DummyResponse(payload={}))
    with pytest.raises(WhatsAppAPIError):
        await client.send_image("1", b"x")


@pytest.mark.asyncio
async def test_download_media_resolves_url_first():
    client, session = _client(
        DummyResponse(payload={"url": "https://cdn.test/blob", "mime_type": "image/jpeg"}),
        DummyResponse(content=b"JPEGBYTES"),
    )
    data, mime = await client.download_media("media-9")

    assert data == b"JPEGBYTES"
    assert mime == "image/jpeg"
    assert session.calls[0]["url"] == "https://graph.test/v22.0/media-9"
    assert session.calls[1]["url"] == "https://cdn.test/blob"
    assert session.calls[1]["headers"]["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_download_media_missing():
    client, _ = _client(DummyResponse(status_code=404, payload={"error": {"message": "gone"}}))
    with pytest.raises(MediaNotFoundError):
        await client.download_media("media-x")


@pytest.mark.asyncio
async def test_download_media_without_url():
    client, _ = _client(DummyResponse(payload={"id": "media-x"}))
    with pytest.raises(MediaNotFoundError):
        await client.download_media("media-x")


@pytest.mark.asyncio
async def test_error_detail_from_graph_payload():
    client, _ = _client(DummyResponse(status_code=400, payload={"error": {"message": "Invalid parameter"}}))
    with pytest.raises(WhatsAppAPIError) as excinfo:
        await client.send_text("1", "hi")
    assert excinfo.value.status == 400
    assert "Invalid parameter" in str(excinfo.value)


@pytest.mark.asyncio
async def test_mark_read_payload():
    client, session = _client(DummyResponse(payload={"success": True}))
    await client.mark_read("wamid.9")
    body = session.calls[0]["json"]
    assert body == {"messaging_product": "whatsapp", "status": "read", "message_id": "wamid.9"}


def test_verify_credentials_auth_failure():
    client, _ = _client(DummyResponse(status_code=401, payload={"error": {"message": "expired"}}))
    with pytest.raises(WhatsAppAuthError):
        client.verify_credentials()


def test_verify_credentials_success():
    client, session = _client(DummyResponse(payload={"verified_name": "Khytron", "display_phone_number": "+60"}))
    profile = client.verify_credentials()
    assert profile["verified_name"] == "Khytron"
    assert session.calls[0]["url"] == "https://graph.test/v22.0/555"
    assert session.calls[0]["params"] == {"fields": "display_phone_number,verified_name"}


def test_close_releases_session():
    client, session = _client()
    client.close()
    assert session.closed is True

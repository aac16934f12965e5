"""Graph API client for sending and fetching WhatsApp messages.

``requests`` is blocking, so each call is pushed onto a small thread pool and
awaited from the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Tuple

import requests

from ...config import WhatsAppSettings
from ...errors import MediaNotFoundError, WhatsAppAPIError, WhatsAppAuthError
from ...models import MediaRef, SentImage

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 4096
MAX_CAPTION_LENGTH = 1024


def _error_detail(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason or "unknown error"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(payload)[:200]


def _sent_message_id(payload: Any) -> Optional[str]:
    """Pull ``messages[0].id`` out of a send response."""
    messages = payload.get("messages") if isinstance(payload, dict) else None
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        message_id = messages[0].get("id")
        return str(message_id) if message_id else None
    return None


class WhatsAppClient:
    """Thin wrapper over the WhatsApp Cloud API endpoints the bot needs."""

    def __init__(
        self,
        settings: WhatsAppSettings,
        session: Optional[requests.Session] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.settings = settings
        self._session = session or requests.Session()
        self._executor = executor or ThreadPoolExecutor(max_workers=4)

    @property
    def messages_url(self) -> str:
        return f"{self.settings.graph_base}/{self.settings.phone_number_id}/messages"

    @property
    def media_url(self) -> str:
        return f"{self.settings.graph_base}/{self.settings.phone_number_id}/media"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {self.settings.access_token}"
        response = self._session.request(
            method, url, headers=headers, timeout=self.settings.timeout, **kwargs
        )
        if response.status_code in (401, 403):
            raise WhatsAppAuthError(response.status_code, _error_detail(response))
        if response.status_code == 404:
            raise MediaNotFoundError(f"{url} not found")
        if not response.ok:
            raise WhatsAppAPIError(response.status_code, _error_detail(response))
        return response

    async def _run(self, func, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args))

    # -- blocking operations -------------------------------------------------

    def _post_message(self, to: str, body: Dict[str, Any], reply_to: Optional[str]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            **body,
        }
        if reply_to:
            payload["context"] = {"message_id": reply_to}
        response = self._request("POST", self.messages_url, json=payload)
        return response.json()

    def _upload_media(self, data: bytes, mime_type: str) -> str:
        extension = mimetypes.guess_extension(mime_type) or ".bin"
        response = self._request(
            "POST",
            self.media_url,
            data={"messaging_product": "whatsapp", "type": mime_type},
            files={"file": (f"image{extension}", data, mime_type)},
        )
        media_id = response.json().get("id")
        if not media_id:
            raise WhatsAppAPIError(response.status_code, "media upload returned no id")
        return str(media_id)

    def _download_media(self, media_id: str) -> Tuple[bytes, str]:
        meta = self._request("GET", f"{self.settings.graph_base}/{media_id}").json()
        url = meta.get("url")
        if not url:
            raise MediaNotFoundError(f"No download URL for media {media_id}")
        mime_type = meta.get("mime_type") or "image/jpeg"
        blob = self._request("GET", url).content
        logger.debug("Downloaded media %s (%s, %d bytes)", media_id, mime_type, len(blob))
        return blob, mime_type

    def _send_image(
        self, to: str, data: bytes, mime_type: str, caption: str, reply_to: Optional[str]
    ) -> SentImage:
        media_id = self._upload_media(data, mime_type)
        image: Dict[str, Any] = {"id": media_id}
        if caption:
            image["caption"] = caption[:MAX_CAPTION_LENGTH]
        response = self._post_message(to, {"type": "image", "image": image}, reply_to)
        return SentImage(
            message_id=_sent_message_id(response),
            media=MediaRef(media_id=media_id, mime_type=mime_type),
        )

    def verify_credentials(self) -> Dict[str, Any]:
        """Confirm the token and phone number id; raises on failure."""
        url = f"{self.settings.graph_base}/{self.settings.phone_number_id}"
        response = self._request(
            "GET", url, params={"fields": "display_phone_number,verified_name"}
        )
        return response.json()

    # -- async surface used by the dispatcher --------------------------------

    async def send_text(self, to: str, text: str, reply_to: Optional[str] = None) -> Dict[str, Any]:
        body = {"type": "text", "text": {"preview_url": False, "body": text[:MAX_TEXT_LENGTH]}}
        return await self._run(self._post_message, to, body, reply_to)

    async def send_image(
        self,
        to: str,
        data: bytes,
        mime_type: str = "image/png",
        caption: str = "",
        reply_to: Optional[str] = None,
    ) -> SentImage:
        """Upload ``data`` and post it; the result can be fed to ``MediaIndex``."""
        return await self._run(self._send_image, to, data, mime_type, caption, reply_to)

    async def download_media(self, media_id: str) -> Tuple[bytes, str]:
        return await self._run(self._download_media, media_id)

    async def mark_read(self, message_id: str) -> None:
        payload = {"messaging_product": "whatsapp", "status": "read", "message_id": message_id}
        await self._run(lambda: self._request("POST", self.messages_url, json=payload))

    def close(self) -> None:
        """Clean up resources."""
        self._executor.shutdown(wait=True)
        self._session.close()


__all__ = ["WhatsAppClient", "MAX_TEXT_LENGTH", "MAX_CAPTION_LENGTH"]

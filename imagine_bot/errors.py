"""Exception hierarchy shared across the bot."""
from __future__ import annotations

from typing import Optional


class ImagineBotError(RuntimeError):
    """Base class for errors raised by the imagine bot."""


class WhatsAppAPIError(ImagineBotError):
    """Raised when the Graph API answers with a non-success status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"WhatsApp API error {status}: {message}")
        self.status = status
        self.detail = message


class WhatsAppAuthError(WhatsAppAPIError):
    """Raised when the access token is rejected (401/403)."""


class MediaNotFoundError(ImagineBotError):
    """Raised when a media id cannot be resolved to a download URL."""


class ImageGenerationError(ImagineBotError):
    """Raised when the generative model cannot produce an image."""


class ImageNotEnabledError(ImageGenerationError):
    """Raised when no API key is configured and mock mode is off."""


class NoImageReturnedError(ImageGenerationError):
    """Raised when the model answered without an inline image part."""

    def __init__(self, text: Optional[str] = None, block_reason: Optional[str] = None) -> None:
        detail = block_reason or (text[:120] if text else "no image part in response")
        super().__init__(detail)
        self.text = text
        self.block_reason = block_reason


__all__ = [
    "ImagineBotError",
    "WhatsAppAPIError",
    "WhatsAppAuthError",
    "MediaNotFoundError",
    "ImageGenerationError",
    "ImageNotEnabledError",
    "NoImageReturnedError",
]

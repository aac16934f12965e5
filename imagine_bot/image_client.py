"""Generative image integration backed by the Gemini API."""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, List, Optional

from google import genai
from google.genai import types

from .config import ImageSettings
from .errors import ImageGenerationError, ImageNotEnabledError, NoImageReturnedError
from .models import GeneratedImage
from .telemetry import get_telemetry

logger = logging.getLogger(__name__)


# Smallest valid PNG (1x1 transparent pixel), returned in mock mode
MOCK_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

# Imagen takes a single filter level instead of per-category settings;
# BLOCK_NONE is rejected by the API, so this is the loosest accepted level.
IMAGEN_SAFETY_FILTER_LEVEL = "BLOCK_ONLY_HIGH"


def build_safety_settings(threshold: str = "BLOCK_NONE") -> List[types.SafetySetting]:
    return [types.SafetySetting(category=category, threshold=threshold) for category in SAFETY_CATEGORIES]


def extract_image(response: Any, model: str) -> GeneratedImage:
    """Pull the first inline image out of a ``generate_content`` response.

    Raises ``NoImageReturnedError`` when the response carries only text or was
    blocked before any candidate was produced.
    """

    texts: List[str] = []
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and getattr(inline, "data", None):
                return GeneratedImage(
                    data=inline.data,
                    mime_type=getattr(inline, "mime_type", None) or "image/png",
                    model=model,
                    text="\n".join(texts) or None,
                )
            if getattr(part, "text", None):
                texts.append(part.text)

    block_reason = None
    feedback = getattr(response, "prompt_feedback", None)
    if feedback is not None and getattr(feedback, "block_reason", None):
        block_reason = str(feedback.block_reason)
    raise NoImageReturnedError(text="\n".join(texts) or None, block_reason=block_reason)


def extract_generated_image(response: Any, model: str) -> GeneratedImage:
    """Pull the first image out of a ``generate_images`` (Imagen) response."""

    for generated in getattr(response, "generated_images", None) or []:
        image = getattr(generated, "image", None)
        if image is not None and getattr(image, "image_bytes", None):
            return GeneratedImage(
                data=image.image_bytes,
                mime_type=getattr(image, "mime_type", None) or "image/png",
                model=model,
            )
    reasons = [
        str(getattr(generated, "rai_filtered_reason", ""))
        for generated in getattr(response, "generated_images", None) or []
        if getattr(generated, "rai_filtered_reason", None)
    ]
    raise NoImageReturnedError(block_reason="; ".join(reasons) or None)


class ImageClient:
    """Gemini client for text-to-image and image editing."""

    def __init__(self, config: Optional[ImageSettings] = None, client: Any = None):
        self.config = config or ImageSettings()
        self._retry_schedule = self.config.retry_schedule or [2.0, 5.0, 15.0]
        self.safety_settings = build_safety_settings()
        self.enabled = True

        if self.config.mock_mode:
            self.client = None
            logger.info("Image client initialised in mock mode")
            return

        if client is not None:
            self.client = client
        elif self.config.api_key:
            self.client = genai.Client(api_key=self.config.api_key)
            logger.info(
                "Image client initialised (text model %s, edit model %s)",
                self.config.text_model,
                self.config.edit_model,
            )
        else:
            logger.warning("GEMINI_API_KEY not set. Image generation is disabled.")
            self.client = None
            self.enabled = False

    async def generate(self, prompt: str) -> GeneratedImage:
        """Text-to-image with the configured text model."""
        if self.config.mock_mode:
            return GeneratedImage(data=MOCK_PNG, mime_type="image/png", model="mock")
        self._ensure_enabled()

        model = self.config.text_model
        if model.startswith("imagen"):
            async def call():
                response = await self.client.aio.models.generate_images(
                    model=model,
                    prompt=prompt,
                    config=types.GenerateImagesConfig(
                        number_of_images=1,
                        safety_filter_level=IMAGEN_SAFETY_FILTER_LEVEL,
                    ),
                )
                return extract_generated_image(response, model)
        else:
            async def call():
                response = await self.client.aio.models.generate_content(
                    model=model,
                    contents=prompt,
                    config=self._content_config(),
                )
                return extract_image(response, model)

        return await self._call_with_retry(call, model=model, operation="generate")

    async def edit(self, prompt: str, image_bytes: bytes, mime_type: str = "image/jpeg") -> GeneratedImage:
        """Apply an instruction to an existing photo with the edit model."""
        if self.config.mock_mode:
            return GeneratedImage(data=image_bytes, mime_type=mime_type, model="mock")
        self._ensure_enabled()

        model = self.config.edit_model
        image_part = types.Part.from_bytes(data=image_bytes, mime_type=mime_type)

        async def call():
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=[prompt, image_part],
                config=self._content_config(),
            )
            return extract_image(response, model)

        return await self._call_with_retry(call, model=model, operation="edit")

    def _content_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_modalities=["TEXT", "IMAGE"],
            safety_settings=self.safety_settings,
        )

    def _ensure_enabled(self) -> None:
        if not self.enabled or self.client is None:
            raise ImageNotEnabledError("Image generation is not configured (missing GEMINI_API_KEY)")

    async def _call_with_retry(self, call, *, model: str, operation: str) -> GeneratedImage:
        """Run ``call`` with the retry schedule; blocked answers are final."""
        telemetry = get_telemetry()
        attempts = max(1, self.config.retry_attempts)
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            start = time.time()
            try:
                image = await call()
            except NoImageReturnedError as exc:
                telemetry.track_generation(
                    operation, model, success=False, duration_ms=(time.time() - start) * 1000,
                    error=type(exc).__name__,
                )
                raise
            except Exception as exc:
                last_error = exc
                telemetry.track_generation(
                    operation, model, success=False, duration_ms=(time.time() - start) * 1000,
                    error=type(exc).__name__,
                )
                logger.warning("Image API call attempt %d failed: %s", attempt + 1, exc)
                if attempt < attempts - 1:
                    delay = self._retry_schedule[min(attempt, len(self._retry_schedule) - 1)]
                    await asyncio.sleep(delay)
                continue
            telemetry.track_generation(
                operation, model, success=True, duration_ms=(time.time() - start) * 1000,
                size_bytes=image.size_bytes,
            )
            return image

        logger.error("All retry attempts exhausted for %s call", operation)
        raise ImageGenerationError(str(last_error)) from last_error


__all__ = [
    "ImageClient",
    "build_safety_settings",
    "extract_image",
    "extract_generated_image",
    "MOCK_PNG",
]

"""Reply text builders.

Pure construction helpers for chat replies, kept apart from the dispatcher so
they are easy to unit test.
"""

from __future__ import annotations

from typing import Iterable

from .client import MAX_TEXT_LENGTH

PROMPT_MISSING = "⚠️ Please provide a prompt."
EDIT_INSTRUCTION_MISSING = "⚠️ Please provide an edit instruction."
IMAGE_MISSING = "Reply to an image or upload one.."
TEXT_INSTEAD_OF_IMAGE = (
    "⚠️ The model returned text instead of an image. "
    "Check if your API Key has access to Imagen."
)
SAFETY_BLOCKED = "⚠️ Gemini Safety Filter blocked this. (Try a different photo)"


def generating_notice(bot_name: str) -> str:
    return f"Generating image by {bot_name}.. "


def error_reply(exc: BaseException) -> str:
    detail = str(exc) or type(exc).__name__
    return clamp_text(f"❌ Error: {detail}")


def clamp_text(text: str) -> str:
    """Ensure WhatsApp-compatible message length."""

    if len(text) <= MAX_TEXT_LENGTH:
        return text
    return text[: MAX_TEXT_LENGTH - 1].rstrip() + "…"


def format_message(lines: Iterable[str]) -> str:
    """Join message lines and clamp to WhatsApp limits."""

    message = "\n".join(line for line in lines if line is not None)
    return clamp_text(message)


__all__ = [
    "PROMPT_MISSING",
    "EDIT_INSTRUCTION_MISSING",
    "IMAGE_MISSING",
    "TEXT_INSTEAD_OF_IMAGE",
    "SAFETY_BLOCKED",
    "generating_notice",
    "error_reply",
    "clamp_text",
    "format_message",
]

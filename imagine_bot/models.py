"""Core data models for the imagine bot."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class CommandKind(str, Enum):
    TEXT_TO_IMAGE = "text_to_image"
    IMAGE_EDIT = "image_edit"
    MENU = "menu"


@dataclass(frozen=True)
class MediaRef:
    """Pointer to a media object held by the WhatsApp Cloud API."""

    media_id: str
    mime_type: str = "image/jpeg"
    sha256: Optional[str] = None
    caption: Optional[str] = None


@dataclass
class InboundMessage:
    """A single user message extracted from a webhook delivery."""

    message_id: str
    chat_id: str
    message_type: str
    text: str = ""
    sender_name: Optional[str] = None
    image: Optional[MediaRef] = None
    quoted_message_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_image(self) -> bool:
        return self.image is not None


@dataclass(frozen=True)
class Command:
    """A chat command and the instruction template it expands to."""

    name: str
    kind: CommandKind
    template: str = ""
    takes_argument: bool = False
    description: str = ""


@dataclass(frozen=True)
class CommandMatch:
    command: Command
    argument: str = ""

    @property
    def name(self) -> str:
        return self.command.name


@dataclass(frozen=True)
class SentImage:
    """An image the bot posted: the outgoing message id and its uploaded media."""

    message_id: Optional[str]
    media: MediaRef


@dataclass
class GeneratedImage:
    """Image bytes returned by the generative model."""

    data: bytes
    mime_type: str = "image/png"
    model: str = ""
    text: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


__all__ = [
    "CommandKind",
    "MediaRef",
    "InboundMessage",
    "Command",
    "CommandMatch",
    "GeneratedImage",
    "SentImage",
]

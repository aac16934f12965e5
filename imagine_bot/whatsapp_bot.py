"""Command dispatcher: turns inbound WhatsApp messages into image replies."""
from __future__ import annotations

import logging
from typing import Optional

from .adapters.whatsapp import WhatsAppClient
from .adapters.whatsapp.builders import (
    EDIT_INSTRUCTION_MISSING,
    IMAGE_MISSING,
    PROMPT_MISSING,
    SAFETY_BLOCKED,
    TEXT_INSTEAD_OF_IMAGE,
    error_reply,
    format_message,
    generating_notice,
)
from .commands import CommandRegistry
from .config import Settings, get_catalog
from .errors import NoImageReturnedError
from .image_client import ImageClient
from .models import CommandKind, CommandMatch, GeneratedImage, InboundMessage
from .recent import MediaIndex, SeenMessages
from .telemetry import get_telemetry, track_duration
from .telemetry_decorator import track_command

logger = logging.getLogger(__name__)


class MessageDispatcher:
    """Routes each inbound message to the matching command handler.

    ``handle`` never raises: failures are logged and, where possible, turned
    into a chat reply quoting the triggering message.
    """

    def __init__(
        self,
        whatsapp: WhatsAppClient,
        images: ImageClient,
        registry: CommandRegistry,
        *,
        bot_name: str = "Khytron",
        media_index: Optional[MediaIndex] = None,
        seen: Optional[SeenMessages] = None,
        mark_read: bool = True,
    ) -> None:
        self.whatsapp = whatsapp
        self.images = images
        self.registry = registry
        self.bot_name = bot_name
        self.media_index = media_index or MediaIndex()
        self.seen = seen or SeenMessages()
        self.mark_read = mark_read

    async def handle(self, message: InboundMessage) -> Optional[str]:
        """Process one message; returns the outcome label or None if ignored."""
        if self.seen.check_and_add(message.message_id):
            logger.debug("Dropping redelivered message %s", message.message_id)
            return None

        self.media_index.remember(message)

        match = self.registry.match(message.text)
        if match is None:
            return None

        logger.info("Command %s from %s", match.name, message.chat_id)
        if self.mark_read:
            try:
                await self.whatsapp.mark_read(message.message_id)
            except Exception as exc:
                logger.warning("Failed to mark %s as read: %s", message.message_id, exc)

        handlers = {
            CommandKind.MENU: self._menu,
            CommandKind.TEXT_TO_IMAGE: self._imagine,
            CommandKind.IMAGE_EDIT: self._edit,
        }
        try:
            return await handlers[match.command.kind](message, match)
        except Exception:
            logger.exception("Unhandled failure while running %s", match.name)
            return "exception"

    async def _reply(self, message: InboundMessage, text: str) -> None:
        await self.whatsapp.send_text(message.chat_id, text, reply_to=message.message_id)

    async def _send_result(self, message: InboundMessage, image: GeneratedImage) -> None:
        sent = await self.whatsapp.send_image(
            message.chat_id,
            image.data,
            mime_type=image.mime_type,
            caption="",
            reply_to=message.message_id,
        )
        # Replies to the bot's own output can be edited again
        self.media_index.remember_sent(sent)

    def _track_failure(self, message: InboundMessage, match: CommandMatch, exc: BaseException) -> None:
        get_telemetry().track_error(
            type(exc).__name__,
            command=match.name,
            chat_id=message.chat_id,
            error_details=str(exc),
        )

    async def _reply_error(self, message: InboundMessage, exc: BaseException) -> None:
        try:
            await self._reply(message, error_reply(exc))
        except Exception:
            logger.exception("Failed to deliver error reply to %s", message.chat_id)

    @track_command
    async def _menu(self, message: InboundMessage, match: CommandMatch) -> str:
        await self._reply(message, format_message(self.registry.menu_lines(self.bot_name)))
        return "menu"

    @track_command
    async def _imagine(self, message: InboundMessage, match: CommandMatch) -> str:
        prompt = self.registry.build_prompt(match)
        if not prompt:
            await self._reply(message, PROMPT_MISSING)
            return "missing_prompt"

        await self._reply(message, generating_notice(self.bot_name))
        try:
            with track_duration("imagine", {"model": self.images.config.text_model}):
                image = await self.images.generate(prompt)
            await self._send_result(message, image)
            return "sent"
        except NoImageReturnedError as exc:
            logger.warning("Imagine returned no image: %s", exc)
            await self._reply(message, TEXT_INSTEAD_OF_IMAGE)
            return "no_image"
        except Exception as exc:
            logger.exception("Imagine Error: %s", exc)
            self._track_failure(message, match, exc)
            await self._reply_error(message, exc)
            return "error"

    @track_command
    async def _edit(self, message: InboundMessage, match: CommandMatch) -> str:
        try:
            source = self.media_index.resolve(message)
            if source is None:
                await self._reply(message, IMAGE_MISSING)
                return "no_source_image"
            if match.command.takes_argument and not match.argument:
                await self._reply(message, EDIT_INSTRUCTION_MISSING)
                return "missing_prompt"

            await self._reply(message, generating_notice(self.bot_name))
            data, mime_type = await self.whatsapp.download_media(source.media_id)

            prompt = self.registry.build_prompt(match)
            logger.info("Edit Prompt: %s", prompt)

            try:
                with track_duration("edit", {"model": self.images.config.edit_model}):
                    image = await self.images.edit(prompt, data, mime_type=mime_type)
            except NoImageReturnedError as exc:
                logger.warning("Gemini Blocked It: %s", exc)
                await self._reply(message, SAFETY_BLOCKED)
                return "blocked"

            await self._send_result(message, image)
            return "sent"
        except Exception as exc:
            logger.exception("API Error: %s", exc)
            self._track_failure(message, match, exc)
            await self._reply_error(message, exc)
            return "error"


def build_dispatcher(
    settings: Settings,
    whatsapp: Optional[WhatsAppClient] = None,
    images: Optional[ImageClient] = None,
) -> MessageDispatcher:
    """Wire the dispatcher from settings, creating clients when not given."""

    registry = CommandRegistry.from_catalog(get_catalog(settings))
    logger.info("Loaded %d commands", len(registry))
    return MessageDispatcher(
        whatsapp or WhatsAppClient(settings.whatsapp),
        images or ImageClient(settings.image),
        registry,
        bot_name=settings.bot_name,
    )


__all__ = ["MessageDispatcher", "build_dispatcher"]

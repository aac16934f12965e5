"""Bounded in-memory indices of recently seen messages.

Cloud API replies only carry the id of the quoted message, so image
commands sent as a reply are resolved through ``MediaIndex``. Webhooks are
delivered at least once; ``SeenMessages`` drops redeliveries.
"""
from __future__ import annotations

from collections import OrderedDict
from typing import Generic, Optional, TypeVar

from .models import InboundMessage, MediaRef, SentImage

V = TypeVar("V")


class BoundedLRU(Generic[V]):
    """Insertion-refreshing mapping that evicts the oldest key past capacity."""

    def __init__(self, capacity: int = 512) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: "OrderedDict[str, V]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def get(self, key: str) -> Optional[V]:
        if key not in self._items:
            return None
        self._items.move_to_end(key)
        return self._items[key]

    def put(self, key: str, value: V) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self.capacity:
            self._items.popitem(last=False)


class MediaIndex:
    """Remembers the image attached to recent messages, keyed by message id."""

    def __init__(self, capacity: int = 512) -> None:
        self._entries: BoundedLRU[MediaRef] = BoundedLRU(capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def remember(self, message: InboundMessage) -> None:
        if message.image is not None:
            self._entries.put(message.message_id, message.image)

    def remember_sent(self, sent: SentImage) -> None:
        """Index an image the bot posted so replies to it can be edited."""
        if sent.message_id:
            self._entries.put(sent.message_id, sent.media)

    def lookup(self, message_id: Optional[str]) -> Optional[MediaRef]:
        if not message_id:
            return None
        return self._entries.get(message_id)

    def resolve(self, message: InboundMessage) -> Optional[MediaRef]:
        """Prefer the message's own image, then the image it quotes."""
        if message.image is not None:
            return message.image
        return self.lookup(message.quoted_message_id)


class SeenMessages:
    def __init__(self, capacity: int = 2048) -> None:
        self._ids: BoundedLRU[bool] = BoundedLRU(capacity)

    def check_and_add(self, message_id: str) -> bool:
        """Return True if ``message_id`` was already processed."""
        if message_id in self._ids:
            return True
        self._ids.put(message_id, True)
        return False


__all__ = ["BoundedLRU", "MediaIndex", "SeenMessages"]

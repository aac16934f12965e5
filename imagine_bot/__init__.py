"""WhatsApp image remix bot.

Listens for dot-prefixed chat commands and relays generated images back to
the chat.
"""

__version__ = "0.3.0"

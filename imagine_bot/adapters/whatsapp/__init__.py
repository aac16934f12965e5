"""WhatsApp Cloud API adapter."""

from __future__ import annotations

from .client import WhatsAppClient
from .webhook import parse_webhook, verify_signature, verify_subscription

__all__ = ["WhatsAppClient", "parse_webhook", "verify_signature", "verify_subscription"]

"""Integration adapters.

Adapters connect the dispatcher to external systems (WhatsApp, HTTP).
"""

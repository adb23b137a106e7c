"""Napoleon AI: executive message triage core.

Normalizes inbound messages from email and chat platforms, scores their
executive priority, classifies sentiment and topics, extracts action
items, and persists one reusable analysis per message.
"""

__version__ = "0.4.0"

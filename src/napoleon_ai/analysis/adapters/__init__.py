"""Per-platform adapters that coalesce raw provider payloads."""

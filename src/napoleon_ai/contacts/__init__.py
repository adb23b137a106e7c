"""VIP contact registry and its PostgreSQL persistence.

This package provides:
- ContactRegistry: in-memory, keyed lookup used by the priority scorer
- ContactStorage: asyncpg persistence for the vip_contacts table
"""

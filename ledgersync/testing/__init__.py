"""Test doubles for ledgersync.

``InMemoryStore`` implements the storage contract in process. Both test
suites use it, and it runs the service locally without Supabase.
"""

from .memory_store import InMemoryStore

__all__ = ["InMemoryStore"]

"""Ephemeral keyed storage with per-key expiry."""

from foundry.store.ephemeral import EphemeralStore, MemoryStore, get_store, set_store

__all__ = ["EphemeralStore", "MemoryStore", "get_store", "set_store"]

"""Persistent stores for customer conversation data."""

from shopibot.storage.base import DataStore, IntegrityError, StoreTransaction
from shopibot.storage.memory import InMemoryStore

__all__ = ["DataStore", "InMemoryStore", "IntegrityError", "StoreTransaction"]

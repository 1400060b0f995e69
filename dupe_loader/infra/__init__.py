"""Infra layer utilities (persistent storage, clock)."""

from .clock import Clock, SystemClock
from .storage import MemoryStore, PersistentStore, SQLiteStore

__all__ = ["Clock", "MemoryStore", "PersistentStore", "SQLiteStore", "SystemClock"]

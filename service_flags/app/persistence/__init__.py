"""
Persistence package for flags.

``FlagStore`` defines the contract (absence is ``None``; every other
failure is a ``StoreError``). Redis is the reference backend; PostgreSQL
and an in-memory store are interchangeable alternatives.
"""

from .base import FlagStore
from .memory import InMemoryFlagStore
from .postgres import PostgresFlagStore
from .redis_store import RedisFlagStore

__all__ = [
    "FlagStore",
    "InMemoryFlagStore",
    "PostgresFlagStore",
    "RedisFlagStore",
]

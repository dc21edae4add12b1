"""
Cache package for flags.

``LocalFlagCache`` is the per-process map of flag name to entry with
lazy TTL expiry. ``CachedFlagStore`` puts it in front of a
``FlagStore`` and keeps it coherent across processes through an
invalidation channel, falling back on the TTL when broadcasts are lost.
"""

from .cached_store import CachedFlagStore
from .local_cache import ABSENT, CacheEntry, LocalFlagCache

__all__ = [
    "ABSENT",
    "CacheEntry",
    "CachedFlagStore",
    "LocalFlagCache",
]

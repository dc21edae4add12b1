"""
Process-local flag cache with lazy TTL expiry.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from ..gates.models import Flag


class _Absent:
    """Marker for a flag the store confirmed does not exist."""

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


@dataclass
class CacheEntry:
    """Cached copy of one flag."""
    flag_name: str
    flag: Union[Flag, _Absent]
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_fresh(self, ttl: float, now: float) -> bool:
        return self.age(now) < ttl

    def as_flag(self) -> Flag:
        if self.flag is ABSENT:
            return Flag.empty(self.flag_name)
        return self.flag


class LocalFlagCache:
    """Map from flag name to ``CacheEntry``.

    Entries older than ``ttl`` are stale: they are ignored by
    ``get_fresh`` but kept so they can be served when a store read
    times out. The map holds one entry per flag name and nothing else.
    """

    def __init__(self, ttl: float = 900.0, clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, flag_name: str) -> bool:
        return flag_name in self._entries

    def get(self, flag_name: str) -> Optional[CacheEntry]:
        """Entry regardless of age."""
        return self._entries.get(flag_name)

    def get_fresh(self, flag_name: str) -> Optional[CacheEntry]:
        """Entry only if younger than the TTL."""
        entry = self._entries.get(flag_name)
        if entry is None or not entry.is_fresh(self.ttl, self.clock()):
            return None
        return entry

    def put(self, flag_name: str, flag: Optional[Flag]):
        """Store a flag (None or empty means confirmed absent)."""
        value = ABSENT if flag is None or flag.is_empty else flag
        self._entries[flag_name] = CacheEntry(flag_name, value, self.clock())

    def invalidate(self, flag_name: str) -> bool:
        """Evict one flag. Returns True if an entry was removed."""
        return self._entries.pop(flag_name, None) is not None

    def flush(self):
        """Evict every flag."""
        self._entries.clear()

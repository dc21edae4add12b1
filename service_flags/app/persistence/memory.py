"""
In-memory flag store for tests and local development.
"""

import asyncio
from typing import Dict, List, Optional

from ..gates.models import Flag, Gate
from .base import FlagStore


class InMemoryFlagStore(FlagStore):
    """Process-local flag store.

    Several cache layers can share one instance to simulate processes
    sharing a backend. Writes are serialised per flag name.
    """

    backend_name = "memory"

    def __init__(self, timeout: Optional[float] = None):
        super().__init__(timeout)
        self._flags: Dict[str, Flag] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, flag_name: str) -> asyncio.Lock:
        return self._locks.setdefault(flag_name, asyncio.Lock())

    async def _get(self, flag_name: str) -> Optional[Flag]:
        return self._flags.get(flag_name)

    async def _upsert_gate(self, flag_name: str, gate: Gate) -> Flag:
        async with self._lock_for(flag_name):
            flag = self._flags.get(flag_name) or Flag.empty(flag_name)
            flag = flag.merge(gate)
            self._flags[flag_name] = flag
            return flag

    async def _delete_gate(self, flag_name: str, gate: Gate) -> Flag:
        async with self._lock_for(flag_name):
            flag = self._flags.get(flag_name)
            if flag is None:
                return Flag.empty(flag_name)
            flag = flag.without(gate.kind, gate.subject)
            if flag.is_empty:
                del self._flags[flag_name]
            else:
                self._flags[flag_name] = flag
            return flag

    async def _delete_flag(self, flag_name: str) -> Flag:
        async with self._lock_for(flag_name):
            self._flags.pop(flag_name, None)
            return Flag.empty(flag_name)

    async def _all_flag_names(self) -> List[str]:
        return sorted(self._flags)

"""
Persistent store contract for flags.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, List, Optional

from shared.errors import StoreError, StoreTimeoutError, StoreUnavailableError
from shared.logging import get_logger
from ..gates.models import Flag, Gate


class FlagStore(ABC):
    """Durable source of truth for flags.

    Subclasses implement the ``_``-prefixed hooks; the public methods
    apply the timeout and normalise failures:

    - absence is ``None`` from ``get`` and never an exception;
    - every other failure surfaces as a ``StoreError`` subclass, with a
      timeout reported as ``StoreTimeoutError``.

    ``upsert_gate`` must be atomic per flag name: concurrent writes of
    different gate keys must all survive and writes of the same key
    resolve last-write-wins.
    """

    backend_name = "abstract"

    def __init__(self, timeout: Optional[float] = 5.0):
        self.timeout = timeout
        self.logger = get_logger(f"flags.persistence.{self.backend_name}")

    async def start(self):
        """Open connections. Optional for backends without any."""

    async def stop(self):
        """Release connections."""

    async def health_check(self) -> bool:
        """Check backend health."""
        return True

    async def get(self, flag_name: str, timeout: Optional[float] = None) -> Optional[Flag]:
        """Load a flag; None when the store has no record of it."""
        return await self._run("get", self._get(flag_name), timeout, flag_name)

    async def upsert_gate(self, flag_name: str, gate: Gate, timeout: Optional[float] = None) -> Flag:
        """Merge ``gate`` into the stored flag and return the resulting flag."""
        return await self._run("upsert_gate", self._upsert_gate(flag_name, gate), timeout, flag_name)

    async def delete_gate(self, flag_name: str, gate: Gate, timeout: Optional[float] = None) -> Flag:
        """Remove the gate sharing ``gate``'s key and return the resulting flag."""
        return await self._run("delete_gate", self._delete_gate(flag_name, gate), timeout, flag_name)

    async def delete_flag(self, flag_name: str, timeout: Optional[float] = None) -> Flag:
        """Remove every gate of the flag and return the (empty) flag."""
        return await self._run("delete_flag", self._delete_flag(flag_name), timeout, flag_name)

    async def all_flag_names(self, timeout: Optional[float] = None) -> List[str]:
        """Names of every flag the store knows about, sorted."""
        return await self._run("all_flag_names", self._all_flag_names(), timeout)

    async def all_flags(self, timeout: Optional[float] = None) -> List[Flag]:
        """Every stored flag, sorted by name."""
        return await self._run("all_flags", self._all_flags(), timeout)

    async def _all_flags(self) -> List[Flag]:
        flags = []
        for name in await self._all_flag_names():
            flag = await self._get(name)
            flags.append(flag if flag is not None else Flag.empty(name))
        return flags

    @abstractmethod
    async def _get(self, flag_name: str) -> Optional[Flag]:
        ...

    @abstractmethod
    async def _upsert_gate(self, flag_name: str, gate: Gate) -> Flag:
        ...

    @abstractmethod
    async def _delete_gate(self, flag_name: str, gate: Gate) -> Flag:
        ...

    @abstractmethod
    async def _delete_flag(self, flag_name: str) -> Flag:
        ...

    @abstractmethod
    async def _all_flag_names(self) -> List[str]:
        ...

    async def _run(
        self,
        operation: str,
        call: Awaitable[Any],
        timeout: Optional[float],
        flag_name: Optional[str] = None
    ) -> Any:
        """Await ``call`` under the timeout and map backend failures to StoreError."""
        limit = self.timeout if timeout is None else timeout
        try:
            if limit is None:
                return await call
            return await asyncio.wait_for(call, limit)
        except StoreError as e:
            self.logger.error("Store operation failed", operation=operation, flag_name=flag_name, error=str(e))
            raise
        except asyncio.TimeoutError:
            self.logger.error("Store operation timed out", operation=operation, flag_name=flag_name, timeout=limit)
            raise StoreTimeoutError(
                f"{self.backend_name} {operation} timed out after {limit}s",
                {"operation": operation, "flag_name": flag_name, "timeout": limit}
            ) from None
        except Exception as e:
            self.logger.error("Store operation failed", operation=operation, flag_name=flag_name, error=str(e))
            raise StoreUnavailableError(
                f"{self.backend_name} {operation} failed: {e}",
                {"operation": operation, "flag_name": flag_name, "error_type": type(e).__name__}
            ) from e

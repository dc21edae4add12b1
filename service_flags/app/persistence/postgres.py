"""
PostgreSQL persistence layer for flags.

One row per gate, unique on ``(flag_name, gate_type, target)``. Upserts
use ``ON CONFLICT DO UPDATE`` inside a transaction and read the flag
back before committing.
"""

from typing import List, Optional

import asyncpg

from shared.errors import CorruptRecordError, StoreUnavailableError
from ..gates.models import Flag, Gate, GateKind
from .base import FlagStore

# Boolean gates have no subject, but NULL would defeat the unique index.
# Actor and group subjects are never empty, so "" cannot collide with them.
BOOLEAN_TARGET = ""


class PostgresFlagStore(FlagStore):
    """PostgreSQL-backed flag store."""

    backend_name = "postgres"

    def __init__(
        self,
        dsn: str,
        table: str = "feature_flags",
        timeout: Optional[float] = 5.0,
        pool: Optional[asyncpg.Pool] = None
    ):
        super().__init__(timeout)
        self.dsn = dsn
        self.table = table
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Start the persistence layer."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=2,
                    max_size=10,
                    command_timeout=30
                )

            await self._create_tables()

            self.logger.info("PostgreSQL flag store started", table=self.table)

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL flag store", error=str(e))
            raise StoreUnavailableError(f"PostgreSQL start failed: {e}") from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL flag store stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self._pool().acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id BIGSERIAL PRIMARY KEY,
                    flag_name VARCHAR(255) NOT NULL,
                    gate_type VARCHAR(20) NOT NULL,
                    target VARCHAR(255) NOT NULL,
                    enabled BOOLEAN NOT NULL,
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS {self.table}_flag_gate_target_idx
                ON {self.table}(flag_name, gate_type, target);
            """)

    def _pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StoreUnavailableError("PostgreSQL flag store not started")
        return self.pool

    @staticmethod
    def _target(gate: Gate) -> str:
        return BOOLEAN_TARGET if gate.kind == GateKind.BOOLEAN else gate.subject

    def _rows_to_flag(self, flag_name: str, rows) -> Flag:
        """Convert database rows to a Flag."""
        gates = []
        for row in rows:
            gate_type = row["gate_type"]
            target = row["target"]
            try:
                kind = GateKind(gate_type)
            except ValueError:
                raise CorruptRecordError(
                    f"Invalid gate type for flag '{flag_name}'",
                    {"flag_name": flag_name, "gate_type": gate_type}
                ) from None

            if kind == GateKind.BOOLEAN:
                if target != BOOLEAN_TARGET:
                    raise CorruptRecordError(
                        f"Invalid boolean gate target for flag '{flag_name}'",
                        {"flag_name": flag_name, "target": target}
                    )
                gates.append(Gate.boolean(bool(row["enabled"])))
            else:
                if not target:
                    raise CorruptRecordError(
                        f"Invalid {kind.value} gate target for flag '{flag_name}'",
                        {"flag_name": flag_name, "target": target}
                    )
                gates.append(Gate(kind, target, bool(row["enabled"])))
        return Flag.from_gates(flag_name, gates)

    async def _fetch_gates(self, conn, flag_name: str):
        return await conn.fetch(f"""
            SELECT gate_type, target, enabled FROM {self.table}
            WHERE flag_name = $1
            ORDER BY id ASC
        """, flag_name)

    async def _get(self, flag_name: str) -> Optional[Flag]:
        async with self._pool().acquire() as conn:
            rows = await self._fetch_gates(conn, flag_name)
        if not rows:
            return None
        return self._rows_to_flag(flag_name, rows)

    async def _upsert_gate(self, flag_name: str, gate: Gate) -> Flag:
        async with self._pool().acquire() as conn:
            async with conn.transaction():
                await conn.execute(f"""
                    INSERT INTO {self.table} (flag_name, gate_type, target, enabled)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (flag_name, gate_type, target) DO UPDATE SET
                        enabled = EXCLUDED.enabled,
                        updated_at = NOW()
                """, flag_name, gate.kind.value, self._target(gate), gate.enabled)
                rows = await self._fetch_gates(conn, flag_name)

        self.logger.debug("Gate written", flag_name=flag_name, gate_type=gate.kind.value, enabled=gate.enabled)
        return self._rows_to_flag(flag_name, rows)

    async def _delete_gate(self, flag_name: str, gate: Gate) -> Flag:
        async with self._pool().acquire() as conn:
            async with conn.transaction():
                await conn.execute(f"""
                    DELETE FROM {self.table}
                    WHERE flag_name = $1 AND gate_type = $2 AND target = $3
                """, flag_name, gate.kind.value, self._target(gate))
                rows = await self._fetch_gates(conn, flag_name)

        self.logger.debug("Gate deleted", flag_name=flag_name, gate_type=gate.kind.value)
        return self._rows_to_flag(flag_name, rows)

    async def _delete_flag(self, flag_name: str) -> Flag:
        async with self._pool().acquire() as conn:
            await conn.execute(f"""
                DELETE FROM {self.table} WHERE flag_name = $1
            """, flag_name)

        self.logger.info("Flag deleted", flag_name=flag_name)
        return Flag.empty(flag_name)

    async def _all_flag_names(self) -> List[str]:
        async with self._pool().acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT DISTINCT flag_name FROM {self.table} ORDER BY flag_name ASC
            """)
        return [row["flag_name"] for row in rows]

    async def _all_flags(self) -> List[Flag]:
        async with self._pool().acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT flag_name, gate_type, target, enabled FROM {self.table}
                ORDER BY flag_name ASC, id ASC
            """)

        grouped = {}
        for row in rows:
            grouped.setdefault(row["flag_name"], []).append(row)
        return [self._rows_to_flag(name, grouped[name]) for name in sorted(grouped)]

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self._pool().acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False

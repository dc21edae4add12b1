"""
Unit tests for the PostgreSQL flag store.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from service_flags.app.gates.models import Flag, Gate
from service_flags.app.persistence.postgres import BOOLEAN_TARGET, PostgresFlagStore
from shared.errors import CorruptRecordError, StoreUnavailableError


def async_context(value):
    """Create a mock async context manager yielding ``value``."""
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=value)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def row(gate_type, target, enabled, flag_name="checkout"):
    return {"flag_name": flag_name, "gate_type": gate_type, "target": target, "enabled": enabled}


class TestPostgresFlagStore:
    """Test cases for PostgresFlagStore."""

    @pytest.fixture
    def mock_conn(self):
        """Create mock connection."""
        conn = MagicMock()
        conn.execute = AsyncMock()
        conn.fetch = AsyncMock(return_value=[])
        conn.fetchval = AsyncMock(return_value=1)
        conn.transaction = MagicMock(return_value=async_context(None))
        return conn

    @pytest.fixture
    def mock_pool(self, mock_conn):
        """Create mock pool."""
        pool = MagicMock()
        pool.acquire = MagicMock(return_value=async_context(mock_conn))
        pool.close = AsyncMock()
        return pool

    @pytest.fixture
    def store(self, mock_pool):
        """Create store instance around the mock pool."""
        return PostgresFlagStore("postgres://localhost/flags", pool=mock_pool)

    @pytest.mark.asyncio
    async def test_start_creates_schema(self, store, mock_conn):
        """Test start creates the table and unique index."""
        await store.start()

        statements = " ".join(call.args[0] for call in mock_conn.execute.await_args_list)
        assert "CREATE TABLE IF NOT EXISTS feature_flags" in statements
        assert "CREATE UNIQUE INDEX IF NOT EXISTS feature_flags_flag_gate_target_idx" in statements

    @pytest.mark.asyncio
    async def test_start_creates_pool(self, mock_pool):
        """Test start opens a pool when none was given."""
        with patch("service_flags.app.persistence.postgres.asyncpg.create_pool", AsyncMock(return_value=mock_pool)) as create_pool:
            store = PostgresFlagStore("postgres://db/flags")
            await store.start()

        create_pool.assert_awaited_once()
        assert store.pool is mock_pool

    @pytest.mark.asyncio
    async def test_start_failure(self):
        """Test connection failures surface as StoreUnavailableError."""
        with patch("service_flags.app.persistence.postgres.asyncpg.create_pool", AsyncMock(side_effect=OSError("refused"))):
            store = PostgresFlagStore("postgres://db/flags")
            with pytest.raises(StoreUnavailableError):
                await store.start()

    @pytest.mark.asyncio
    async def test_get_absent(self, store):
        """Test no rows means absent."""
        assert await store.get("checkout") is None

    @pytest.mark.asyncio
    async def test_get(self, store, mock_conn):
        """Test rows are decoded into gates."""
        mock_conn.fetch.return_value = [
            row("boolean", BOOLEAN_TARGET, True),
            row("actor", "user:1", False),
            row("group", "beta", True),
        ]

        flag = await store.get("checkout")

        assert flag == Flag.from_gates("checkout", [
            Gate.boolean(True),
            Gate.actor("user:1", False),
            Gate.group("beta", True),
        ])
        assert mock_conn.fetch.await_args.args[1] == "checkout"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_row", [
        row("percentage", "50", True),
        row("boolean", "someone", True),
        row("actor", BOOLEAN_TARGET, True),
        row("group", "", True),
        row("boolean", "_fwf_none", True),
    ])
    async def test_get_corrupt(self, store, mock_conn, bad_row):
        """Test malformed rows raise CorruptRecordError."""
        mock_conn.fetch.return_value = [bad_row]

        with pytest.raises(CorruptRecordError):
            await store.get("checkout")

    @pytest.mark.asyncio
    async def test_group_named_like_placeholder(self, store, mock_conn):
        """Test any non-empty group name reads back, whatever it looks like."""
        mock_conn.fetch.return_value = [
            row("boolean", BOOLEAN_TARGET, False),
            row("group", "_fwf_none", True),
        ]

        flag = await store.upsert_gate("checkout", Gate.group("_fwf_none", True))

        assert mock_conn.execute.await_args.args[1:] == ("checkout", "group", "_fwf_none", True)
        assert flag == Flag.from_gates("checkout", [Gate.boolean(False), Gate.group("_fwf_none", True)])

    @pytest.mark.asyncio
    async def test_upsert_gate(self, store, mock_conn):
        """Test upsert runs ON CONFLICT in a transaction and reads back."""
        mock_conn.fetch.return_value = [row("boolean", BOOLEAN_TARGET, True)]

        flag = await store.upsert_gate("checkout", Gate.boolean(True))

        mock_conn.transaction.assert_called_once()
        sql, *params = mock_conn.execute.await_args.args
        assert "ON CONFLICT (flag_name, gate_type, target) DO UPDATE" in sql
        assert params == ["checkout", "boolean", BOOLEAN_TARGET, True]
        assert flag == Flag.from_gates("checkout", [Gate.boolean(True)])

    @pytest.mark.asyncio
    async def test_upsert_actor_gate_target(self, store, mock_conn):
        """Test actor gates store their id as target."""
        mock_conn.fetch.return_value = [row("actor", "user:1", False)]

        await store.upsert_gate("checkout", Gate.actor("user:1", False))

        assert mock_conn.execute.await_args.args[1:] == ("checkout", "actor", "user:1", False)

    @pytest.mark.asyncio
    async def test_delete_gate(self, store, mock_conn):
        """Test deleting one gate."""
        mock_conn.fetch.return_value = []

        flag = await store.delete_gate("checkout", Gate.group("beta", True))

        sql, *params = mock_conn.execute.await_args.args
        assert sql.strip().startswith("DELETE FROM feature_flags")
        assert params == ["checkout", "group", "beta"]
        assert flag.is_empty

    @pytest.mark.asyncio
    async def test_delete_flag(self, store, mock_conn):
        """Test deleting a whole flag."""
        flag = await store.delete_flag("checkout")

        assert mock_conn.execute.await_args.args[1] == "checkout"
        assert flag == Flag.empty("checkout")

    @pytest.mark.asyncio
    async def test_all_flags(self, store, mock_conn):
        """Test grouping rows by flag name."""
        mock_conn.fetch.return_value = [
            row("boolean", BOOLEAN_TARGET, True, flag_name="alpha"),
            row("group", "beta", False, flag_name="zeta"),
            row("actor", "user:1", True, flag_name="zeta"),
        ]

        flags = await store.all_flags()

        assert [flag.name for flag in flags] == ["alpha", "zeta"]
        assert len(flags[1].gates) == 2

    @pytest.mark.asyncio
    async def test_all_flag_names(self, store, mock_conn):
        """Test listing distinct names."""
        mock_conn.fetch.return_value = [{"flag_name": "alpha"}, {"flag_name": "zeta"}]

        assert await store.all_flag_names() == ["alpha", "zeta"]

    @pytest.mark.asyncio
    async def test_driver_error(self, store, mock_conn):
        """Test driver errors surface as StoreUnavailableError."""
        mock_conn.fetch.side_effect = OSError("connection lost")

        with pytest.raises(StoreUnavailableError):
            await store.get("checkout")

    @pytest.mark.asyncio
    async def test_health_check(self, store, mock_conn):
        """Test health check."""
        assert await store.health_check() is True

        mock_conn.fetchval.side_effect = OSError("down")
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_stop(self, store, mock_pool):
        """Test stop closes the pool."""
        await store.stop()

        mock_pool.close.assert_awaited_once()
        assert store.pool is None

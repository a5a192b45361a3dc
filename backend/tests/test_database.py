"""
Tests for database connection management.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import NullPool

from storefront.database import connection
from storefront.database.connection import (
    _convert_database_url_to_async,
    check_database_health,
    close_database_connections,
    create_all_tables,
    create_engine,
    create_session_factory,
    get_session,
)


# ============================================================================
# Engine Configuration Tests
# ============================================================================


class TestEngineConfiguration:
    """Tests for engine and URL handling."""

    def test_postgres_url_uses_asyncpg(self):
        url = _convert_database_url_to_async("postgresql://shop:pw@db:5432/store")

        assert url == "postgresql+asyncpg://shop:pw@db:5432/store"

    def test_other_urls_unchanged(self):
        assert (
            _convert_database_url_to_async("sqlite+aiosqlite:///./x.db")
            == "sqlite+aiosqlite:///./x.db"
        )

    async def test_sqlite_uses_null_pool(self, tmp_path):
        engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'pool.db'}")
        try:
            assert isinstance(engine.pool, NullPool)
        finally:
            await engine.dispose()

    async def test_create_all_tables(self, engine):
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync: set(inspect(sync).get_table_names()))

        assert {
            "users",
            "products",
            "orders",
            "order_items",
            "order_status_history",
            "order_number_sequences",
        } <= tables

    async def test_create_all_tables_is_idempotent(self, engine):
        await create_all_tables(engine)


# ============================================================================
# Session Tests
# ============================================================================


class TestSessions:
    """Tests for session lifecycle handling."""

    async def test_sessions_keep_state_after_commit(self, engine):
        factory = create_session_factory(engine)

        assert factory.kw["expire_on_commit"] is False

    async def test_get_session_rolls_back_on_error(self):
        session = MagicMock()
        session.rollback = AsyncMock()
        session.close = AsyncMock()

        with patch.object(connection, "get_session_factory", return_value=lambda: session):
            with pytest.raises(ValueError):
                async with get_session():
                    raise ValueError("boom")

        session.rollback.assert_awaited_once()
        session.close.assert_awaited_once()

    async def test_get_session_closes_on_success(self, session_factory):
        with patch.object(connection, "get_session_factory", return_value=session_factory):
            async with get_session() as db_session:
                result = await db_session.execute(text("SELECT 1"))

        assert result.scalar() == 1


# ============================================================================
# Health Check Tests
# ============================================================================


class TestHealthCheck:
    """Tests for check_database_health."""

    async def test_healthy(self, engine):
        with patch.object(connection, "get_engine", return_value=engine):
            assert await check_database_health(max_retries=1) is True

    async def test_retries_then_fails(self):
        failing = MagicMock()
        failing.connect.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

        with patch.object(connection, "get_engine", return_value=failing), patch.object(
            connection.asyncio, "sleep", new=AsyncMock()
        ) as sleep:
            assert await check_database_health(max_retries=3, retry_delay=0.5) is False

        assert failing.connect.call_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]


# ============================================================================
# Shutdown Tests
# ============================================================================


class TestShutdown:
    async def test_close_disposes_and_resets(self, monkeypatch):
        engine = MagicMock()
        engine.dispose = AsyncMock()
        monkeypatch.setattr(connection, "_engine", engine)
        monkeypatch.setattr(connection, "_session_factory", MagicMock())

        await close_database_connections()

        engine.dispose.assert_awaited_once()
        assert connection._engine is None
        assert connection._session_factory is None

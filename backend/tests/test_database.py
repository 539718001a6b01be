"""Tests for engine and session setup."""
import pytest
from sqlalchemy import text

from refeed.database import engine_options, session_scope


class TestEngineOptions:
    def test_sqlite_allows_cross_thread_use(self):
        """aiosqlite URLs turn off the same-thread check and skip pre-ping."""
        options = engine_options("sqlite+aiosqlite:///./refeed.db")
        assert options["connect_args"] == {"check_same_thread": False}
        assert "pool_pre_ping" not in options

    def test_postgres_pings_pooled_connections(self):
        """Server databases verify connections before reuse."""
        options = engine_options("postgresql+asyncpg://localhost/refeed", echo=True)
        assert options == {"echo": True, "pool_pre_ping": True}


class TestSessionScope:
    @pytest.mark.asyncio
    async def test_yields_working_session(self):
        """The scoped session can run statements against the configured engine."""
        async with session_scope() as session:
            assert (await session.execute(text("SELECT 1"))).scalar_one() == 1

    @pytest.mark.asyncio
    async def test_error_propagates(self):
        """Errors inside the scope are re-raised after rollback."""
        with pytest.raises(RuntimeError):
            async with session_scope():
                raise RuntimeError("boom")

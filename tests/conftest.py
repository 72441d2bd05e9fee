"""Shared fixtures: a throwaway SQLite store per test and an HTTP client bound to it."""

from __future__ import annotations

import os
from typing import AsyncIterator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_DB_QUERIES", "false")
os.environ.setdefault("HOUSEKEEPING_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from lockergate.config import Settings, get_settings
from lockergate.dependencies import build_engine, get_db_session
from lockergate.main import app
from lockergate.models import Base
from lockergate.routes import sessions as session_routes


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest_asyncio.fixture
async def engine(tmp_path, settings) -> AsyncIterator[AsyncEngine]:
    # file-backed so separate connections really contend with each other
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'lockergate.db'}", settings)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def sessionmaker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(sessionmaker) -> AsyncIterator[AsyncSession]:
    async with sessionmaker() as session:
        yield session


@pytest_asyncio.fixture
async def client(sessionmaker) -> AsyncIterator[AsyncClient]:
    async def override_get_db_session() -> AsyncIterator[AsyncSession]:
        async with sessionmaker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    session_routes.SCAN_LIMITER.reset()
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as http:
            yield http
    finally:
        app.dependency_overrides.clear()
        session_routes.SCAN_LIMITER.reset()

"""Pytest fixtures wiring a file-backed SQLite database to the unit of work.

Each test gets its own database file so sessions opened by sibling units of
work behave like independent connections.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from persistkit.uow import (
    AsyncSQLAlchemyUnitOfWorkProvider,
    ContextVarUnitOfWorkRegistry,
    InMemoryUnitOfWorkRegistry,
    SQLAlchemyUnitOfWorkProvider,
)
from tests.helpers.fakes import RecordingProvider
from tests.models import Base


@pytest.fixture()
def registry() -> InMemoryUnitOfWorkRegistry:
    """Provide an explicit stack so tests never share ambient state."""
    return InMemoryUnitOfWorkRegistry()


@pytest.fixture()
def fake_provider(registry) -> RecordingProvider:
    """Provider of recording resources with reuse enabled."""
    return RecordingProvider(registry)


@pytest.fixture()
def engine(tmp_path):
    """Create the schema in a fresh SQLite file.

    Yields
    ------
    sqlalchemy.engine.Engine
        Engine disposed after the test.
    """
    eng = create_engine(f"sqlite:///{tmp_path / 'test.db'}", future=True)
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture()
def provider(session_factory) -> SQLAlchemyUnitOfWorkProvider:
    """Session provider backed by a context-local registry."""
    return SQLAlchemyUnitOfWorkProvider(session_factory, registry=ContextVarUnitOfWorkRegistry())


@pytest.fixture()
def read_session(session_factory):
    """Independent session used to observe what was actually committed."""
    with session_factory() as s:
        yield s


@pytest_asyncio.fixture()
async def async_engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'async.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture()
def async_session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False)


@pytest.fixture()
def async_provider(async_session_factory) -> AsyncSQLAlchemyUnitOfWorkProvider:
    return AsyncSQLAlchemyUnitOfWorkProvider(
        async_session_factory, registry=ContextVarUnitOfWorkRegistry()
    )


@pytest.fixture()
def faker():
    """Provide a :class:`faker.Faker` instance seeded for deterministic tests."""
    from faker import Faker

    fk = Faker()
    Faker.seed(1337)
    return fk


# -- Hook up Factory Boy to the ambient session ------------------------------
@pytest.fixture(autouse=True)
def _factories_provider(request):
    """Point Factory Boy at the session provider when the test uses one."""
    from tests.factories import SQLAlchemySession

    if "provider" in request.fixturenames:
        SQLAlchemySession.set(request.getfixturevalue("provider"))
    yield
    SQLAlchemySession.set(None)

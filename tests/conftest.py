"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pabuk.config import Settings
from pabuk.db.base import Base
from pabuk.db.models import Contribution, PointTransaction, User


@pytest.fixture
def settings() -> Settings:
    """Settings with retries that do not sleep."""
    return Settings(ledger_retry_backoff_seconds=0)


def _sqlite_engine(url: str, **kwargs) -> AsyncEngine:
    """SQLite engine with working SAVEPOINTs and foreign keys."""
    engine = create_async_engine(url, **kwargs)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so nested transactions work
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite shared by every session of a test."""
    engine = _sqlite_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def file_db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite where each session gets its own connection.

    Writers block on the database lock for up to ``timeout`` seconds instead
    of failing, so concurrent sessions serialize their writes.
    """
    engine = _sqlite_engine(f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}", connect_args={"timeout": 30})

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory for committed users. Keyword arguments override column values."""

    async def _make(**fields) -> User:
        fields.setdefault("display_name", "contributor")
        user = User(**fields)
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def make_contribution(db_session: AsyncSession):
    """Factory for committed contributions owned by ``user``."""

    async def _make(
        user: User,
        type: str = "TEXT",
        category: str = "FOLKTALE",
        status: str = "PENDING",
        quality_rating: int | None = None,
        province_id: str | None = None,
        **fields,
    ) -> Contribution:
        contribution = Contribution(
            user_id=user.id,
            type=type,
            category=category,
            status=status,
            quality_rating=quality_rating,
            province_id=province_id,
            **fields,
        )
        db_session.add(contribution)
        await db_session.commit()
        return contribution

    return _make


@pytest.fixture
def ledger_total(db_session: AsyncSession):
    """Σ amount of a user's ledger entries."""

    async def _total(user_id: int) -> int:
        total = await db_session.scalar(
            select(func.coalesce(func.sum(PointTransaction.amount), 0)).where(PointTransaction.user_id == user_id)
        )
        return int(total)

    return _total

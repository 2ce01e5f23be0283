"""Database setup with SQLAlchemy async engine (PostgreSQL or SQLite fallback)."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import Float, String
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine + session factory (lazy-initialized by init_db)
# ---------------------------------------------------------------------------

_engine = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _build_url() -> str:
    """Determine async database URL from environment."""
    from investsync.config import DATABASE_PATH, DATABASE_URL

    if DATABASE_URL:
        url = DATABASE_URL
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    # Fallback to SQLite for local dev
    return f"sqlite+aiosqlite:///{DATABASE_PATH}"


# ---------------------------------------------------------------------------
# ORM Models
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


class Asset(Base):
    """One holding: *amount* units of *symbol* tracked in a YNAB account."""

    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    symbol: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    ynab_account_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)


class UserSettings(Base):
    __tablename__ = "user_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ynab_api_token: Mapped[str] = mapped_column(String, nullable=False)
    sync_schedule: Mapped[str] = mapped_column(String(20), nullable=False, default="daily")
    target_budget_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)


# ---------------------------------------------------------------------------
# Initialization + session access
# ---------------------------------------------------------------------------


async def init_db(url: Optional[str] = None) -> None:
    """Initialize the async engine, session factory, and create all tables.

    Args:
        url: Explicit database URL. If None, auto-detects from env vars
             (DATABASE_URL for PostgreSQL, DATABASE_PATH for SQLite fallback).
    """
    global _engine, _session_factory

    actual_url = url or _build_url()
    _engine = create_async_engine(actual_url, echo=False)
    _session_factory = async_sessionmaker(
        _engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    safe_url = actual_url.split("@")[-1] if "@" in actual_url else actual_url
    logger.info("Database initialized: %s", safe_url)


async def get_session() -> AsyncSession:
    """Return a new async session. Requires prior ``init_db()`` call."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized, call init_db() first")
    return _session_factory()


async def close_db() -> None:
    """Dispose of the engine and reset module state."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None

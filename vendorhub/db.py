# vendorhub/db.py
from __future__ import annotations

import pathlib
import logging

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger("uvicorn.error")


class Base(DeclarativeBase):
    pass


def _ensure_sqlite_dir(dsn: str) -> None:
    # Handle sqlite+aiosqlite:///./data/vendorhub.db
    # or sqlite+aiosqlite:////code/data/vendorhub.db
    if not dsn.startswith("sqlite") or ":memory:" in dsn:
        return
    try:
        sep = "///" if "///" in dsn else "//"
        path_part = dsn.split(sep, 1)[1] if sep in dsn else ""
        if path_part:
            path = pathlib.Path(path_part).resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)


def create_engine(dsn: str) -> AsyncEngine:
    """
    Build the AsyncEngine for ``dsn``. The caller owns it (see main_app.create_app);
    there is no process-wide engine.
    """
    _ensure_sqlite_dir(dsn)
    kwargs = {"echo": False, "pool_pre_ping": True}
    if dsn.startswith("sqlite"):
        # writers wait on each other instead of failing with "database is locked"
        kwargs["connect_args"] = {"timeout": 30}
    engine = create_async_engine(dsn, **kwargs)
    logger.info("[DB] engine initialized for %s", engine.url.render_as_string(hide_password=True))
    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """
    Validate connectivity and create any missing tables.
    """
    # register mappers on Base.metadata
    from vendorhub.models import jobs, orders  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise

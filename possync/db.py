# possync/db.py
from __future__ import annotations

import pathlib
import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger("uvicorn.error")

DEFAULT_DSN = "sqlite+aiosqlite:///./data/possync.db"


class Base(DeclarativeBase):
    pass


def _resolve_dsn(dsn: Optional[str] = None) -> str:
    """
    Use the given DSN, else default to a local SQLite database under ./data/.
    """
    dsn = dsn or DEFAULT_DSN

    # If using SQLite, make sure the folder exists so SQLAlchemy can create the file.
    if dsn.startswith("sqlite") and ":memory:" not in dsn:
        try:
            # Handle sqlite+aiosqlite:///./data/possync.db
            # or sqlite+aiosqlite:////code/data/possync.db
            sep = "///" if "///" in dsn else "//"
            path_part = dsn.split(sep, 1)[1] if sep in dsn else ""
            if path_part:
                path = pathlib.Path(path_part).resolve()
                path.parent.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)

    return dsn


def create_engine_for(dsn: Optional[str] = None) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create an AsyncEngine and its session factory. Callers own both;
    nothing here is cached at module level.
    """
    resolved = _resolve_dsn(dsn)
    engine = create_async_engine(
        resolved,
        echo=False,
        pool_pre_ping=True,
    )
    sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
    logger.info("[DB] engine initialized for %s", resolved)
    return engine, sessionmaker


async def init_db(engine: AsyncEngine) -> None:
    """
    Validate connectivity and create any missing tables.
    """
    # register tables on Base.metadata
    from possync.models import catalog, orders, oplog, print_jobs  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise

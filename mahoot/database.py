"""
Async SQLAlchemy engine + session factory for TiDB (MySQL-protocol).

TiDB is wire-compatible with MySQL 5.7, so we use the aiomysql driver.
The engine is created once at startup and reused across all requests.

Idempotent writes (view records, catalog inserts, daily stats) rely on the
storage layer's uniqueness constraints rather than read-then-write checks, so
`insert_ignore` / `upsert` below render the dialect-specific statement:

  mysql       INSERT IGNORE / INSERT ... ON DUPLICATE KEY UPDATE
  sqlite      INSERT ... ON CONFLICT DO NOTHING / DO UPDATE
  postgresql  INSERT ... ON CONFLICT DO NOTHING / DO UPDATE
"""
import logging
from typing import Any, Sequence

from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from mahoot.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.tidb_url,
    pool_pre_ping=True,
    pool_size=20,
    max_overflow=10,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    """Create all tables if they don't exist (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ─────────────────────── Dialect-aware idempotent writes ──────────────────

_INSERTS = {
    "mysql": mysql.insert,
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _dialect_name(session: AsyncSession) -> str:
    return session.bind.dialect.name


def _insert_for(session: AsyncSession, model):
    name = _dialect_name(session)
    try:
        return _INSERTS[name](model)
    except KeyError:
        raise NotImplementedError(f"Unsupported database dialect: {name}") from None


async def insert_ignore(
    session: AsyncSession,
    model,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
) -> bool:
    """
    Insert one row, silently skipping it if it violates the unique key made
    of `conflict_columns`. Returns True when a row was actually written.
    """
    stmt = _insert_for(session, model).values(**values)
    if _dialect_name(session) == "mysql":
        stmt = stmt.prefix_with("IGNORE")
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    result = await session.execute(stmt)
    return result.rowcount == 1


async def upsert(
    session: AsyncSession,
    model,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
    update: dict[str, Any],
) -> None:
    """
    Single-statement insert-or-update keyed on `conflict_columns`.

    `update` maps column names to the new value for an existing row; values may
    be SQL expressions over the existing row (e.g. `Model.counter + 1`).
    """
    stmt = _insert_for(session, model).values(**values)
    if _dialect_name(session) == "mysql":
        stmt = stmt.on_duplicate_key_update(**update)
    else:
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns), set_=update
        )
    await session.execute(stmt)

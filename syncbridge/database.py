"""Database connection, session management and startup migration."""

import logging
from pathlib import Path

from sqlalchemy import event, inspect, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from syncbridge.config import settings

logger = logging.getLogger(__name__)


def _ensure_sqlite_directory(database_url: str) -> None:
    if not database_url.startswith("sqlite+aiosqlite:///"):
        return
    sqlite_path = database_url.removeprefix("sqlite+aiosqlite:///")
    if sqlite_path in {"", ":memory:"}:
        return
    db_file = Path(sqlite_path)
    if db_file.parent and str(db_file.parent) != ".":
        db_file.parent.mkdir(parents=True, exist_ok=True)


_ensure_sqlite_directory(settings.database_url)

if "sqlite" in settings.database_url:
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        connect_args={"timeout": 30},
    )
else:
    engine = create_async_engine(settings.database_url, echo=settings.debug, pool_pre_ping=True)

if "sqlite" in settings.database_url:
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA busy_timeout=30000;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session() as session:
        yield session


# Columns added after the first release of the queue table. Older databases
# get them added in place by init_db().
_QUEUE_COLUMN_MIGRATIONS = {
    "event_category": "VARCHAR(50) NOT NULL DEFAULT 'webhook'",
    "payload_json": "TEXT",
    "claimed_at": "DATETIME",
}


def _migrate_queue_columns(sync_conn) -> list[str]:
    from syncbridge.models.queue_item import QueueItem

    table = QueueItem.__tablename__
    inspector = inspect(sync_conn)
    if not inspector.has_table(table):
        return []
    existing = {col["name"] for col in inspector.get_columns(table)}
    added: list[str] = []
    for name, ddl in _QUEUE_COLUMN_MIGRATIONS.items():
        if name in existing:
            continue
        sync_conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))
        added.append(name)
    return added


async def init_db():
    """Create tables and bring the queue table up to the current schema.

    Runs once during application startup, before any request or the worker
    touches the queue. Safe to run repeatedly.
    """
    # Registers the ORM tables on Base.metadata.
    from syncbridge.models import queue_item  # noqa: F401

    async with engine.begin() as conn:
        added = await conn.run_sync(_migrate_queue_columns)
        await conn.run_sync(Base.metadata.create_all)
    if added:
        logger.info("Queue table migrated, added columns: %s", ", ".join(added))


async def close_db() -> None:
    await engine.dispose()

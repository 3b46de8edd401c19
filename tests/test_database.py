"""Tests for the startup migration of the queue table."""

from sqlalchemy import inspect, text

from syncbridge.database import Base, engine, init_db


async def test_init_db_adds_missing_queue_columns():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.execute(text(
            "CREATE TABLE sync_queue ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "external_doc_ref VARCHAR(64) NOT NULL, "
            "correlation_ref VARCHAR(128) NOT NULL, "
            "status VARCHAR(20) NOT NULL, "
            "retry_count INTEGER NOT NULL, "
            "error_message TEXT, "
            "response_body TEXT, "
            "created_at DATETIME NOT NULL, "
            "processed_at DATETIME)"
        ))
        await conn.execute(text(
            "INSERT INTO sync_queue (external_doc_ref, correlation_ref, status, retry_count, created_at) "
            "VALUES ('DN-1', 'SO1', 'pending', 0, '2026-01-05 10:00:00')"
        ))

    await init_db()

    async with engine.connect() as conn:
        columns = await conn.run_sync(
            lambda sync_conn: {col["name"] for col in inspect(sync_conn).get_columns("sync_queue")}
        )
        category = (await conn.execute(text("SELECT event_category FROM sync_queue"))).scalar_one()

    assert {"event_category", "payload_json", "claimed_at"} <= columns
    assert category == "webhook"


async def test_init_db_is_idempotent():
    await init_db()
    await init_db()

    async with engine.connect() as conn:
        count = (await conn.execute(text("SELECT COUNT(*) FROM sync_queue"))).scalar_one()
    assert count == 0

"""Shared test configuration — must be loaded before syncbridge modules."""

import os

# Override settings before any syncbridge modules are imported.
os.environ["SYNC_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SYNC_QUEUE_WORKER_AUTOSTART"] = "false"
os.environ["SYNC_MONITOR_ENABLED"] = "false"
os.environ["SYNC_ODOO_BASE_URL"] = ""

import pytest
from syncbridge.database import engine, Base
from syncbridge.models import queue_item  # noqa: F401


@pytest.fixture(autouse=True)
async def _reset_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

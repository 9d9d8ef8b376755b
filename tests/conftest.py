"""Shared fixtures for database-backed tests."""

import tempfile
from pathlib import Path

import pytest_asyncio

from ticketmemory.db import close_db, init_db


@pytest_asyncio.fixture
async def db_path():
    """A fresh, initialized database in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "memory.db"
        await init_db(path)
        try:
            yield path
        finally:
            await close_db()

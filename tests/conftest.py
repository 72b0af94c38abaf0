"""
Pytest configuration and fixtures for Trailbot tests.
"""

import sys
from pathlib import Path

import pytest_asyncio

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from trailbot.database.db_connection import ConnectionManager  # noqa: E402
from trailbot.database.db_schema import SchemaManager  # noqa: E402
from trailbot.repositories.delayed_action_repo import DelayedActionRepo  # noqa: E402


@pytest_asyncio.fixture
async def connection(tmp_path: Path):
    """An open connection to a fresh database with the schema applied."""
    manager = ConnectionManager()
    await manager.open(tmp_path / "trailbot.db")
    await SchemaManager.initialize_schema(manager.connection)
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def repo(connection: ConnectionManager) -> DelayedActionRepo:
    return DelayedActionRepo(connection)

"""
Database schema initialization.

Creates the ``delayed_actions`` table, its indexes, and schema version
tracking. Timestamps are REAL unix seconds (UTC) so due-time comparisons
need no string parsing.
"""

import aiosqlite
from trailbot.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates and versions the database schema."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all tables and indexes if they do not exist yet.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized")

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        # One row per pending delayed action; rows are deleted once fired or cancelled
        await db.execute("""
            CREATE TABLE IF NOT EXISTS delayed_actions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT NOT NULL,
                owner_id TEXT NOT NULL,
                scope_id TEXT NOT NULL,
                payload TEXT NOT NULL DEFAULT '{}',
                due_at REAL NOT NULL,
                created_at REAL NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        await db.execute("CREATE INDEX IF NOT EXISTS idx_delayed_actions_kind_due ON delayed_actions(kind, due_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_delayed_actions_owner ON delayed_actions(owner_id, kind)")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

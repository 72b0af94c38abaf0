"""
Database package for Trailbot.

Public API:
    - ConnectionManager: single long-lived aiosqlite connection with
      serialised write transactions (``db_connection.py``)
    - SchemaManager: table and index creation (``db_schema.py``)
"""

"""
SQLite repositories built on the shared ``ConnectionManager``.
"""

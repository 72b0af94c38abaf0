"""
Configuration management for Trailbot.

- **app_configuration.py**: YAML configuration loader for global settings.
  Provides the database location, reminder quota and duration limits,
  countdown cadence, and the fallback moderation log channel. Falls back
  gracefully on missing or malformed config files.
"""

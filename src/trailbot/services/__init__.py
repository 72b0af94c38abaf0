"""
Application services sitting between Discord commands and the scheduler.

- **scheduling_service.py**: Reminder quota and duration checks, one
  pending timeout per member, countdown bounds.
"""

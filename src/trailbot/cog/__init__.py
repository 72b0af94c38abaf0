"""
Discord cogs.

- **scheduler_cog.py**: Runs scheduler catch-up on ready; operator stats.
- **scheduling_cmds.py**: ``/reminder``, ``/mute``, ``/unmute`` and ``/countdown``.
"""

"""
Discord-facing rendering helpers.

- **scheduled_embeds.py**: Reminder texts, the timeout-expired log embed and
  the live countdown displays.
"""
